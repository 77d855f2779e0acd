"""Source map decoding, composition and generation.

This module provides the pieces needed to wrap compiled output while
keeping it mapped back to its originals:
- encode_vlq / decode_vlq: Base64 VLQ codec used by the "mappings" field
- SourceMapConsumer: Decoded view of a version 3 source map
- SourceNode: Tree of generated chunks annotated with original positions
- identity_node: One-to-one line mapping for files without an upstream map

Lines are 1-based and columns are 0-based throughout, as in the
source map format itself.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any, Union

from kiln.errors import SourceMapError

BASE64_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_BASE64_VALUES = {char: index for index, char in enumerate(BASE64_CHARS)}

VLQ_BASE_SHIFT = 5
VLQ_BASE_MASK = (1 << VLQ_BASE_SHIFT) - 1
VLQ_CONTINUATION_BIT = 1 << VLQ_BASE_SHIFT

# Some tools prepend this to JSON responses to prevent XSSI.
RESPONSE_SPLITTING_PREFIX = re.compile(r"^\)\]\}'[^\n]*\n?")

_LINE_RE = re.compile(r"[^\n]*\n|[^\n]+")


def encode_vlq(value: int) -> str:
    """Encode a signed integer as a base64 VLQ string.

    Example:
        >>> encode_vlq(16)
        'gB'
        >>> encode_vlq(-1)
        'D'
    """
    vlq = ((-value) << 1) + 1 if value < 0 else value << 1
    encoded = []
    while True:
        digit = vlq & VLQ_BASE_MASK
        vlq >>= VLQ_BASE_SHIFT
        if vlq:
            digit |= VLQ_CONTINUATION_BIT
        encoded.append(BASE64_CHARS[digit])
        if not vlq:
            return "".join(encoded)


def decode_vlq(segment: str) -> list[int]:
    """Decode a base64 VLQ segment into its signed integers.

    Raises:
        SourceMapError: If the segment holds invalid characters or ends mid-value.

    Example:
        >>> decode_vlq("AAgBC")
        [0, 0, 16, 1]
    """
    values: list[int] = []
    value = 0
    shift = 0
    for char in segment:
        digit = _BASE64_VALUES.get(char)
        if digit is None:
            msg = f"Invalid base64 VLQ character {char!r} in {segment!r}"
            raise SourceMapError(msg)
        value += (digit & VLQ_BASE_MASK) << shift
        if digit & VLQ_CONTINUATION_BIT:
            shift += VLQ_BASE_SHIFT
            continue
        negative = value & 1
        value >>= 1
        values.append(-value if negative else value)
        value = 0
        shift = 0

    if shift:
        msg = f"Truncated base64 VLQ segment {segment!r}"
        raise SourceMapError(msg)
    return values


def split_lines(code: str) -> list[str]:
    """Split code into lines, keeping each line's trailing newline."""
    return _LINE_RE.findall(code)


def parse_source_map(raw: str | dict[str, Any]) -> dict[str, Any]:
    """Parse a raw source map into its JSON object form.

    Strings may carry a response-splitting prefix, which is stripped.

    Raises:
        SourceMapError: If the map is not valid JSON or not an object.
    """
    if isinstance(raw, dict):
        return dict(raw)
    try:
        mapping = json.loads(RESPONSE_SPLITTING_PREFIX.sub("", raw, count=1))
    except json.JSONDecodeError as e:
        msg = f"Source map is not valid JSON: {e}"
        raise SourceMapError(msg) from e
    if not isinstance(mapping, dict):
        msg = f"Source map must be a JSON object, got {type(mapping).__name__}"
        raise SourceMapError(msg)
    return mapping


@dataclass(frozen=True)
class Mapping:
    """One generated position and the original position it came from."""

    generated_line: int
    generated_column: int
    source: str | None = None
    original_line: int | None = None
    original_column: int | None = None
    name: str | None = None


class SourceMapConsumer:
    """Decoded version 3 source map.

    Attributes:
        sources: Source paths, with sourceRoot applied.
        names: Symbol names referenced by mappings.
        mappings: Decoded mappings ordered by generated position.
        file: Generated file name, if recorded.

    Example:
        >>> consumer = SourceMapConsumer(
        ...     {"version": 3, "sources": ["a.coffee"], "names": [], "mappings": "AAAA"}
        ... )
        >>> consumer.mappings[0].source
        'a.coffee'
    """

    def __init__(self, mapping: str | dict[str, Any]) -> None:
        data = parse_source_map(mapping)
        version = data.get("version")
        if version != 3:
            msg = f"Unsupported source map version: {version!r}"
            raise SourceMapError(msg)

        source_root = data.get("sourceRoot") or ""
        self.file: str | None = data.get("file")
        self.sources: list[str] = [
            _join_root(source_root, source) for source in data.get("sources", [])
        ]
        self.names: list[str] = list(data.get("names", []))
        contents = data.get("sourcesContent") or []
        self._contents: dict[str, str] = {
            source: content
            for source, content in zip(self.sources, contents)
            if content is not None
        }
        self.mappings: list[Mapping] = self._decode(data.get("mappings", ""))

    def source_content_for(self, source: str) -> str | None:
        """Return the embedded content of a source, if the map carries it."""
        return self._contents.get(source)

    def _decode(self, encoded: str) -> list[Mapping]:
        mappings: list[Mapping] = []
        source_index = 0
        original_line = 0
        original_column = 0
        name_index = 0

        for line_number, line in enumerate(encoded.split(";"), start=1):
            generated_column = 0
            for segment in line.split(","):
                if not segment:
                    continue
                fields = decode_vlq(segment)
                generated_column += fields[0]
                if len(fields) == 1:
                    mappings.append(Mapping(line_number, generated_column))
                    continue
                if len(fields) < 4:
                    msg = f"Mapping segment {segment!r} has {len(fields)} fields"
                    raise SourceMapError(msg)

                source_index += fields[1]
                original_line += fields[2]
                original_column += fields[3]
                name = None
                if len(fields) > 4:
                    name_index += fields[4]
                    name = self._lookup(self.names, name_index, "name")
                mappings.append(
                    Mapping(
                        generated_line=line_number,
                        generated_column=generated_column,
                        source=self._lookup(self.sources, source_index, "source"),
                        original_line=original_line + 1,
                        original_column=original_column,
                        name=name,
                    )
                )

        mappings.sort(key=lambda m: (m.generated_line, m.generated_column))
        return mappings

    @staticmethod
    def _lookup(items: list[str], index: int, kind: str) -> str:
        if not 0 <= index < len(items):
            msg = f"Mapping references missing {kind} #{index}"
            raise SourceMapError(msg)
        return items[index]


def _join_root(root: str, source: str) -> str:
    if not root or re.match(r"^(?:[a-z]+:)?/", source):
        return source
    return f"{root.rstrip('/')}/{source}"


Chunk = Union[str, "SourceNode"]


@dataclass(frozen=True)
class _Original:
    source: str | None
    line: int | None
    column: int | None
    name: str | None

    @property
    def mapped(self) -> bool:
        return self.source is not None and self.line is not None and self.column is not None


class SourceNode:
    """Generated code chunks annotated with their original positions.

    A node owns an ordered list of children, each either a plain string
    or another node, and an optional original position that applies to
    its direct string children.

    Attributes:
        line: Original line (1-based) or None.
        column: Original column (0-based) or None.
        source: Original source path or None.
        name: Original symbol name or None.
        children: Ordered string and node chunks.
        source_contents: Original contents keyed by source path.
        is_identity: True when the node maps the file one-to-one onto itself.

    Example:
        >>> node = SourceNode(1, 0, "a.js", "var a;")
        >>> node.prepend("(function(){")
        >>> node.add("})();")
        >>> node.to_string()
        '(function(){var a;})();'
    """

    def __init__(
        self,
        line: int | None = None,
        column: int | None = None,
        source: str | None = None,
        chunks: Chunk | Iterable[Chunk] | None = None,
        name: str | None = None,
    ) -> None:
        self.line = line
        self.column = column
        self.source = source
        self.name = name
        self.children: list[Chunk] = []
        self.source_contents: dict[str, str] = {}
        self.is_identity = False
        if chunks is not None:
            self.add(chunks)

    def add(self, chunk: Chunk | Iterable[Chunk]) -> SourceNode:
        """Append a chunk (or sequence of chunks) to this node."""
        if isinstance(chunk, (str, SourceNode)):
            self.children.append(chunk)
        elif isinstance(chunk, Iterable):
            for item in chunk:
                self.add(item)
        else:
            msg = f"Expected a string, SourceNode or sequence of those, got {chunk!r}"
            raise TypeError(msg)
        return self

    def prepend(self, chunk: Chunk | Iterable[Chunk]) -> SourceNode:
        """Insert a chunk (or sequence of chunks) before all children."""
        if isinstance(chunk, (str, SourceNode)):
            self.children.insert(0, chunk)
        elif isinstance(chunk, Iterable):
            for item in reversed(list(chunk)):
                self.prepend(item)
        else:
            msg = f"Expected a string, SourceNode or sequence of those, got {chunk!r}"
            raise TypeError(msg)
        return self

    def set_source_content(self, source: str, content: str | None) -> None:
        """Attach (or with None, remove) the original content of a source."""
        if content is None:
            self.source_contents.pop(source, None)
        else:
            self.source_contents[source] = content

    def walk(self) -> Iterator[tuple[str, _Original]]:
        """Yield every non-empty string chunk with its original position."""
        original = _Original(self.source, self.line, self.column, self.name)
        for child in self.children:
            if isinstance(child, SourceNode):
                yield from child.walk()
            elif child:
                yield child, original

    def walk_source_contents(self) -> Iterator[tuple[str, str]]:
        """Yield (source, content) pairs, children before this node."""
        for child in self.children:
            if isinstance(child, SourceNode):
                yield from child.walk_source_contents()
        yield from self.source_contents.items()

    def to_string(self) -> str:
        """Render the generated code."""
        return "".join(chunk for chunk, _ in self.walk())

    def __str__(self) -> str:
        return self.to_string()

    def to_string_with_source_map(self, file: str | None = None) -> tuple[str, dict[str, Any]]:
        """Render the generated code together with its source map.

        Args:
            file: Optional generated file name recorded in the map.

        Returns:
            Tuple of (code, source map as a JSON-compatible dict).
        """
        generator = _SourceMapGenerator(file)
        code: list[str] = []
        line = 1
        column = 0
        last: _Original | None = None
        active = False

        for chunk, original in self.walk():
            code.append(chunk)
            if original.mapped:
                if not active or last != original:
                    generator.add(Mapping(line, column, original.source, original.line, original.column, original.name))
                last = original
                active = True
            elif active:
                generator.add(Mapping(line, column))
                last = None
                active = False

            for index, char in enumerate(chunk):
                if char != "\n":
                    column += 1
                    continue
                line += 1
                column = 0
                if index + 1 == len(chunk):
                    last = None
                    active = False
                elif active:
                    generator.add(Mapping(line, column, original.source, original.line, original.column, original.name))

        for source, content in self.walk_source_contents():
            generator.set_source_content(source, content)

        return "".join(code), generator.to_json()

    @classmethod
    def from_string_with_source_map(cls, code: str, consumer: SourceMapConsumer) -> SourceNode:
        """Rebuild a node tree from generated code and the map describing it.

        Every span of generated text becomes a child node carrying the
        original position of the mapping that starts it; text before the
        first mapping stays unmapped.
        """
        node = cls()
        remaining = split_lines(code)
        line_index = 0
        last_line = 1
        last_column = 0
        last_mapping: Mapping | None = None

        def next_line() -> str:
            nonlocal line_index
            if line_index < len(remaining):
                text = remaining[line_index]
                line_index += 1
                return text
            return ""

        def current_line() -> str:
            return remaining[line_index] if line_index < len(remaining) else ""

        def add_mapped(mapping: Mapping | None, text: str) -> None:
            if mapping is None or mapping.source is None:
                node.add(text)
            else:
                node.add(cls(mapping.original_line, mapping.original_column, mapping.source, text, mapping.name))

        for mapping in consumer.mappings:
            if last_mapping is not None:
                if last_line < mapping.generated_line:
                    add_mapped(last_mapping, next_line())
                    last_line += 1
                    last_column = 0
                else:
                    text = current_line()
                    cut = mapping.generated_column - last_column
                    if line_index < len(remaining):
                        remaining[line_index] = text[cut:]
                    last_column = mapping.generated_column
                    add_mapped(last_mapping, text[:cut])
                    last_mapping = mapping
                    continue

            while last_line < mapping.generated_line:
                node.add(next_line())
                last_line += 1
            if last_column < mapping.generated_column:
                text = current_line()
                if line_index < len(remaining):
                    remaining[line_index] = text[mapping.generated_column :]
                node.add(text[: mapping.generated_column])
                last_column = mapping.generated_column
            last_mapping = mapping

        if line_index < len(remaining):
            if last_mapping is not None:
                add_mapped(last_mapping, next_line())
            node.add("".join(remaining[line_index:]))

        for source in consumer.sources:
            content = consumer.source_content_for(source)
            if content is not None:
                node.set_source_content(source, content)
        return node


class _SourceMapGenerator:
    """Accumulates mappings and serializes them as a version 3 map."""

    def __init__(self, file: str | None = None) -> None:
        self._file = file
        self._mappings: list[Mapping] = []
        self._sources: dict[str, int] = {}
        self._names: dict[str, int] = {}
        self._contents: dict[str, str] = {}

    def add(self, mapping: Mapping) -> None:
        if mapping.source is not None:
            self._sources.setdefault(mapping.source, len(self._sources))
        if mapping.name is not None:
            self._names.setdefault(mapping.name, len(self._names))
        self._mappings.append(mapping)

    def set_source_content(self, source: str, content: str) -> None:
        self._contents[source] = content

    def to_json(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "version": 3,
            "sources": list(self._sources),
            "names": list(self._names),
            "mappings": self._encode(),
        }
        if self._file is not None:
            result["file"] = self._file
        if self._contents:
            result["sourcesContent"] = [self._contents.get(source) for source in self._sources]
        return result

    def _encode(self) -> str:
        lines: list[str] = []
        segments: list[str] = []
        current_line = 1
        previous_column = 0
        previous_source = 0
        previous_original_line = 0
        previous_original_column = 0
        previous_name = 0

        for mapping in self._mappings:
            while current_line < mapping.generated_line:
                lines.append(",".join(segments))
                segments = []
                current_line += 1
                previous_column = 0

            segment = encode_vlq(mapping.generated_column - previous_column)
            previous_column = mapping.generated_column
            if mapping.source is not None and mapping.original_line is not None:
                source_index = self._sources[mapping.source]
                original_line = mapping.original_line - 1
                original_column = mapping.original_column or 0
                segment += encode_vlq(source_index - previous_source)
                segment += encode_vlq(original_line - previous_original_line)
                segment += encode_vlq(original_column - previous_original_column)
                previous_source = source_index
                previous_original_line = original_line
                previous_original_column = original_column
                if mapping.name is not None:
                    name_index = self._names[mapping.name]
                    segment += encode_vlq(name_index - previous_name)
                    previous_name = name_index
            segments.append(segment)

        lines.append(",".join(segments))
        return ";".join(lines)


def identity_node(code: str, path: str) -> SourceNode:
    """Build a node mapping every line of code onto the same line of path.

    Example:
        >>> identity_node("a();\\nb();", "app/x.js").to_string()
        'a();\\nb();'
    """
    node = SourceNode()
    for line_number, line in enumerate(split_lines(code), start=1):
        node.add(SourceNode(line_number, 0, path, line))
    return node
