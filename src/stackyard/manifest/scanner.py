"""Indentation scanner for the manifest document.

The manifest is edited as text so that everything outside the touched
service block survives byte-for-byte. This module locates the top-level
``services:`` section and the extent of each service block inside it:
a block starts at a key line at the section's service indentation and runs
through every following line that is indented deeper. Blank lines between
nested lines belong to the block; blank lines after its last nested line
do not.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from stackyard.lib.errors import ManifestError

DEFAULT_SERVICE_INDENT = 2

SERVICES_HEADER = re.compile(r"^services\s*:\s*(#.*)?$")
FLOW_SERVICES_HEADER = re.compile(r"^services\s*:\s*[\[{]")
SERVICE_KEY = re.compile(
    r"""^(?:"(?P<dq>[^"]+)"|'(?P<sq>[^']+)'|(?P<bare>[^\s:#'"][^:#]*?))\s*:\s*(?:#.*)?$"""
)
REPLICAS_LINE = re.compile(
    r"^(?P<indent>[ ]*)replicas\s*:\s*(?P<value>[^\s#]*)(?P<rest>\s*(?:#.*)?)$"
)


@dataclass(frozen=True)
class BlockExtent:
    """Line range of one service block.

    Attributes:
        name: Service key
        start: Index of the key line
        end: Index one past the block's last nested line
        indent: Indentation of the key line
    """

    name: str
    start: int
    end: int
    indent: int


@dataclass
class ManifestLayout:
    """Result of scanning a manifest document.

    Attributes:
        lines: Document lines, line endings preserved
        services_line: Index of the ``services:`` header, or None if absent
        section_end: Index one past the services section
        service_indent: Indentation of service keys
        blocks: Service blocks in document order
    """

    lines: list[str]
    services_line: int | None
    section_end: int
    service_indent: int = DEFAULT_SERVICE_INDENT
    blocks: list[BlockExtent] = field(default_factory=list)

    def find(self, name: str) -> BlockExtent | None:
        """Return the block keyed exactly by ``name``, if present."""
        for block in self.blocks:
            if block.name == name:
                return block
        return None

    def block_text(self, block: BlockExtent) -> str:
        """Return the raw text of a block."""
        return "".join(self.lines[block.start : block.end])

    def insertion_point(self) -> int:
        """Index at which a new block is inserted to end up last in the section."""
        if self.services_line is None:
            return len(self.lines)
        last = self.services_line
        for index in range(self.services_line + 1, self.section_end):
            if not _is_blank(self.lines[index]):
                last = index
        return last + 1


def indent_of(line: str) -> int:
    """Number of leading spaces of a line."""
    return len(line) - len(line.lstrip(" "))


def _is_blank(line: str) -> bool:
    return not line.strip()


def _is_comment(line: str) -> bool:
    return line.lstrip().startswith("#")


def _parse_key(line: str) -> str | None:
    match = SERVICE_KEY.match(line.strip())
    if not match:
        return None
    return match.group("dq") or match.group("sq") or match.group("bare")


def scan(text: str, source: str = "<manifest>") -> ManifestLayout:
    """Scan a manifest document into its services section and blocks.

    Args:
        text: Full document text
        source: Name used in error messages (usually the file path)

    Returns:
        ManifestLayout describing the document

    Raises:
        ManifestError: If the services section uses flow style or two blocks
            share the same key
    """
    lines = text.splitlines(keepends=True)

    services_line: int | None = None
    for index, line in enumerate(lines):
        if indent_of(line) != 0:
            continue
        if SERVICES_HEADER.match(line.rstrip("\r\n")):
            services_line = index
            break
        if FLOW_SERVICES_HEADER.match(line):
            raise ManifestError(source, "flow-style 'services' section is not supported")

    if services_line is None:
        return ManifestLayout(lines=lines, services_line=None, section_end=len(lines))

    section_end = len(lines)
    service_indent: int | None = None
    for index in range(services_line + 1, len(lines)):
        line = lines[index]
        if _is_blank(line) or _is_comment(line):
            continue
        if indent_of(line) == 0:
            section_end = index
            break
        if service_indent is None:
            service_indent = indent_of(line)

    layout = ManifestLayout(
        lines=lines,
        services_line=services_line,
        section_end=section_end,
        service_indent=service_indent or DEFAULT_SERVICE_INDENT,
    )

    seen: set[str] = set()
    index = services_line + 1
    while index < section_end:
        line = lines[index]
        if (
            _is_blank(line)
            or _is_comment(line)
            or indent_of(line) != layout.service_indent
        ):
            index += 1
            continue

        name = _parse_key(line)
        if name is None:
            index += 1
            continue

        last = index
        cursor = index + 1
        while cursor < section_end:
            nested = lines[cursor]
            if _is_blank(nested):
                cursor += 1
                continue
            if indent_of(nested) <= layout.service_indent:
                break
            last = cursor
            cursor += 1

        if name in seen:
            raise ManifestError(source, f"service '{name}' is declared more than once")
        seen.add(name)
        layout.blocks.append(
            BlockExtent(
                name=name, start=index, end=last + 1, indent=layout.service_indent
            )
        )
        index = last + 1

    return layout


def replace_replicas(line: str, replicas: int) -> str | None:
    """Rewrite a ``replicas:`` line with a new value.

    Indentation, trailing comment and line ending are kept.

    Returns:
        The rewritten line, or None if ``line`` is not a replicas line
    """
    body = line.rstrip("\r\n")
    ending = line[len(body) :]
    match = REPLICAS_LINE.match(body)
    if not match:
        return None
    return f"{match.group('indent')}replicas: {replicas}{match.group('rest')}{ending}"


def _children(lines: list[str], start: int, end: int, parent_indent: int) -> list[int]:
    """Indices of the direct children of the key line at ``start``."""
    children: list[int] = []
    child_indent: int | None = None
    for index in range(start + 1, end):
        line = lines[index]
        if _is_blank(line) or _is_comment(line):
            continue
        indent = indent_of(line)
        if indent <= parent_indent:
            break
        if child_indent is None:
            child_indent = indent
        if indent == child_indent:
            children.append(index)
    return children


def find_replicas_line(layout: ManifestLayout, block: BlockExtent) -> int | None:
    """Return the index of the block's ``deploy.replicas`` line.

    Only the ``replicas`` key directly under the block's own ``deploy``
    mapping counts; keys of the same name elsewhere in the block (an
    environment variable, a label) are ignored.
    """
    lines = layout.lines
    for index in _children(lines, block.start, block.end, block.indent):
        if _parse_key(lines[index]) != "deploy":
            continue
        deploy_indent = indent_of(lines[index])
        for child in _children(lines, index, block.end, deploy_indent):
            if REPLICAS_LINE.match(lines[child].rstrip("\r\n")):
                return child
        return None
    return None
