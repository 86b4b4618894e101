"""Registration of generated files in MSBuild project manifests.

Classic ``.csproj`` files list every source file explicitly, so each file the
generator writes is added as a ``Compile`` / ``TypeScriptCompile`` /
``Content`` / ``None`` item, optionally nested under a parent file through
``DependentUpon``.  SDK-style projects glob their sources and only need an
``Update`` item when nesting is requested.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path, PureWindowsPath
from typing import Optional
from xml.parsers import expat
from xml.sax.saxutils import escape, quoteattr

BOM = b"\xef\xbb\xbf"

_ITEM_KINDS: dict[str, str] = {
    ".cs": "Compile",
    ".ts": "TypeScriptCompile",
    ".tt": "None",
}


class ProjectFileError(Exception):
    """Raised when a project file exists but cannot be parsed."""

    def __init__(self, message: str, project_file: str | Path = ""):
        self.project_file = str(project_file)
        super().__init__(message)


def item_kind(relative_file: str) -> str:
    """MSBuild item element for a file, chosen by extension."""
    suffix = PureWindowsPath(relative_file).suffix.lower()
    return _ITEM_KINDS.get(suffix, "Content")


def to_project_path(relative_file: str | Path) -> str:
    """Normalise a relative path to the backslash form used in manifests."""
    return str(PureWindowsPath(str(relative_file).replace("/", "\\")))


def add_file_to_project(
    project_file: str | Path,
    relative_file: str | Path,
    dependent_upon: Optional[str | Path] = None,
) -> bool:
    """Register *relative_file* in *project_file*.

    The manifest is edited in place: the new item is spliced into the
    original bytes with the indentation of its neighbours, so comments,
    attribute order and the XML declaration stay as they were.

    Args:
        project_file: The ``.csproj`` to update.
        relative_file: File path relative to the project folder.
        dependent_upon: Optional parent file; only its file name is written,
            since MSBuild resolves it against the item's own folder.

    Returns:
        ``True`` when the manifest was changed.

    Raises:
        ProjectFileError: If the manifest is not valid XML.
    """
    path = Path(project_file)
    if not path.is_file():
        return False

    raw = path.read_bytes()
    has_bom = raw.startswith(BOM)
    body = raw[len(BOM):] if has_bom else raw
    newline = b"\r\n" if b"\r\n" in body else b"\n"

    try:
        root = ET.fromstring(body)
        layout = _scan_layout(body)
    except (ET.ParseError, expat.ExpatError) as exc:
        raise ProjectFileError(f"Invalid project file {path}: {exc}", path) from exc

    ns = root.tag[1:].split("}", 1)[0] if root.tag.startswith("{") else ""

    def q(name: str) -> str:
        return f"{{{ns}}}{name}" if ns else name

    include = to_project_path(relative_file)
    sdk_style = root.get("Sdk") is not None
    if sdk_style and dependent_upon is None:
        return False

    item_groups = root.findall(q("ItemGroup"))
    for group in item_groups:
        for item in group:
            if not isinstance(item.tag, str):
                continue
            value = item.get("Include") or item.get("Update")
            if value and to_project_path(value).lower() == include.lower():
                return False

    kind = item_kind(include)
    parent_name = (
        PureWindowsPath(to_project_path(dependent_upon)).name
        if dependent_upon is not None else None
    )
    attribute = "Update" if sdk_style else "Include"
    unit = _indent_before(body, layout.root_children[0]) if layout.root_children else b""
    unit = unit or b"  "

    target = next(
        (i for i, g in enumerate(item_groups) if g.find(q(kind)) is not None), None
    )
    if target is not None:
        placed = layout.item_groups[target]
        group_indent = _indent_before(body, placed.start)
        item_indent = _indent_before(body, placed.children[-1]) if placed.children else b""
        item_indent = item_indent or group_indent + unit
        element = _item_xml(kind, attribute, include, parent_name, item_indent, unit, newline)
        body = _insert_line(body, placed.end, item_indent + element, newline)
    else:
        element = _item_xml(kind, attribute, include, parent_name, unit * 2, unit, newline)
        block = unit + b"<ItemGroup>" + newline + unit * 2 + element + newline + unit + b"</ItemGroup>"
        body = _insert_line(body, layout.root_end, block, newline)

    path.write_bytes((BOM if has_bom else b"") + body)
    return True


# ---------------------------------------------------------------------------
# Byte-level layout
# ---------------------------------------------------------------------------


@dataclass
class _GroupLayout:
    start: int
    end: int = 0
    children: list[int] = field(default_factory=list)


@dataclass
class _Layout:
    """Byte offsets of the root's children and ItemGroups within the manifest."""

    root_children: list[int] = field(default_factory=list)
    item_groups: list[_GroupLayout] = field(default_factory=list)
    root_end: int = 0


def _scan_layout(body: bytes) -> _Layout:
    layout = _Layout()
    parser = expat.ParserCreate(namespace_separator="}")
    depth = 0
    group: Optional[_GroupLayout] = None

    def start(name: str, _attrs: dict[str, str]) -> None:
        nonlocal depth, group
        depth += 1
        offset = parser.CurrentByteIndex
        if depth == 2:
            layout.root_children.append(offset)
            if name.rsplit("}", 1)[-1] == "ItemGroup":
                group = _GroupLayout(offset)
                layout.item_groups.append(group)
        elif depth == 3 and group is not None:
            group.children.append(offset)

    def end(_name: str) -> None:
        nonlocal depth, group
        offset = parser.CurrentByteIndex
        if depth == 1:
            layout.root_end = offset
        elif depth == 2 and group is not None:
            group.end = offset
            group = None
        depth -= 1

    parser.StartElementHandler = start
    parser.EndElementHandler = end
    parser.Parse(body, True)
    return layout


def _indent_before(body: bytes, offset: int) -> bytes:
    """Whitespace between the start of the line and *offset*, if only whitespace."""
    line_start = body.rfind(b"\n", 0, offset) + 1
    prefix = body[line_start:offset]
    return prefix if not prefix.strip() else b""


def _insert_line(body: bytes, offset: int, line: bytes, newline: bytes) -> bytes:
    """Insert *line* as its own line just before the closing tag at *offset*."""
    line_start = body.rfind(b"\n", 0, offset) + 1
    if body[line_start:offset].strip():
        return body[:offset] + line.lstrip() + body[offset:]
    return body[:line_start] + line + newline + body[line_start:]


def _item_xml(
    kind: str,
    attribute: str,
    value: str,
    parent_name: Optional[str],
    indent: bytes,
    unit: bytes,
    newline: bytes,
) -> bytes:
    head = f"<{kind} {attribute}={quoteattr(value)}".encode("utf-8")
    if parent_name is None:
        return head + b" />"
    parent = f"<DependentUpon>{escape(parent_name)}</DependentUpon>".encode("utf-8")
    return (
        head + b">" + newline
        + indent + unit + parent + newline
        + indent + f"</{kind}>".encode("utf-8")
    )
