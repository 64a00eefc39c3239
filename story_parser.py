import os
import posixpath
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from tag_codec import split_comment

MAJOR = "knot"
MINOR = "stitch"

NAME = r"[A-Za-z0-9]+(?:_[A-Za-z0-9]+)*"
KNOT_PATTERN = re.compile(r"^={2,}\s*(function\s+)?(\S+?)\s*(\([^)]*\))?\s*=*\s*$")
STITCH_PATTERN = re.compile(r"^=\s*(\S+?)\s*(\([^)]*\))?\s*$")
DECL_PATTERN = re.compile(r"^(VAR|CONST|TEMP)\s+(\w+)\s*=\s*(.+)$")
INCLUDE_PATTERN = re.compile(r"^INCLUDE\s+(.+)$")
CHOICE_PATTERN = re.compile(r"^([*+](?:\s*[*+])*)\s*(.*)$")
GATHER_PATTERN = re.compile(r"^(-(?:\s*-)*)(?!>)\s*(.*)$")
LABEL_PATTERN = re.compile(r"^\(\s*\w+\s*\)\s*")
DIVERT_TARGET = re.compile(r"\s*([\w.]+)")


@dataclass
class DebugMetadata:
    file_name: Optional[str]
    start_line_number: int


@dataclass(eq=False)
class Node:
    content: List["Node"] = field(default_factory=list)
    debug: Optional[DebugMetadata] = None


@dataclass(eq=False)
class Text(Node):
    text: str = ""


@dataclass(eq=False)
class Container(Node):
    kind: str = MAJOR
    name: str = ""


@dataclass(eq=False)
class Tag(Node):
    text: str = ""


@dataclass(eq=False)
class LogicContext(Node):
    pass


@dataclass(eq=False)
class Assignment(LogicContext):
    variable: str = ""


@dataclass(eq=False)
class Interpolation(LogicContext):
    pass


@dataclass(eq=False)
class Other(Node):
    type_name: str = ""
    target: str = ""


@dataclass
class Story:
    root: Other
    file_names: List[str] = field(default_factory=list)
    knots: Dict[str, Container] = field(default_factory=dict)


class ParseError(Exception):
    def __init__(self, message: str, file_name: Optional[str] = None, line: int = 0):
        self.message = message
        self.file_name = file_name
        self.line = line
        where = ""
        if file_name:
            where = f"'{file_name}' "
        if line:
            where += f"line {line}: "
        super().__init__(f"{where}{message}")


class StoryParser:
    def parse(
        self,
        text: str,
        file_name: str = "main.ink",
        files: Optional[Dict[str, str]] = None,
        base_dir: Optional[str] = None,
    ) -> Story:
        self._files = files or {}
        self._base_dir = base_dir
        self._visited: Set[str] = set()
        root = Other(type_name="Story", debug=DebugMetadata(file_name, 1))
        self._story = Story(root=root)
        self._parse_file(text, file_name, root)
        return self._story

    def _parse_file(self, text: str, file_name: str, parent: Node) -> None:
        self._visited.add(file_name)
        self._story.file_names.append(file_name)
        text = text.lstrip("\ufeff")
        current_knot: Optional[Container] = None
        current_stitch: Optional[Container] = None

        for i, raw in enumerate(text.split("\n")):
            line_no = i + 1
            code, _comment = split_comment(raw.rstrip("\r"))
            stripped = code.strip()
            if not stripped:
                continue
            meta = DebugMetadata(file_name, line_no)
            target = current_stitch or current_knot or parent

            m = INCLUDE_PATTERN.match(stripped)
            if m:
                self._include(m.group(1).strip(), file_name, line_no, parent)
                continue

            if stripped.startswith("=="):
                current_knot = self._parse_knot(stripped, meta)
                current_stitch = None
                parent.content.append(current_knot)
                continue

            if stripped.startswith("="):
                if current_knot is None:
                    raise ParseError("Stitch defined outside of a knot.", file_name, line_no)
                current_stitch = self._parse_stitch(stripped, current_knot, meta)
                current_knot.content.append(current_stitch)
                continue

            if stripped.startswith("~"):
                target.content.append(self._parse_logic(stripped[1:].strip(), meta))
                continue

            m = DECL_PATTERN.match(stripped)
            if m:
                assign = Assignment(variable=m.group(2), debug=meta)
                assign.content.append(Text(text=m.group(3).strip(), debug=meta))
                target.content.append(assign)
                continue
            if stripped.startswith(("VAR ", "CONST ", "TEMP ")):
                raise ParseError("Invalid variable declaration.", file_name, line_no)

            if stripped.startswith("->"):
                node = Other(type_name="Divert", debug=meta)
                node.content = self._parse_inline(stripped, False, meta)
                target.content.append(node)
                continue

            m = CHOICE_PATTERN.match(stripped)
            if m:
                node = Other(type_name="Choice", debug=meta)
                body = LABEL_PATTERN.sub("", m.group(2), count=1)
                node.content = self._parse_inline(body, True, meta)
                target.content.append(node)
                continue

            m = GATHER_PATTERN.match(stripped)
            if m:
                node = Other(type_name="Gather", debug=meta)
                body = LABEL_PATTERN.sub("", m.group(2), count=1)
                node.content = self._parse_inline(body, False, meta)
                target.content.append(node)
                continue

            node = Other(type_name="Line", debug=meta)
            node.content = self._parse_inline(stripped, False, meta)
            target.content.append(node)

    def _include(self, name: str, from_file: str, line_no: int, parent: Node) -> None:
        resolved = posixpath.normpath(posixpath.join(posixpath.dirname(from_file), name))
        if resolved in self._visited:
            return
        text = self._files.get(resolved)
        if text is None:
            text = self._read_from_disk(resolved)
        if text is None:
            raise ParseError(f"Included file not found: {name}", from_file, line_no)
        node = Other(type_name="Include", target=resolved, debug=DebugMetadata(from_file, line_no))
        parent.content.append(node)
        self._parse_file(text, resolved, node)

    def _read_from_disk(self, name: str) -> Optional[str]:
        if self._base_dir is None:
            return None
        path = os.path.join(self._base_dir, *name.split("/"))
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except OSError:
            return None

    def _parse_knot(self, line: str, meta: DebugMetadata) -> Container:
        m = KNOT_PATTERN.match(line)
        if not m or not re.fullmatch(NAME, m.group(2)):
            raise ParseError("Invalid knot name.", meta.file_name, meta.start_line_number)
        name = m.group(2)
        if name in self._story.knots:
            raise ParseError(f"Duplicate knot name: {name}", meta.file_name, meta.start_line_number)
        knot = Container(kind=MAJOR, name=name, debug=meta)
        self._story.knots[name] = knot
        return knot

    def _parse_stitch(self, line: str, knot: Container, meta: DebugMetadata) -> Container:
        m = STITCH_PATTERN.match(line)
        if not m or not re.fullmatch(NAME, m.group(1)):
            raise ParseError("Invalid stitch name.", meta.file_name, meta.start_line_number)
        name = m.group(1)
        for child in knot.content:
            if isinstance(child, Container) and child.name == name:
                raise ParseError(
                    f"Duplicate stitch name: {knot.name}.{name}", meta.file_name, meta.start_line_number
                )
        return Container(kind=MINOR, name=name, debug=meta)

    def _parse_logic(self, body: str, meta: DebugMetadata) -> Assignment:
        m = re.match(r"(?:temp\s+)?(\w+)\s*(?:=|\+=|-=|\*=|/=)\s*(.+)", body)
        if m:
            node = Assignment(variable=m.group(1), debug=meta)
            node.content.append(Text(text=m.group(2).strip(), debug=meta))
            return node
        # bare function call or expression
        node = Assignment(debug=meta)
        node.content.append(Text(text=body, debug=meta))
        return node

    def _parse_inline(self, body: str, allow_brackets: bool, meta: DebugMetadata) -> List[Node]:
        nodes: List[Node] = []
        buf: List[str] = []
        in_bracket = False
        bracket_used = False
        i = 0
        n = len(body)

        def flush():
            if buf:
                nodes.append(Text(text="".join(buf), debug=meta))
                buf.clear()

        while i < n:
            ch = body[i]
            if ch == "\\" and i + 1 < n:
                buf.append(body[i + 1])
                i += 2
                continue
            if ch == "{":
                end = self._matching_brace(body, i)
                if end == -1:
                    raise ParseError("Missing closing '}'.", meta.file_name, meta.start_line_number)
                flush()
                inner = Interpolation(debug=meta)
                inner.content.append(Text(text=body[i + 1:end], debug=meta))
                nodes.append(inner)
                i = end + 1
                continue
            if ch == "[" and allow_brackets and not bracket_used:
                flush()
                in_bracket = True
                bracket_used = True
                i += 1
                continue
            if ch == "]" and in_bracket:
                flush()
                in_bracket = False
                i += 1
                continue
            if ch == "#":
                flush()
                j = i + 1
                while j < n and body[j] != "#" and not (in_bracket and body[j] == "]"):
                    j += 1
                nodes.append(Tag(text=body[i + 1:j].strip(), debug=meta))
                i = j
                continue
            if body.startswith("->", i):
                flush()
                m = DIVERT_TARGET.match(body, i + 2)
                divert = Other(type_name="Divert", debug=meta)
                if m:
                    divert.target = m.group(1)
                    i = m.end()
                else:
                    i += 2
                nodes.append(divert)
                continue
            buf.append(ch)
            i += 1

        if in_bracket:
            raise ParseError("Missing closing ']' in choice.", meta.file_name, meta.start_line_number)
        flush()
        nodes.append(Text(text="\n", debug=meta))
        return nodes

    def _matching_brace(self, body: str, start: int) -> int:
        depth = 0
        for j in range(start, len(body)):
            if body[j] == "{":
                depth += 1
            elif body[j] == "}":
                depth -= 1
                if depth == 0:
                    return j
        return -1


def parse(
    text: str,
    file_name: str = "main.ink",
    files: Optional[Dict[str, str]] = None,
    base_dir: Optional[str] = None,
) -> Story:
    return StoryParser().parse(text, file_name, files, base_dir)
