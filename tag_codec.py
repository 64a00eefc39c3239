import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from errors import MultipleTagsError

TAG_LOC = "id:"
TAG_MARK = "#" + TAG_LOC
CODE_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

# "#id:" + zero or more "Name_" segments + 4 alphanumerics, and nothing
# identifier-like glued on after it.
TAG_PATTERN = re.compile(r"#id:((?:[A-Za-z0-9]+_)*[A-Za-z0-9]{4})(?![A-Za-z0-9_])")
STRIP_PATTERN = re.compile(r" ?" + TAG_PATTERN.pattern)
ID_PATTERN = re.compile(r"(?:[A-Za-z0-9]+_)*[A-Za-z0-9]{4}")
CHOICE_PATTERN = re.compile(r"^\s*[*+](?:\s*[*+])*")
LOOSE_TAG_PATTERN = re.compile(r"#id:[A-Za-z0-9_]+")


@dataclass(frozen=True)
class TagMatch:
    identifier: str
    start: int
    end: int

    @property
    def text(self) -> str:
        return TAG_MARK + self.identifier


@dataclass(frozen=True)
class LineId:
    """An identifier and the 1-based line that carries it."""
    line: int
    identifier: str


def format_tag(identifier: str) -> str:
    return f"{TAG_MARK}{identifier}"


def is_identifier(value: str) -> bool:
    return bool(ID_PATTERN.fullmatch(value or ""))


def find_all_tags(line: str) -> List[TagMatch]:
    return [TagMatch(m.group(1), m.start(), m.end()) for m in TAG_PATTERN.finditer(line)]


def detect_tag(line: str, strict: bool = False) -> Optional[TagMatch]:
    """Locate the managed id tag on ``line``.

    The first match is authoritative. With ``strict`` a second tag on the
    same line raises ``MultipleTagsError`` instead of being ignored.
    """
    if strict:
        found = find_all_tags(line)
        if len(found) > 1:
            raise MultipleTagsError(line, [t.identifier for t in found])
        return found[0] if found else None
    m = TAG_PATTERN.search(line)
    if not m:
        return None
    return TagMatch(m.group(1), m.start(), m.end())


def detect_code_tag(line: str, strict: bool = False) -> Optional[TagMatch]:
    """Like ``detect_tag`` but ignores anything inside a trailing ``//`` comment.

    Offsets are valid for ``line`` itself since the code portion is a prefix.
    """
    return detect_tag(split_comment(line)[0], strict=strict)


def strip_tag(line: str, match: Optional[TagMatch] = None) -> str:
    """Remove the managed tag and one separating space before it.

    Without ``match`` only the code portion is searched; commented-out tags
    are plain text.
    """
    if match is None:
        match = detect_code_tag(line)
    if match is None:
        return line
    start = match.start
    if start > 0 and line[start - 1] == " ":
        start -= 1
    return line[:start] + line[match.end:]


def strip_all_tags(text: str) -> str:
    """Remove every managed tag outside comments (clipboard and paste cleanup)."""
    if TAG_MARK not in text:
        return text
    out = []
    for line in text.split("\n"):
        code, comment = split_comment(line)
        out.append(STRIP_PATTERN.sub("", code) + comment)
    return "\n".join(out)


def split_comment(line: str) -> Tuple[str, str]:
    """Split ``line`` into its code portion and a trailing ``//`` comment.

    ``//`` inside a double-quoted span closed on the same line does not start
    a comment, and neither does an escaped ``\\//``. An unclosed quote
    protects nothing.
    """
    idx = _comment_start(line, honour_quotes=True)
    if idx is None:
        return line, ""
    return line[:idx], line[idx:]


def _comment_start(line: str, honour_quotes: bool) -> Optional[int]:
    in_quote = False
    quote_open = -1
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == "\\":
            i += 2
            continue
        if honour_quotes and ch == '"':
            in_quote = not in_quote
            quote_open = i
        elif ch == "/" and not in_quote and line.startswith("//", i):
            return i
        i += 1
    if in_quote and honour_quotes:
        # quote never closed: rescan from the dangling quote as plain text
        rest = _comment_start(line[quote_open:], honour_quotes=False)
        return None if rest is None else quote_open + rest
    return None


def _choice_bracket(code: str) -> Optional[Tuple[int, int]]:
    # "*" and "+" open a choice; gathers ("-") have no choice-only text
    m = CHOICE_PATTERN.match(code)
    if not m:
        return None
    depth = 0
    open_at = -1
    i = m.end()
    n = len(code)
    while i < n:
        ch = code[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "{":
            depth += 1
        elif ch == "}" and depth:
            depth -= 1
        elif depth:
            pass
        elif ch == "[" and open_at < 0:
            open_at = i
        elif ch == "]" and open_at >= 0:
            return open_at, i
        i += 1
    return None


def inject_tag(line: str, identifier: str) -> str:
    """Insert `` #id:<identifier>`` into ``line``.

    Bracketed choices get the tag just before the closing bracket; every
    other line gets it at the end of the code portion, ahead of any trailing
    comment. Blank lines are returned untouched.
    """
    code, _comment = split_comment(line)
    if not code.strip():
        return line
    tag = " " + format_tag(identifier)
    bracket = _choice_bracket(code)
    if bracket is not None:
        pos = len(code[:bracket[1]].rstrip())
    else:
        pos = len(code.rstrip())
    return line[:pos] + tag + line[pos:]


def normalize_tag_spacing(line: str) -> str:
    """Put a space before ``#id:`` and after a complete tag glued to a word."""
    if TAG_MARK not in line:
        return line
    line = re.sub(r"(\S)(#id:)", r"\1 \2", line)
    out: List[str] = []
    last = 0
    for m in LOOSE_TAG_PATTERN.finditer(line):
        body_start = m.start() + len(TAG_MARK)
        body = line[body_start:m.end()]
        cut = None
        if ID_PATTERN.fullmatch(body):
            after = line[m.end():m.end() + 1]
            if after and not after.isspace() and after not in "/]":
                cut = m.end()
        else:
            # overflow: split after the last "_XXXX" run
            shift = 0 if "_" in body else 1
            suffix = None
            for s in re.finditer(r"_[A-Za-z0-9]{4}", "_" * shift + body):
                suffix = s
            if suffix is not None and suffix.end() - shift < len(body):
                cut = body_start + suffix.end() - shift
        if cut is not None:
            out.append(line[last:cut])
            out.append(" ")
            last = cut
    out.append(line[last:])
    return "".join(out)
