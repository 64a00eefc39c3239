import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Set

from tag_codec import LineId, detect_code_tag, inject_tag, normalize_tag_spacing, split_comment, strip_tag

logger = logging.getLogger(__name__)


@dataclass
class Extraction:
    clean_content: str
    ids_by_line: List[LineId] = field(default_factory=list)


def extract(content: str, repair: bool = False, strict: bool = False) -> Extraction:
    """Strip managed tags from ``content`` and record which line had which id.

    Lines are split on ``\\n`` only, so ``\\r\\n`` endings and a trailing
    newline come back unchanged from ``reconstruct``. Text inside a ``//``
    comment is left alone, tags included.
    """
    lines = content.split("\n")
    ids: List[LineId] = []
    for i, line in enumerate(lines):
        if repair:
            code, comment = split_comment(line)
            line = normalize_tag_spacing(code) + comment
        match = detect_code_tag(line, strict=strict)
        if match is None:
            lines[i] = line
            continue
        lines[i] = strip_tag(line, match)
        ids.append(LineId(i + 1, match.identifier))
    return Extraction("\n".join(lines), ids)


def reconstruct(clean_content: str, associations: Iterable[LineId]) -> str:
    """Inject each association's tag into its line of ``clean_content``.

    Associations whose line no longer exists are skipped, and a line gets at
    most one tag.
    """
    lines = clean_content.split("\n")
    done: Set[int] = set()
    for assoc in associations:
        idx = assoc.line - 1
        if idx < 0 or idx >= len(lines):
            logger.debug("No line %d for id %s", assoc.line, assoc.identifier)
            continue
        if idx in done:
            logger.warning("Line %d already tagged, dropping id %s", assoc.line, assoc.identifier)
            continue
        if detect_code_tag(lines[idx]) is not None:
            logger.warning("Line %d already carries a tag, dropping id %s", assoc.line, assoc.identifier)
            continue
        if not split_comment(lines[idx])[0].strip():
            logger.warning("Line %d has no code to tag, dropping id %s", assoc.line, assoc.identifier)
            continue
        lines[idx] = inject_tag(lines[idx], assoc.identifier)
        done.add(idx)
    return "\n".join(lines)


def ids_in(content: str) -> List[str]:
    result = []
    for line in content.split("\n"):
        match = detect_code_tag(line)
        if match is not None:
            result.append(match.identifier)
    return result
