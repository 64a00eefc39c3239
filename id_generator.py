"""
Line ID generator

Walks a parsed story, finds narrative lines that do not carry an ``#id:`` tag
yet and mints a project-wide unique identifier for each of them.

An identifier is the names of the enclosing knot and stitch, each followed by
an underscore, plus a random 4-character code::

  === Forest ===
  = Clearing
  The trees thin out.        ->  Forest_Clearing_7K2Q

Lines inside ``~`` logic, variable declarations and ``{...}`` interpolations
are never tagged. A line that already carries a tag keeps it, and its id is
reserved so new codes never collide with it.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from errors import GenerationExhausted
from story_parser import Container, LogicContext, Node, Story, Tag, Text
from tag_codec import CODE_CHARS, detect_tag, format_tag

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 100
CODE_LENGTH = 4

_system_random = random.SystemRandom()


@dataclass(frozen=True)
class IdEdit:
    file: Optional[str]
    line: int
    text: str
    new_id: str

    @property
    def full_tag(self) -> str:
        return format_tag(self.new_id)


@dataclass
class Candidate:
    node: Text
    siblings: Sequence[Node]
    index: int
    ancestry: Tuple[Container, ...]
    file_name: Optional[str]
    line: int

    @property
    def text(self) -> str:
        return self.node.text.strip()


@dataclass
class GenerationResult:
    edits: List[IdEdit] = field(default_factory=list)
    failures: List[GenerationExhausted] = field(default_factory=list)
    found_ids: Set[str] = field(default_factory=set)
    used_ids: Set[str] = field(default_factory=set)

    def edits_for(self, file: Optional[str]) -> List[IdEdit]:
        return [e for e in self.edits if e.file == file]


def generate_random_code(length: int = CODE_LENGTH, rng: Optional[random.Random] = None) -> str:
    """Random code from A-Z and 0-9."""
    rng = rng or _system_random
    return "".join(rng.choice(CODE_CHARS) for _ in range(length))


def loc_prefix(ancestry: Iterable[Container]) -> str:
    return "".join(f"{c.name}_" for c in ancestry if c.name)


def collect_candidates(story: Story) -> List[Candidate]:
    """Every narrative ``Text`` node outside logic, in source order."""
    found: List[Candidate] = []
    ancestry: List[Container] = []

    def visit(node: Node, siblings: Sequence[Node], index: int, logic_depth: int) -> None:
        if isinstance(node, Text):
            if logic_depth == 0 and node.text.strip() and node.debug is not None:
                found.append(
                    Candidate(
                        node=node,
                        siblings=siblings,
                        index=index,
                        ancestry=tuple(ancestry),
                        file_name=node.debug.file_name,
                        line=node.debug.start_line_number,
                    )
                )
            return
        entered = isinstance(node, Container) and bool(node.name)
        if entered:
            ancestry.append(node)
        if isinstance(node, LogicContext):
            logic_depth += 1
        for i, child in enumerate(node.content):
            visit(child, node.content, i, logic_depth)
        if entered:
            ancestry.pop()

    visit(story.root, [story.root], 0, 0)
    return found


def _tag_id(node: Tag) -> Optional[str]:
    m = detect_tag("#" + node.text)
    return m.identifier if m else None


def find_tag_id(candidate: Candidate) -> Optional[str]:
    """Id of the tag attached to ``candidate``.

    A tag is attached when it follows the text before the next non-empty
    text or the line break.
    """
    for node in candidate.siblings[candidate.index + 1:]:
        if isinstance(node, Tag):
            found = _tag_id(node)
            if found:
                return found
        elif isinstance(node, Text):
            if "\n" in node.text or node.text.strip():
                break
    return None


def _line_tag_ids(candidate: Candidate) -> List[str]:
    ids = []
    for node in candidate.siblings:
        if isinstance(node, Tag) and node.debug and node.debug.start_line_number == candidate.line:
            found = _tag_id(node)
            if found:
                ids.append(found)
    return ids


class IdGenerator:
    def __init__(
        self,
        max_attempts: int = MAX_ATTEMPTS,
        code_length: int = CODE_LENGTH,
        rng: Optional[random.Random] = None,
    ):
        self.max_attempts = max_attempts
        self.code_length = code_length
        self.rng = rng or _system_random

    def new_id(self, prefix: str, used: Set[str]) -> Optional[str]:
        """Draw until a free id turns up; reserve it in ``used``."""
        for _ in range(self.max_attempts):
            candidate = prefix + generate_random_code(self.code_length, self.rng)
            if candidate not in used:
                used.add(candidate)
                return candidate
        return None

    def generate(self, story: Optional[Story], existing_ids: Optional[Iterable[str]] = None) -> GenerationResult:
        result = GenerationResult()
        result.used_ids = set(existing_ids or ())
        if story is None:
            return result

        # one narrative line may be split over several text nodes
        lines: Dict[Tuple[Optional[str], int], List[Candidate]] = {}
        for cand in collect_candidates(story):
            lines.setdefault((cand.file_name, cand.line), []).append(cand)

        untagged: List[List[Candidate]] = []
        for group in lines.values():
            ids = [i for i in (find_tag_id(c) for c in group) if i]
            if not ids:
                ids = _line_tag_ids(group[0])
            if ids:
                result.found_ids.update(ids)
                result.used_ids.update(ids)
            else:
                untagged.append(group)

        for group in untagged:
            first = group[0]
            text = " ".join(c.text for c in group)
            new_id = self.new_id(loc_prefix(first.ancestry), result.used_ids)
            if new_id is None:
                failure = GenerationExhausted(first.file_name, first.line, text, self.max_attempts)
                logger.warning("%s", failure)
                result.failures.append(failure)
                continue
            result.edits.append(IdEdit(file=first.file_name, line=first.line, text=text, new_id=new_id))

        logger.debug(
            "Found %d tagged lines, generated %d ids, %d failures",
            len(lines) - len(untagged),
            len(result.edits),
            len(result.failures),
        )
        return result


def generate_ids_for_untagged(
    story: Optional[Story], existing_ids: Optional[Iterable[str]] = None, **options
) -> GenerationResult:
    return IdGenerator(**options).generate(story, existing_ids)
