"""
Tagging session

Holds everything the tagging engine needs to know about the open project:
raw text of every file, the files open in a buffer with their anchors, which
one is active and ids minted for files that were not active at the time.
Components get the session passed in rather than reaching for globals.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from anchors import AnchorTracker, MemoryBuffer, TextBuffer
from errors import AnchorMissing, StaleResult
from extraction import extract, ids_in, reconstruct
from id_generator import IdEdit
from tag_codec import strip_all_tags, strip_tag

logger = logging.getLogger(__name__)


@dataclass
class Document:
    file: str
    buffer: TextBuffer
    tracker: AnchorTracker

    def clean_content(self) -> str:
        return self.buffer.get_text()

    def full_content(self) -> str:
        return reconstruct(self.buffer.get_text(), self.tracker.current_associations())


@dataclass(frozen=True)
class StagedEdit:
    edit: IdEdit
    line_text: str


class TaggingSession:
    def __init__(
        self,
        files: Optional[Dict[str, str]] = None,
        buffer_factory: Callable[[], TextBuffer] = MemoryBuffer,
        repair: bool = False,
        strict: bool = False,
    ):
        self.files: Dict[str, str] = dict(files or {})
        self.buffer_factory = buffer_factory
        self.repair = repair
        self.strict = strict
        self.documents: Dict[str, Document] = {}
        self.active: Optional[str] = None
        self.staged: Dict[str, List[StagedEdit]] = {}

    # ---------- documents ----------
    def open_document(
        self, file: str, content: Optional[str] = None, buffer: Optional[TextBuffer] = None
    ) -> Document:
        if content is None:
            content = self.files.get(file, "")
        self.files[file] = content
        doc = self.documents.get(file)
        if doc is None:
            buf = buffer if buffer is not None else self.buffer_factory()
            doc = Document(file, buf, AnchorTracker(buf, file))
            self.documents[file] = doc
        elif buffer is not None and buffer is not doc.buffer:
            doc.tracker.clear()
            doc.buffer = buffer
            doc.tracker = AnchorTracker(buffer, file)

        extraction = extract(content, repair=self.repair, strict=self.strict)
        doc.buffer.set_text(extraction.clean_content)
        doc.tracker.rebind(file, extraction.ids_by_line)
        if self.active is None:
            self.active = file
        self._apply_staged(doc)
        return doc

    def close_document(self, file: str) -> None:
        doc = self.documents.pop(file, None)
        if doc is None:
            return
        self.files[file] = doc.full_content()
        doc.tracker.clear()
        if self.active == file:
            self.active = None

    def set_active(self, file: str) -> Document:
        doc = self.documents.get(file)
        if doc is None:
            doc = self.open_document(file)
        self.active = file
        self._apply_staged(doc)
        return doc

    def active_document(self) -> Optional[Document]:
        if self.active is None:
            return None
        return self.documents.get(self.active)

    def clear(self) -> None:
        """Forget the project (project switch)."""
        for doc in self.documents.values():
            doc.tracker.clear()
        self.documents.clear()
        self.files.clear()
        self.staged.clear()
        self.active = None

    # ---------- content ----------
    def clean_content(self, file: str) -> str:
        doc = self.documents.get(file)
        if doc is not None:
            return doc.clean_content()
        return extract(self.files.get(file, "")).clean_content

    def full_content(self, file: str) -> str:
        doc = self.documents.get(file)
        if doc is not None:
            return doc.full_content()
        return self.files.get(file, "")

    def project_files(self) -> Dict[str, str]:
        result = dict(self.files)
        for name, doc in self.documents.items():
            result[name] = doc.full_content()
        return result

    def save_pairs(self) -> List[Tuple[str, str]]:
        """``(file, content)`` pairs for persistence, tags injected."""
        return list(self.project_files().items())

    def sanitize_paste(self, text: str) -> str:
        return strip_all_tags(text)

    # ---------- ids ----------
    def _tagged_lines(self) -> Iterable[Tuple[str, int, str]]:
        for name in sorted(set(self.files) | set(self.documents)):
            doc = self.documents.get(name)
            if doc is not None:
                for item in doc.tracker.current_associations():
                    yield name, item.line, item.identifier
            else:
                for item in extract(self.files[name]).ids_by_line:
                    yield name, item.line, item.identifier

    def existing_ids(self) -> Set[str]:
        ids: Set[str] = set()
        for name, content in self.files.items():
            if name not in self.documents:
                ids.update(ids_in(content))
        for doc in self.documents.values():
            ids.update(doc.tracker.identifiers())
        for pending in self.staged.values():
            ids.update(s.edit.new_id for s in pending)
        return ids

    def duplicate_ids(self) -> Dict[str, List[Tuple[str, int]]]:
        seen: Dict[str, List[Tuple[str, int]]] = {}
        for name, line, identifier in self._tagged_lines():
            seen.setdefault(identifier, []).append((name, line))
        dups = {k: v for k, v in seen.items() if len(v) > 1}
        for identifier, places in dups.items():
            logger.warning("Duplicate id %s on %s", identifier, places)
        return dups

    def locate(self, identifier: str) -> Tuple[str, int]:
        for name, line, found in self._tagged_lines():
            if found == identifier:
                return name, line
        raise AnchorMissing(identifier)

    # ---------- edits ----------
    def apply_edit(self, file: str, edit: IdEdit, expected_line_text: str) -> bool:
        """Bind ``edit.new_id`` if the target line still reads as when parsed."""
        doc = self.documents.get(file)
        if doc is None:
            return False
        buf = doc.buffer
        current = buf.get_line(edit.line) if 1 <= edit.line <= buf.line_count() else None
        if current != expected_line_text:
            logger.debug("%s", StaleResult(file, edit.line, expected_line_text, current))
            return False
        if doc.tracker.identifier_at(edit.line) is not None:
            logger.debug("%s:%d already tagged, skipping %s", file, edit.line, edit.new_id)
            return False
        return doc.tracker.bind(edit.line, edit.new_id)

    def stage(self, edit: IdEdit, line_text: str) -> bool:
        if edit.file is None:
            return False
        pending = self.staged.setdefault(edit.file, [])
        if any(s.edit.line == edit.line and s.line_text == line_text for s in pending):
            return False
        pending.append(StagedEdit(edit, line_text))
        return True

    def _apply_staged(self, doc: Document) -> None:
        pending = self.staged.pop(doc.file, [])
        applied = sum(1 for s in pending if self.apply_edit(doc.file, s.edit, s.line_text))
        if pending:
            logger.info("Applied %d of %d staged ids to %s", applied, len(pending), doc.file)


def snapshot_lines(session: TaggingSession, files: Iterable[str]) -> Dict[str, List[str]]:
    """Clean text of each file's lines, as seen right now."""
    result = {}
    for name in files:
        doc = session.documents.get(name)
        if doc is not None:
            result[name] = doc.clean_content().split("\n")
        else:
            result[name] = [strip_tag(line) for line in session.files.get(name, "").split("\n")]
    return result
