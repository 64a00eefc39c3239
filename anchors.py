"""
Anchor tracking

A line's id is never stored as characters in the editable buffer. Instead
the buffer keeps a live range over the line's text and moves it with every
edit; this module only remembers which id belongs to which range.

Ranges are edge-sticky: typing right at the start of the line pushes the
range along, typing right at its end does not grow it. A range that
collapses because its text was deleted counts as gone.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from tag_codec import LineId, split_comment

logger = logging.getLogger(__name__)

Position = Tuple[int, int]


class TextBuffer(ABC):
    """Line-oriented text with whole-line anchors.

    Lines are 1-based, columns 0-based.
    """

    @abstractmethod
    def get_text(self) -> str: ...

    @abstractmethod
    def set_text(self, text: str) -> None: ...

    @abstractmethod
    def line_count(self) -> int: ...

    @abstractmethod
    def get_line(self, line: int) -> str: ...

    @abstractmethod
    def insert(self, line: int, column: int, text: str) -> None: ...

    @abstractmethod
    def delete(self, start_line: int, start_column: int, end_line: int, end_column: int) -> None: ...

    @abstractmethod
    def create_anchor(self, line: int) -> Any: ...

    @abstractmethod
    def anchor_start(self, handle: Any) -> Optional[Position]:
        """Start of the anchor's range, or ``None`` once it has collapsed."""

    @abstractmethod
    def release_anchor(self, handle: Any) -> None: ...

    @abstractmethod
    def clear_anchors(self) -> None: ...

    def anchor_line(self, handle: Any) -> Optional[int]:
        start = self.anchor_start(handle)
        return start[0] if start else None

    def insert_lines(self, before_line: int, lines: Iterable[str]) -> None:
        block = "\n".join(lines)
        count = self.line_count()
        if before_line > count:
            self.insert(count, len(self.get_line(count)), "\n" + block)
        else:
            self.insert(before_line, 0, block + "\n")

    def delete_lines(self, first: int, last: int) -> None:
        count = self.line_count()
        last = min(last, count)
        if last < count:
            self.delete(first, 0, last + 1, 0)
        elif first > 1:
            self.delete(first - 1, len(self.get_line(first - 1)), last, len(self.get_line(last)))
        else:
            self.delete(1, 0, last, len(self.get_line(last)))


class MemoryBuffer(TextBuffer):
    """Plain-string buffer whose anchors are rebased on every edit."""

    def __init__(self, text: str = ""):
        self._text = text
        self._anchors: Dict[int, List[int]] = {}
        self._next_handle = itertools.count(1)

    def get_text(self) -> str:
        return self._text

    def set_text(self, text: str) -> None:
        self._remove(0, len(self._text))
        self._add(0, text)

    def line_count(self) -> int:
        return self._text.count("\n") + 1

    def get_line(self, line: int) -> str:
        start = self._line_start(line)
        return self._text[start:self._line_end(start)]

    def insert(self, line: int, column: int, text: str) -> None:
        self._add(self._offset(line, column), text)

    def delete(self, start_line: int, start_column: int, end_line: int, end_column: int) -> None:
        a = self._offset(start_line, start_column)
        b = self._offset(end_line, end_column)
        if b < a:
            a, b = b, a
        self._remove(a, b)

    def create_anchor(self, line: int) -> int:
        start = self._line_start(line)
        handle = next(self._next_handle)
        self._anchors[handle] = [start, self._line_end(start)]
        return handle

    def anchor_start(self, handle: int) -> Optional[Position]:
        rng = self._anchors.get(handle)
        if rng is None or rng[0] >= rng[1]:
            return None
        start = rng[0]
        line_start = self._text.rfind("\n", 0, start) + 1
        return self._text.count("\n", 0, start) + 1, start - line_start

    def release_anchor(self, handle: int) -> None:
        self._anchors.pop(handle, None)

    def clear_anchors(self) -> None:
        self._anchors.clear()

    def _line_start(self, line: int) -> int:
        if line < 1 or line > self.line_count():
            raise IndexError(f"line {line} out of range")
        pos = 0
        for _ in range(line - 1):
            pos = self._text.index("\n", pos) + 1
        return pos

    def _line_end(self, start: int) -> int:
        end = self._text.find("\n", start)
        return len(self._text) if end == -1 else end

    def _offset(self, line: int, column: int) -> int:
        start = self._line_start(line)
        end = self._line_end(start)
        return min(start + max(column, 0), end)

    def _add(self, pos: int, text: str) -> None:
        if not text:
            return
        self._text = self._text[:pos] + text + self._text[pos:]
        n = len(text)
        for rng in self._anchors.values():
            if pos <= rng[0]:
                rng[0] += n
            if pos < rng[1]:
                rng[1] += n

    def _remove(self, a: int, b: int) -> None:
        if a == b:
            return
        self._text = self._text[:a] + self._text[b:]
        width = b - a
        for rng in self._anchors.values():
            for k in (0, 1):
                if rng[k] >= b:
                    rng[k] -= width
                elif rng[k] > a:
                    rng[k] = a


class AnchorTracker:
    """Owns the anchor-to-id association for one buffer.

    An id read from disk may sit on more than one line; each occurrence gets
    its own anchor so saving writes all of them back.
    """

    def __init__(self, buffer: TextBuffer, file: Optional[str] = None):
        self.buffer = buffer
        self.file = file
        self._anchors: Dict[Any, str] = {}

    def __len__(self) -> int:
        return len(self._anchors)

    def bind(self, line: int, identifier: str) -> bool:
        if line < 1 or line > self.buffer.line_count() or not split_comment(self.buffer.get_line(line))[0].strip():
            logger.debug("Not binding %s: line %d is blank, comment-only or missing", identifier, line)
            return False
        holder = self.identifier_at(line)
        if holder == identifier:
            return True
        if holder is not None:
            logger.debug("Not binding %s: line %d already carries %s", identifier, line, holder)
            return False
        self._anchors[self.buffer.create_anchor(line)] = identifier
        return True

    def rebind(self, file: Optional[str], ids_by_line: Iterable[LineId]) -> None:
        self.clear()
        self.file = file
        for item in ids_by_line:
            self.bind(item.line, item.identifier)

    def unbind(self, identifier: str) -> None:
        for handle, found in list(self._anchors.items()):
            if found == identifier:
                self._release(handle)

    def _release(self, handle: Any) -> None:
        self._anchors.pop(handle, None)
        self.buffer.release_anchor(handle)

    def clear(self) -> None:
        self._anchors.clear()
        self.buffer.clear_anchors()

    def line_of(self, identifier: str) -> Optional[int]:
        for item in self.current_associations():
            if item.identifier == identifier:
                return item.line
        return None

    def identifier_at(self, line: int) -> Optional[str]:
        for item in self.current_associations():
            if item.line == line:
                return item.identifier
        return None

    def identifiers(self) -> Set[str]:
        return {item.identifier for item in self.current_associations()}

    def current_associations(self) -> List[LineId]:
        live = []
        for handle, identifier in list(self._anchors.items()):
            start = self.buffer.anchor_start(handle)
            if start is None:
                logger.debug("Line carrying %s was deleted", identifier)
                self._release(handle)
                continue
            live.append((start, identifier, handle))
        live.sort(key=lambda item: item[0])

        result: List[LineId] = []
        seen: Set[int] = set()
        for (line, _column), identifier, handle in live:
            if line in seen:
                # two tagged lines were joined into one
                logger.warning("Dropping id %s: line %d already carries an id", identifier, line)
                self._release(handle)
                continue
            seen.add(line)
            result.append(LineId(line, identifier))
        return result
