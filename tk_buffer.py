import itertools
import tkinter as tk
from typing import Dict, Optional, Tuple

from anchors import Position, TextBuffer


class TkTextBuffer(TextBuffer):
    """``TextBuffer`` over a ``tk.Text`` widget.

    Each anchor is a pair of marks: the start mark has right gravity so text
    typed at the start of the line lands outside the range, the end mark has
    left gravity so text typed at the end does not grow it. When the line's
    text is deleted the marks meet and the anchor is gone.
    """

    def __init__(self, widget: tk.Text):
        self.widget = widget
        self._marks: Dict[int, Tuple[str, str]] = {}
        self._next_handle = itertools.count(1)

    def get_text(self) -> str:
        return self.widget.get("1.0", "end-1c")

    def set_text(self, text: str) -> None:
        self.widget.delete("1.0", tk.END)
        self.widget.insert("1.0", text)

    def line_count(self) -> int:
        return int(self.widget.index("end-1c").split(".")[0])

    def get_line(self, line: int) -> str:
        if line < 1 or line > self.line_count():
            raise IndexError(f"line {line} out of range")
        return self.widget.get(f"{line}.0", f"{line}.end")

    def insert(self, line: int, column: int, text: str) -> None:
        self.widget.insert(f"{line}.{column}", text)

    def delete(self, start_line: int, start_column: int, end_line: int, end_column: int) -> None:
        self.widget.delete(f"{start_line}.{start_column}", f"{end_line}.{end_column}")

    def create_anchor(self, line: int) -> int:
        handle = next(self._next_handle)
        start, end = f"lineid_{handle}_s", f"lineid_{handle}_e"
        self.widget.mark_set(start, f"{line}.0")
        self.widget.mark_gravity(start, tk.RIGHT)
        self.widget.mark_set(end, f"{line}.end")
        self.widget.mark_gravity(end, tk.LEFT)
        self._marks[handle] = (start, end)
        return handle

    def anchor_start(self, handle: int) -> Optional[Position]:
        marks = self._marks.get(handle)
        if marks is None:
            return None
        start, end = marks
        try:
            if not self.widget.compare(start, "<", end):
                return None
            line, col = self.widget.index(start).split(".")
        except tk.TclError:
            return None
        return int(line), int(col)

    def release_anchor(self, handle: int) -> None:
        marks = self._marks.pop(handle, None)
        if marks is not None:
            try:
                self.widget.mark_unset(*marks)
            except tk.TclError:
                pass

    def clear_anchors(self) -> None:
        names = [name for pair in self._marks.values() for name in pair]
        self._marks.clear()
        if names:
            try:
                self.widget.mark_unset(*names)
            except tk.TclError:
                pass
