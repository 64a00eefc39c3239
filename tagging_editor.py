import argparse
import asyncio
import logging
import os
import sys
import tkinter as tk
from tkinter import filedialog, messagebox, simpledialog, ttk
from typing import Dict, List, Optional

from errors import AnchorMissing, MultipleTagsError
from i18n import get_user_lang_file, set_language, set_language_from_file, tr
from id_generator import IdEdit, IdGenerator
from project import Project, load_project
from session import TaggingSession
from settings import Settings, add_recent_project, load_settings, save_settings
from story_parser import ParseError, parse
from sync_driver import SyncDriver, compile_in_executor
from tag_codec import TAG_MARK, is_identifier, strip_all_tags
from tk_buffer import TkTextBuffer

logger = logging.getLogger(__name__)

LOOP_PUMP_MS = 20


def parse_id_input(text: str) -> Optional[str]:
    """Identifier typed by the user, with or without the leading ``#id:``."""
    value = text.strip()
    if value.startswith(TAG_MARK):
        value = value[len(TAG_MARK):]
    return value if is_identifier(value) else None


class TaggingEditor(tk.Tk):
    def __init__(self, settings: Optional[Settings] = None):
        super().__init__()
        self.title("Branching Line ID Editor")
        self.geometry("1100x720")

        self.settings = settings or load_settings()
        self.project: Optional[Project] = None
        self.session = TaggingSession()
        self.loop = asyncio.new_event_loop()
        self.driver = self._make_driver()
        self.code_views: Dict[str, tk.Text] = {}
        self.dirty = False
        self._loading = False

        self._build_menu()
        self._build_ui()
        self._set_dirty(False)

        self.protocol("WM_DELETE_WINDOW", self._exit_app)
        self.after(LOOP_PUMP_MS, self._pump_loop)

    def _make_driver(self, settings: Optional[Settings] = None) -> SyncDriver:
        settings = settings or self.settings
        root_dir = self.project.root_dir if self.project else None

        async def compile_fn(content, file_name, files):
            return await compile_in_executor(content, file_name, files, root_dir)

        return SyncDriver(
            self.session,
            compile_fn=compile_fn,
            generator=IdGenerator(max_attempts=settings.max_attempts),
            debounce=settings.debounce_ms / 1000.0,
            on_applied=self._on_ids_applied,
            loop=self.loop,
        )

    # ---------- asyncio 연동 ----------
    def _pump_loop(self):
        # due timers and finished executor jobs run here, on the Tk thread
        self.loop.call_soon(self.loop.stop)
        self.loop.run_forever()
        self.after(LOOP_PUMP_MS, self._pump_loop)

    def _on_ids_applied(self, edits: List[IdEdit]) -> None:
        self._set_dirty(True)
        self._update_status()

    # ---------- UI ----------
    def _build_menu(self):
        m = tk.Menu(self)
        fm = tk.Menu(m, tearoff=0)
        fm.add_command(label=tr("menu_open"), command=self._open_file, accelerator="Ctrl+O")
        fm.add_command(label=tr("menu_save"), command=self._save_file, accelerator="Ctrl+S")
        fm.add_separator()
        fm.add_command(label=tr("menu_exit"), command=self._exit_app)
        m.add_cascade(label=tr("menu_file"), menu=fm)

        tm = tk.Menu(m, tearoff=0)
        tm.add_command(label=tr("menu_tag_now"), command=self._tag_now, accelerator="Ctrl+T")
        tm.add_command(label=tr("menu_validate"), command=self._validate_ids)
        tm.add_command(label=tr("menu_goto_id"), command=self._goto_id, accelerator="Ctrl+G")
        m.add_cascade(label=tr("menu_tools"), menu=tm)

        lm = tk.Menu(m, tearoff=0)
        lm.add_command(label="English / 영어", command=lambda: self._change_language("en"))
        lm.add_command(label="한국어 / Korean", command=lambda: self._change_language("korean"))
        m.add_cascade(label="Language / 언어", menu=lm)

        self.config(menu=m)

        self.bind_all("<Control-o>", lambda e: self._open_file())
        self.bind_all("<Control-s>", lambda e: self._save_file())
        self.bind_all("<Control-t>", lambda e: self._tag_now())
        self.bind_all("<Control-g>", lambda e: self._goto_id())

    def _change_language(self, lang: str) -> None:
        set_language(lang)
        lang_file = get_user_lang_file("editor_language.txt")
        try:
            lang_file.parent.mkdir(parents=True, exist_ok=True)
            with open(lang_file, "w", encoding="utf-8") as f:
                f.write(lang)
            messagebox.showinfo("Language / 언어", tr("language_change_restart"))
        except OSError as e:
            messagebox.showerror(tr("error"), str(e))

    def _build_ui(self):
        # 좌: 파일 목록, 우: 코드 편집기
        root = ttk.Frame(self, padding=8)
        root.columnconfigure(1, weight=1)
        root.rowconfigure(0, weight=1)

        left = ttk.Frame(root)
        left.grid(row=0, column=0, sticky="nsw", padx=(0, 8))
        ttk.Label(left, text=tr("files_label")).pack(anchor="w")
        self.lst_files = tk.Listbox(left, width=28, exportselection=False)
        self.lst_files.pack(fill="y", expand=True)
        self.lst_files.bind("<<ListboxSelect>>", self._on_file_select)

        self.code_frame = ttk.Frame(root)
        self.code_frame.grid(row=0, column=1, sticky="nsew")
        self.code_frame.rowconfigure(0, weight=1)
        self.code_frame.columnconfigure(0, weight=1)
        self.code_xscroll = ttk.Scrollbar(self.code_frame, orient="horizontal")
        self.code_yscroll = ttk.Scrollbar(self.code_frame, orient="vertical")
        self.code_xscroll.grid(row=1, column=0, sticky="ew")
        self.code_yscroll.grid(row=0, column=1, sticky="ns")

        # 하단 상태 표시줄
        self.status_var = tk.StringVar(value=tr("no_id"))
        status = ttk.Label(self, textvariable=self.status_var, anchor="w", padding=(8, 2))
        status.pack(side="bottom", fill="x")

        root.pack(fill="both", expand=True)

    def _make_code_view(self) -> tk.Text:
        txt = tk.Text(
            self.code_frame,
            wrap="none",
            font=("Consolas", 11) if sys.platform.startswith("win") else ("Menlo", 11),
            undo=True,
        )
        txt.bind("<<Modified>>", self._on_code_modified)
        txt.bind("<<Copy>>", self._on_copy)
        txt.bind("<<Cut>>", self._on_cut)
        txt.bind("<<Paste>>", self._on_paste)
        for seq in ("<KeyRelease>", "<ButtonRelease-1>"):
            txt.bind(seq, lambda e: self._update_status(), add="+")
        return txt

    def _show_code_view(self, name: str) -> None:
        for view in self.code_views.values():
            view.grid_remove()
        txt = self.code_views[name]
        txt.grid(row=0, column=0, sticky="nsew")
        self.code_xscroll.configure(command=txt.xview)
        self.code_yscroll.configure(command=txt.yview)
        txt.configure(xscrollcommand=self.code_xscroll.set, yscrollcommand=self.code_yscroll.set)
        txt.focus_set()

    def _current_view(self) -> Optional[tk.Text]:
        if self.session.active is None:
            return None
        return self.code_views.get(self.session.active)

    # ---------- 편집 이벤트 ----------
    def _on_code_modified(self, event=None):
        widget = event.widget if event is not None else self._current_view()
        if widget is None or not widget.edit_modified():
            return
        widget.edit_modified(False)
        if self._loading:
            return
        self._set_dirty(True)
        self.driver.notify_change()
        self._update_status()

    def _selection(self, widget: tk.Text) -> Optional[str]:
        try:
            return widget.get("sel.first", "sel.last")
        except tk.TclError:
            return None

    def _on_copy(self, event):
        text = self._selection(event.widget)
        if text is None:
            return "break"
        self.clipboard_clear()
        self.clipboard_append(strip_all_tags(text))
        return "break"

    def _on_cut(self, event):
        self._on_copy(event)
        try:
            event.widget.delete("sel.first", "sel.last")
        except tk.TclError:
            pass
        return "break"

    def _on_paste(self, event):
        try:
            text = self.clipboard_get()
        except tk.TclError:
            return "break"
        widget = event.widget
        try:
            widget.delete("sel.first", "sel.last")
        except tk.TclError:
            pass
        widget.insert("insert", self.session.sanitize_paste(text))
        widget.see("insert")
        return "break"

    def _update_status(self):
        doc = self.session.active_document()
        view = self._current_view()
        if doc is None or view is None:
            self.status_var.set(tr("no_id"))
            return
        line = int(view.index("insert").split(".")[0])
        identifier = doc.tracker.identifier_at(line)
        self.status_var.set(tr("line_id", line=line, id=identifier or tr("no_id")))

    def _on_file_select(self, event=None):
        sel = self.lst_files.curselection()
        if not sel or self.project is None:
            return
        name = self.lst_files.get(sel[0])
        if name == self.session.active:
            return
        self.session.set_active(name)
        self._show_code_view(name)
        self.driver.notify_change()
        self._update_status()

    # ---------- 파일 입출력 ----------
    def _open_file(self):
        if not self._confirm_discard_changes():
            return
        path = filedialog.askopenfilename(
            title=tr("open_title"), filetypes=[("Ink Files", "*.ink"), ("All Files", "*.*")]
        )
        if not path:
            return
        self.open_project(path)

    def open_project(self, path: str) -> bool:
        try:
            project = load_project(path)
            parse(project.files[project.root_name], project.root_name, project.files, project.root_dir)
        except ParseError as e:
            messagebox.showerror(tr("parse_error"), str(e))
            return False
        except (OSError, UnicodeDecodeError) as e:
            messagebox.showerror(tr("error"), tr("read_error", err=e))
            return False

        self.driver.close()
        self.session.clear()
        for view in self.code_views.values():
            view.destroy()
        self.code_views.clear()
        self.lst_files.delete(0, tk.END)

        self.project = project
        self.settings = load_settings()
        add_recent_project(self.settings, os.path.abspath(path))
        try:
            save_settings(self.settings)
        except OSError as e:
            logger.warning("Could not save settings: %s", e)
        effective = self.settings.for_project(os.path.abspath(path))
        self.session.repair = effective.repair_tag_spacing
        self.session.strict = effective.strict_tags
        self.session.files.update(project.files)
        self.driver = self._make_driver(effective)

        self._loading = True
        try:
            for name, content in project.files.items():
                txt = self._make_code_view()
                self.code_views[name] = txt
                self.session.open_document(name, content, TkTextBuffer(txt))
                txt.edit_reset()
                txt.edit_modified(False)
                self.lst_files.insert(tk.END, name)
        except MultipleTagsError as e:
            messagebox.showerror(tr("error"), str(e))
            return False
        finally:
            self._loading = False

        self.session.set_active(project.root_name)
        self.lst_files.selection_set(0)
        self._show_code_view(project.root_name)
        self._set_dirty(False)
        self._update_status()
        self.driver.notify_change()
        return True

    def _save_file(self):
        if self.project is None:
            return
        try:
            self.project.save(self.session.save_pairs())
        except OSError as e:
            messagebox.showerror(tr("error"), tr("save_error", err=e))
            return
        self._set_dirty(False)
        messagebox.showinfo(tr("save_title"), tr("save_done"))

    # ---------- 도구 ----------
    def _tag_now(self):
        if self.project is None:
            return
        self.driver.schedule_now()

    def _validate_ids(self):
        if self.project is None:
            return
        lines = []
        for identifier, places in sorted(self.session.duplicate_ids().items()):
            where = ", ".join(f"{f}:{ln}" for f, ln in places)
            lines.append(tr("duplicate_id", id=identifier, places=where))
        result = self.driver.last_result
        if result is not None:
            for failure in result.failures:
                lines.append(
                    tr("untagged_failure", file=failure.file_name, line=failure.line, text=failure.text)
                )
        if not lines:
            lines.append(tr("validation_ok"))
        self._show_validation_results(tr("validation_title"), lines)

    def _goto_id(self):
        if self.project is None:
            return
        answer = simpledialog.askstring(tr("menu_goto_id"), tr("goto_id_prompt"), parent=self)
        if not answer:
            return
        identifier = parse_id_input(answer)
        if identifier is None:
            messagebox.showwarning(tr("warning"), tr("invalid_id", id=answer.strip()))
            return
        try:
            name, line = self.session.locate(identifier)
        except AnchorMissing:
            messagebox.showwarning(tr("warning"), tr("id_not_found", id=identifier))
            return
        if name != self.session.active:
            idx = self.lst_files.get(0, tk.END).index(name)
            self.lst_files.selection_clear(0, tk.END)
            self.lst_files.selection_set(idx)
            self._on_file_select()
        view = self.code_views[name]
        view.mark_set("insert", f"{line}.0")
        view.see(f"{line}.0")
        view.focus_set()
        self._update_status()

    def _show_validation_results(self, title: str, lines: List[str]) -> None:
        win = tk.Toplevel(self)
        win.title(title)
        win.geometry("720x480")
        frm = ttk.Frame(win, padding=8)
        frm.pack(fill="both", expand=True)

        txt = tk.Text(frm, wrap="word", font=("Consolas", 10))
        txt.pack(side="left", fill="both", expand=True)
        scr = ttk.Scrollbar(frm, orient="vertical", command=txt.yview)
        scr.pack(side="right", fill="y")
        txt.configure(yscrollcommand=scr.set)
        txt.insert(tk.END, "\n".join(lines))
        txt.configure(state="disabled")

        ttk.Button(win, text=tr("close"), command=win.destroy).pack(pady=6)

    # ---------- 종료 ----------
    def _exit_app(self):
        if not self._confirm_discard_changes():
            return
        self.driver.close()
        self.loop.close()
        self.destroy()

    def _confirm_discard_changes(self) -> bool:
        if not self.dirty:
            return True
        res = messagebox.askyesnocancel(tr("unsaved_changes_title"), tr("unsaved_changes_prompt"))
        if res is None:
            return False
        if res is True:
            self._save_file()
            return not self.dirty
        return True

    def _set_dirty(self, val: bool):
        self.dirty = val
        mark = "*" if self.dirty else ""
        base = "Branching Line ID Editor"
        tail = f" - {self.project.root_name}" if self.project else ""
        self.title(f"{base}{tail}{mark}")


# ---------- 진입점 ----------
def main():
    parser = argparse.ArgumentParser(description="Branching Line ID Editor")
    parser.add_argument("file", nargs="?", help="Root script to open (.ink)")
    parser.add_argument("--lang", help="language code (e.g., en, ko)")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if args.lang:
        set_language(args.lang)
    else:
        lang_file = get_user_lang_file("editor_language.txt")
        set_language_from_file(lang_file)

    app = TaggingEditor()
    if args.file:
        app.open_project(args.file)
    app.mainloop()


if __name__ == "__main__":
    main()
