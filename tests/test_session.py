import pathlib
import sys

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from errors import AnchorMissing
from id_generator import IdEdit
from session import TaggingSession, snapshot_lines


def _session(**files):
    return TaggingSession({f"{name}.ink": text for name, text in files.items()})


def test_open_document_hides_tags():
    session = _session(main="Hello #id:A_ABCD\nWorld\n")
    doc = session.open_document("main.ink")
    assert doc.clean_content() == "Hello\nWorld\n"
    assert session.full_content("main.ink") == "Hello #id:A_ABCD\nWorld\n"
    assert session.active == "main.ink"
    assert session.existing_ids() == {"A_ABCD"}


def test_apply_edit_binds_and_injects_on_save():
    session = _session(main="Hello #id:A_ABCD\nWorld\n")
    session.open_document("main.ink")
    edit = IdEdit("main.ink", 2, "World", "B_WXYZ")
    assert session.apply_edit("main.ink", edit, "World")
    assert session.save_pairs() == [("main.ink", "Hello #id:A_ABCD\nWorld #id:B_WXYZ\n")]


def test_apply_edit_rejects_changed_line():
    session = _session(main="Hello\nWorld\n")
    doc = session.open_document("main.ink")
    doc.buffer.insert(2, 0, "Big ")
    assert not session.apply_edit("main.ink", IdEdit("main.ink", 2, "World", "B_WXYZ"), "World")
    assert session.existing_ids() == set()


def test_apply_edit_never_retags_a_line():
    session = _session(main="Hello #id:A_ABCD\n")
    session.open_document("main.ink")
    assert not session.apply_edit("main.ink", IdEdit("main.ink", 1, "Hello", "B_WXYZ"), "Hello")
    assert session.existing_ids() == {"A_ABCD"}


def test_staged_edit_applies_on_activation():
    session = _session(main="Hi\n", other="Yo\n")
    session.open_document("main.ink")
    session.open_document("other.ink")
    edit = IdEdit("other.ink", 1, "Yo", "B_WXYZ")
    assert session.stage(edit, "Yo")
    assert not session.stage(edit, "Yo")
    assert "B_WXYZ" in session.existing_ids()

    doc = session.set_active("other.ink")
    assert doc.tracker.identifier_at(1) == "B_WXYZ"
    assert session.staged == {}


def test_staged_edit_revalidated_against_line_text():
    session = _session(main="Hi\n", other="Changed\n")
    session.open_document("main.ink")
    session.stage(IdEdit("other.ink", 1, "Yo", "B_WXYZ"), "Yo")
    doc = session.set_active("other.ink")
    assert len(doc.tracker) == 0


def test_duplicate_ids_across_files():
    session = _session(a="x #id:A_ABCD\n", b="y\ny #id:A_ABCD\n")
    assert session.duplicate_ids() == {"A_ABCD": [("a.ink", 1), ("b.ink", 2)]}


def test_locate_finds_open_and_closed_files():
    session = _session(a="x #id:A_ABCD\n", b="\ny #id:B_ABCD\n")
    doc = session.open_document("a.ink")
    doc.buffer.insert_lines(1, ["new"])
    assert session.locate("A_ABCD") == ("a.ink", 2)
    assert session.locate("B_ABCD") == ("b.ink", 2)
    with pytest.raises(AnchorMissing):
        session.locate("C_ABCD")


def test_close_document_writes_back_tags():
    session = _session(main="Hello\n")
    session.open_document("main.ink")
    session.apply_edit("main.ink", IdEdit("main.ink", 1, "Hello", "A_ABCD"), "Hello")
    session.close_document("main.ink")
    assert session.files["main.ink"] == "Hello #id:A_ABCD\n"
    assert session.active is None


def test_sanitize_paste_and_clear():
    session = _session(main="Hello #id:A_ABCD\n")
    session.open_document("main.ink")
    assert session.sanitize_paste("copied #id:A_ABCD line") == "copied line"
    session.clear()
    assert session.documents == {} and session.files == {} and session.active is None


def test_snapshot_lines_strips_unopened_files():
    session = _session(main="Hi\n", other="Yo #id:B_ABCD\n")
    session.open_document("main.ink")
    snap = snapshot_lines(session, ["main.ink", "other.ink"])
    assert snap == {"main.ink": ["Hi", ""], "other.ink": ["Yo", ""]}


def test_commented_out_tag_survives_save():
    session = _session(main="Hello #id:A_ABCD\n// Old line #id:B_WXYZ\n")
    session.open_document("main.ink")
    assert session.save_pairs() == [("main.ink", "Hello #id:A_ABCD\n// Old line #id:B_WXYZ\n")]
    assert session.existing_ids() == {"A_ABCD"}
