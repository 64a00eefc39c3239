import pathlib
import sys

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

pytest.importorskip("tkinter")

from tagging_editor import parse_id_input


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Forest_Clearing_7K2Q", "Forest_Clearing_7K2Q"),
        ("  #id:Cave_ZZ11 ", "Cave_ZZ11"),
        ("Cave_ZZ1", None),
        ("Cave ZZ11", None),
        ("", None),
    ],
)
def test_parse_id_input(text, expected):
    assert parse_id_input(text) == expected
