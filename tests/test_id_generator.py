import pathlib
import random
import re
import sys

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from id_generator import IdGenerator, generate_ids_for_untagged, generate_random_code
from story_parser import parse
from tag_codec import inject_tag


def _tag_lines(text, edits):
    lines = text.split("\n")
    for edit in edits:
        lines[edit.line - 1] = inject_tag(lines[edit.line - 1], edit.new_id)
    return "\n".join(lines)


def test_id_carries_knot_and_stitch_prefix():
    story = parse("=== Forest ===\n= Clearing\nThe trees thin out.\n")
    result = IdGenerator(rng=random.Random(1)).generate(story)
    assert len(result.edits) == 1
    edit = result.edits[0]
    assert re.fullmatch(r"Forest_Clearing_[A-Z0-9]{4}", edit.new_id)
    assert edit.file == "main.ink"
    assert edit.line == 3
    assert edit.text == "The trees thin out."
    assert edit.full_tag == "#id:" + edit.new_id


def test_top_level_line_has_bare_code():
    result = IdGenerator().generate(parse("Hello\n"))
    assert re.fullmatch(r"[A-Z0-9]{4}", result.edits[0].new_id)


def test_logic_lines_are_never_tagged():
    text = "~ x = 1\nVAR y = 2\n{x} apples\n{x}\n"
    result = IdGenerator().generate(parse(text))
    assert [e.line for e in result.edits] == [3]


def test_line_split_by_bracket_gets_one_id():
    result = IdGenerator().generate(parse("* [Go] north\n"))
    assert len(result.edits) == 1
    assert result.edits[0].text == "Go north"


def test_existing_tag_is_kept_and_reserved():
    text = "=== Cave ===\nDark. #id:Cave_ZZ11\nDrip.\n"
    result = IdGenerator().generate(parse(text))
    assert result.found_ids == {"Cave_ZZ11"}
    assert [e.line for e in result.edits] == [3]
    assert result.edits[0].new_id != "Cave_ZZ11"

    tagged = _tag_lines(text, result.edits)
    again = IdGenerator().generate(parse(tagged))
    assert again.edits == []
    assert len(again.found_ids) == 2


def test_tag_after_interpolation_counts_for_whole_line():
    result = IdGenerator().generate(parse("Hello {x} world #id:A_ABCD\n"))
    assert result.edits == []
    assert result.found_ids == {"A_ABCD"}


def test_ids_are_unique_across_many_lines():
    text = "=== K ===\n" + "\n".join(f"Line {i}" for i in range(500)) + "\n"
    result = IdGenerator().generate(parse(text))
    ids = [e.new_id for e in result.edits]
    assert len(ids) == 500
    assert len(set(ids)) == 500


def test_existing_ids_are_avoided():
    rng = random.Random(5)
    taken = {generate_random_code(4, random.Random(5))}
    result = IdGenerator(rng=rng).generate(parse("Hello\n"), taken)
    assert result.edits[0].new_id not in taken
    assert taken <= result.used_ids


def test_exhaustion_is_reported_not_raised():
    seeded = random.Random(7)
    taken = {generate_random_code(4, seeded) for _ in range(100)}
    result = IdGenerator(rng=random.Random(7)).generate(parse("Hello\n"), taken)
    assert result.edits == []
    assert len(result.failures) == 1
    failure = result.failures[0]
    assert failure.attempts == 100
    assert failure.line == 1
    assert failure.text == "Hello"


def test_small_code_space_never_repeats():
    text = "\n".join(f"Line {i}" for i in range(40)) + "\n"
    result = IdGenerator(code_length=1, rng=random.Random(3)).generate(parse(text))
    ids = [e.new_id for e in result.edits]
    assert len(set(ids)) == len(ids) <= 36
    assert len(ids) + len(result.failures) == 40


def test_included_file_lines_name_their_file():
    files = {"cave.ink": "=== Cave ===\nDark.\n"}
    result = IdGenerator().generate(parse("INCLUDE cave.ink\n=== Forest ===\nHi\n", files=files))
    by_file = {e.file: e for e in result.edits}
    assert by_file["main.ink"].line == 3
    assert by_file["cave.ink"].line == 2
    assert by_file["cave.ink"].new_id.startswith("Cave_")
    assert result.edits_for("cave.ink") == [by_file["cave.ink"]]


def test_no_story_means_no_edits():
    result = generate_ids_for_untagged(None, {"A_ABCD"})
    assert result.edits == [] and result.failures == []
    assert result.used_ids == {"A_ABCD"}
