import asyncio
import pathlib
import re
import sys

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from session import TaggingSession
from story_parser import parse
from sync_driver import DriverState, SyncDriver

CAVE = "=== Cave ===\nDrip.\n"


async def direct_compile(content, file_name, files):
    return parse(content, file_name, files)


class GatedCompile:
    """Parses immediately but holds the result until ``gate`` is set."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.calls = 0

    async def __call__(self, content, file_name, files):
        self.calls += 1
        story = parse(content, file_name, files)
        await self.gate.wait()
        return story


def _open(**files):
    session = TaggingSession({f"{name}.ink": text for name, text in files.items()})
    for name in session.files:
        session.open_document(name)
    session.set_active("main.ink")
    return session


def test_run_tags_new_line_without_touching_buffer():
    async def scenario():
        session = _open(main=CAVE)
        applied = []
        driver = SyncDriver(session, compile_fn=direct_compile, on_applied=applied.extend)
        edits = await driver.run_now()
        assert len(edits) == 1 and edits[0].line == 2
        assert applied == edits
        assert session.active_document().clean_content() == CAVE
        assert re.fullmatch(r"=== Cave ===\nDrip\. #id:Cave_[A-Z0-9]{4}\n", session.full_content("main.ink"))
        assert driver.state is DriverState.IDLE

        assert await driver.run_now() == []
        assert driver.last_result.found_ids == session.existing_ids()

    asyncio.run(scenario())


def test_result_dropped_when_content_changes_mid_run():
    async def scenario():
        session = _open(main=CAVE)
        compile_fn = GatedCompile()
        driver = SyncDriver(session, compile_fn=compile_fn, debounce=10)
        task = asyncio.ensure_future(driver.run_now())
        await asyncio.sleep(0)
        assert driver.state is DriverState.TAGGING

        session.active_document().buffer.insert(2, 0, "Slow ")
        driver.notify_change()
        assert driver.state is DriverState.STALE
        compile_fn.gate.set()
        assert await task == []
        assert session.existing_ids() == set()
        driver.close()

    asyncio.run(scenario())


def test_edit_revalidated_against_line_snapshot():
    async def scenario():
        session = _open(main=CAVE)
        compile_fn = GatedCompile()
        driver = SyncDriver(session, compile_fn=compile_fn)
        task = asyncio.ensure_future(driver.run_now())
        await asyncio.sleep(0)
        # edit arrives before the change notification does
        session.active_document().buffer.insert(2, 0, "Slow ")
        compile_fn.gate.set()
        assert await task == []
        assert session.existing_ids() == set()

    asyncio.run(scenario())


def test_newer_run_supersedes_older():
    async def scenario():
        session = _open(main=CAVE)
        compile_fn = GatedCompile()
        driver = SyncDriver(session, compile_fn=compile_fn)
        first = asyncio.ensure_future(driver.run_now())
        await asyncio.sleep(0)
        second = asyncio.ensure_future(driver.run_now())
        await asyncio.sleep(0)
        compile_fn.gate.set()
        old, new = await asyncio.gather(first, second)
        assert old == []
        assert len(new) == 1
        assert len(session.existing_ids()) == 1

    asyncio.run(scenario())


def test_result_dropped_after_switching_files():
    async def scenario():
        session = _open(main=CAVE, other="Yo\n")
        compile_fn = GatedCompile()
        driver = SyncDriver(session, compile_fn=compile_fn)
        task = asyncio.ensure_future(driver.run_now())
        await asyncio.sleep(0)
        session.set_active("other.ink")
        compile_fn.gate.set()
        assert await task == []
        assert session.existing_ids() == set()

    asyncio.run(scenario())


def test_ids_for_included_files_are_staged():
    async def scenario():
        session = _open(main="INCLUDE other.ink\n=== A ===\nHi\n", other="=== B ===\nYo\n")
        driver = SyncDriver(session, compile_fn=direct_compile)
        edits = await driver.run_now()
        assert [e.line for e in edits] == [3]
        assert len(session.staged["other.ink"]) == 1
        staged_id = session.staged["other.ink"][0].edit.new_id
        assert staged_id in session.existing_ids()

        doc = session.set_active("other.ink")
        assert doc.tracker.identifier_at(2) == staged_id
        assert staged_id.startswith("B_")

    asyncio.run(scenario())


def test_parse_error_yields_no_edits():
    async def scenario():
        session = _open(main="= Orphan\nHello\n")
        driver = SyncDriver(session)
        assert await driver.run_now() == []
        assert driver.last_result is None
        assert driver.state is DriverState.IDLE

    asyncio.run(scenario())


def test_unexpected_compile_failure_propagates():
    async def broken(content, file_name, files):
        raise RuntimeError("boom")

    async def scenario():
        session = _open(main=CAVE)
        driver = SyncDriver(session, compile_fn=broken)
        with pytest.raises(RuntimeError):
            await driver.run_now()
        assert driver.state is DriverState.IDLE

    asyncio.run(scenario())


def test_changes_are_debounced_into_one_run():
    calls = []

    async def counting(content, file_name, files):
        calls.append(file_name)
        return parse(content, file_name, files)

    async def scenario():
        session = _open(main=CAVE)
        driver = SyncDriver(session, compile_fn=counting, debounce=0.01)
        for _ in range(3):
            driver.notify_change()
        await driver.wait_idle()
        assert calls == ["main.ink"]
        assert len(session.existing_ids()) == 1

    asyncio.run(scenario())


def test_no_active_file_is_a_no_op():
    async def scenario():
        driver = SyncDriver(TaggingSession(), compile_fn=direct_compile)
        assert await driver.run_now() == []

    asyncio.run(scenario())


def test_second_run_over_tagged_cave_adds_nothing():
    lines = ["=== Cave ==="] + [f"Step {i}." for i in range(2, 10)] + ["Dark. #id:Cave_ZZ11", ""]

    async def scenario():
        session = _open(main="\n".join(lines))
        driver = SyncDriver(session, compile_fn=direct_compile)
        first = await driver.run_now()
        assert len(first) == 8
        assert await driver.run_now() == []
        assert session.active_document().tracker.line_of("Cave_ZZ11") == 10
        assert session.full_content("main.ink").split("\n")[9] == "Dark. #id:Cave_ZZ11"

    asyncio.run(scenario())


def test_scheduled_run_failure_is_logged(caplog):
    async def broken(content, file_name, files):
        raise RuntimeError("boom")

    async def scenario():
        session = _open(main=CAVE)
        driver = SyncDriver(session, compile_fn=broken)
        driver.schedule_now()
        await driver.wait_idle()
        assert driver.state is DriverState.IDLE
        assert not driver._tasks

    asyncio.run(scenario())
    assert "Tagging run failed" in caplog.text


def test_scheduled_run_tags_immediately():
    async def scenario():
        session = _open(main=CAVE)
        driver = SyncDriver(session, compile_fn=direct_compile, debounce=10)
        driver.notify_change()
        driver.schedule_now()
        await driver.wait_idle()
        assert len(session.existing_ids()) == 1

    asyncio.run(scenario())
