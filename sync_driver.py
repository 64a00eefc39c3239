"""
Synchronization driver

Keeps new lines tagged while the user types. Bursts of edits are coalesced
by a debounce timer; each run reconstructs the active file with its current
ids, parses it off the event loop, asks the generator for new ids and binds
them as anchors. The visible text is never modified.

Parser calls are not cancelled. A run whose result comes back after a newer
run was issued, or after more edits arrived, is dropped and the pending
debounce run takes over. Before an id is bound, the target line must still
read exactly as it did when the run was issued.
"""

import asyncio
import functools
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set

from errors import ParseUnavailable
from id_generator import GenerationResult, IdEdit, IdGenerator
from session import TaggingSession, snapshot_lines
from story_parser import ParseError, Story, parse

logger = logging.getLogger(__name__)

CompileFn = Callable[[str, str, Dict[str, str]], Awaitable[Optional[Story]]]


class DriverState(Enum):
    IDLE = "idle"
    TAGGING = "tagging"
    STALE = "stale"


async def compile_in_executor(
    content: str, file_name: str, files: Dict[str, str], base_dir: Optional[str] = None
) -> Story:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(parse, content, file_name, files, base_dir))


class SyncDriver:
    def __init__(
        self,
        session: TaggingSession,
        compile_fn: Optional[CompileFn] = None,
        generator: Optional[IdGenerator] = None,
        debounce: float = 0.5,
        on_applied: Optional[Callable[[List[IdEdit]], None]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.session = session
        self.compile_fn = compile_fn or compile_in_executor
        self.generator = generator or IdGenerator()
        self.debounce = debounce
        self.on_applied = on_applied
        self.loop = loop
        self.state = DriverState.IDLE
        self.last_result: Optional[GenerationResult] = None
        self._issued = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            if self.loop is None:
                raise
            return self.loop

    def notify_change(self) -> None:
        """Content changed; supersede any run in flight and re-arm the timer."""
        if self.state is DriverState.TAGGING:
            self.state = DriverState.STALE
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._get_loop().call_later(self.debounce, self._fire)

    def _fire(self) -> None:
        self._timer = None
        self._spawn()

    def _spawn(self) -> None:
        task = self._get_loop().create_task(self._run())
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Tagging run failed", exc_info=exc)

    def schedule_now(self) -> None:
        """Start a run without waiting for the debounce timer."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._spawn()

    async def run_now(self) -> List[IdEdit]:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        return await self._run()

    async def wait_idle(self) -> None:
        while self._timer is not None or self._tasks:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(min(self.debounce, 0.05))

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        # anything still in flight is now stale
        self._issued += 1
        self.state = DriverState.IDLE

    def _is_current(self, token: int, file: str) -> bool:
        return (
            token == self._issued
            and self.state is DriverState.TAGGING
            and self.session.active == file
        )

    async def _run(self) -> List[IdEdit]:
        session = self.session
        file = session.active
        if file is None or file not in session.documents:
            return []

        self._issued += 1
        token = self._issued
        self.state = DriverState.TAGGING
        self.last_result = None
        files = session.project_files()
        snapshot = snapshot_lines(session, files)

        try:
            story = await self.compile_fn(files[file], file, files)
        except ParseError as e:
            logger.debug("%s", ParseUnavailable(file, str(e)))
            story = None
        except Exception:
            if token == self._issued:
                self.state = DriverState.IDLE
            raise

        if not self._is_current(token, file):
            logger.debug("Discarding tagging run %d for %s", token, file)
            if token == self._issued and self.state is DriverState.TAGGING:
                self.state = DriverState.IDLE
            return []
        self.state = DriverState.IDLE
        if story is None:
            return []

        result = self.generator.generate(story, session.existing_ids())
        self.last_result = result
        applied: List[IdEdit] = []
        staged = 0
        for edit in result.edits:
            lines = snapshot.get(edit.file)
            if lines is None or not 1 <= edit.line <= len(lines):
                continue
            expected = lines[edit.line - 1]
            if edit.file == file:
                if session.apply_edit(file, edit, expected):
                    applied.append(edit)
            else:
                if session.stage(edit, expected):
                    staged += 1

        if applied or staged:
            logger.info("Tagged %d lines in %s, staged %d for other files", len(applied), file, staged)
        if applied and self.on_applied is not None:
            self.on_applied(applied)
        return applied
