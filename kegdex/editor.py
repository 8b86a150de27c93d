"""
Interactive editor loop for kegdex.

Runs an external editor on a file and applies every save while the editor is
still open. A watchdog observer thread forwards file events into an asyncio
queue; the loop is a two-state machine (IDLE, PENDING_SAVE) driven by those
events and a periodic tick. A save is applied once the file has been quiet for
the settle window, and byte-identical saves are skipped.
"""

import asyncio
import enum
import hashlib
import os
import shlex
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

import aiofiles
import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import DEFAULT_EDITOR, settings
from .utils import BackendError, KegError

logger = structlog.get_logger(__name__)

SaveCallback = Callable[[bytes], Awaitable[None]]


class EditorError(BackendError):
    """Raised when the editor cannot be started or exits with an error."""
    pass


class EditorState(enum.Enum):
    IDLE = "idle"
    PENDING_SAVE = "pending_save"


def resolve_editor(editor: str | Sequence[str] | None = None) -> list[str]:
    """Editor command: explicit argument, KEG_EDITOR, $VISUAL, $EDITOR, then vi."""
    if editor is None or not editor:
        editor = settings.editor or os.environ.get("VISUAL") or os.environ.get("EDITOR") or DEFAULT_EDITOR
    if isinstance(editor, str):
        return shlex.split(editor)
    return list(editor)


class _WatchdogBridge(FileSystemEventHandler):
    """Forwards events for one file from the observer thread to the event loop."""

    def __init__(self, target: Path, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue):
        self._target = os.path.abspath(target)
        self._loop = loop
        self._queue = queue

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        if not any(p and os.path.abspath(os.fsdecode(p)) == self._target for p in paths):
            return
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event.event_type)


def _digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


async def _read(path: Path) -> bytes | None:
    try:
        async with aiofiles.open(path, "rb") as f:
            return await f.read()
    except FileNotFoundError:
        # editors that save by rename leave a short gap
        return None


class LiveEditSession:
    """One editor run over one file."""

    def __init__(
        self,
        path: Path,
        on_save: SaveCallback,
        *,
        editor: str | Sequence[str] | None = None,
        settle: float | None = None,
        tick: float | None = None,
        cancel: asyncio.Event | None = None,
    ):
        self.path = Path(path).absolute()
        self.on_save = on_save
        self.command = resolve_editor(editor) + [str(self.path)]
        self.settle = settle if settle is not None else settings.editor_settle_ms / 1000
        self.tick = tick if tick is not None else settings.editor_tick_ms / 1000
        self.cancel = cancel
        self.state = EditorState.IDLE
        self.pending_since = 0.0
        self.saves = 0
        self.last_error: KegError | None = None
        self._last_digest = ""

    async def _apply(self) -> None:
        data = await _read(self.path)
        if data is None:
            return
        digest = _digest(data)
        if digest == self._last_digest:
            return
        try:
            await self.on_save(data)
        except KegError as e:
            self.last_error = e
            logger.warning("editor_save_failed", path=str(self.path), kind=e.kind.value, error=str(e))
            return
        self._last_digest = digest
        self.last_error = None
        self.saves += 1
        logger.info("editor_save_applied", path=str(self.path), saves=self.saves)

    def _cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    async def run(self) -> int:
        """Run the editor until it exits. Returns the number of applied saves.

        Raises:
            EditorError: If the editor cannot start or exits non-zero
            KegError: The last save failure when no save was applied
            asyncio.CancelledError: When cancelled; the editor has exited by then
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        initial = await _read(self.path)
        self._last_digest = _digest(initial) if initial is not None else ""

        observer = Observer()
        observer.schedule(_WatchdogBridge(self.path, loop, queue), str(self.path.parent), recursive=False)
        observer.start()

        process = None
        try:
            try:
                process = await asyncio.create_subprocess_exec(*self.command)
            except OSError as e:
                raise EditorError(f"failed to start editor {self.command[0]!r}: {e}") from e
            logger.debug("editor_started", command=self.command, pid=process.pid)
            exited = asyncio.ensure_future(process.wait())

            try:
                while not exited.done():
                    if self._cancelled():
                        raise asyncio.CancelledError()
                    try:
                        await asyncio.wait_for(queue.get(), timeout=self.tick)
                        self.state = EditorState.PENDING_SAVE
                        self.pending_since = loop.time()
                    except asyncio.TimeoutError:
                        pass
                    if self.state is EditorState.PENDING_SAVE and loop.time() - self.pending_since >= self.settle:
                        self.state = EditorState.IDLE
                        await self._apply()
            finally:
                if not exited.done():
                    exited.cancel()

            # the editor may have written right before exiting
            self.state = EditorState.IDLE
            await self._apply()
        except asyncio.CancelledError:
            logger.info("editor_cancelled", path=str(self.path))
            raise
        finally:
            if process is not None and process.returncode is None:
                try:
                    process.terminate()
                except ProcessLookupError:
                    pass
                await process.wait()
            observer.stop()
            await asyncio.to_thread(observer.join)

        if process.returncode != 0:
            raise EditorError(f"editor exited with status {process.returncode}")
        if self.saves == 0 and self.last_error is not None:
            raise self.last_error
        return self.saves


async def edit_with_live_saves(
    path: Path,
    on_save: SaveCallback,
    *,
    editor: str | Sequence[str] | None = None,
    settle: float | None = None,
    tick: float | None = None,
    cancel: asyncio.Event | None = None,
) -> int:
    """Open path in an editor, applying each settled save through on_save."""
    session = LiveEditSession(path, on_save, editor=editor, settle=settle, tick=tick, cancel=cancel)
    return await session.run()
