"""
Tests for the external editor watch and save loop.

The editor is a small Python script run with the current interpreter.
"""

import asyncio
import sys
import textwrap

import pytest

SETTLE = 0.05
TICK = 0.02


def fake_editor(tmp_path, body: str) -> list[str]:
    """Editor command running body with the edited path in sys.argv[1]."""
    script = tmp_path / "fake_editor.py"
    script.write_text(
        "import sys, time\npath = sys.argv[1]\n" + textwrap.dedent(body),
        encoding="utf-8",
    )
    return [sys.executable, str(script)]


class Recorder:
    def __init__(self):
        self.saves: list[bytes] = []

    async def __call__(self, data: bytes) -> None:
        self.saves.append(data)


@pytest.fixture
def target(tmp_path):
    path = tmp_path / "work" / "node.md"
    path.parent.mkdir()
    path.write_bytes(b"original\n")
    return path


class TestResolveEditor:
    """Tests for picking the editor command."""

    def test_explicit(self):
        from kegdex.editor import resolve_editor

        assert resolve_editor("code --wait") == ["code", "--wait"]
        assert resolve_editor(["nano"]) == ["nano"]

    def test_environment_fallbacks(self, monkeypatch):
        from kegdex.config import settings
        from kegdex.editor import resolve_editor

        monkeypatch.setattr(settings, "editor", "")
        monkeypatch.delenv("VISUAL", raising=False)
        monkeypatch.setenv("EDITOR", "nano -w")
        assert resolve_editor() == ["nano", "-w"]

        monkeypatch.delenv("EDITOR")
        assert resolve_editor() == ["vi"]

        monkeypatch.setattr(settings, "editor", "emacs")
        assert resolve_editor() == ["emacs"]


class TestLiveEdit:
    """Tests for LiveEditSession."""

    async def test_saves_are_applied(self, tmp_path, target):
        from kegdex.editor import edit_with_live_saves

        editor = fake_editor(tmp_path, """
            with open(path, "w") as f:
                f.write("first\\n")
            time.sleep(0.4)
            with open(path, "w") as f:
                f.write("second\\n")
            time.sleep(0.4)
        """)
        recorder = Recorder()

        saves = await edit_with_live_saves(target, recorder, editor=editor, settle=SETTLE, tick=TICK)

        assert saves == len(recorder.saves)
        assert saves >= 1
        assert recorder.saves[-1] == b"second\n"

    async def test_write_right_before_exit(self, tmp_path, target):
        from kegdex.editor import edit_with_live_saves

        editor = fake_editor(tmp_path, """
            with open(path, "w") as f:
                f.write("quick\\n")
        """)
        recorder = Recorder()

        await edit_with_live_saves(target, recorder, editor=editor, settle=SETTLE, tick=TICK)

        assert recorder.saves[-1] == b"quick\n"

    async def test_identical_save_is_skipped(self, tmp_path, target):
        from kegdex.editor import edit_with_live_saves

        editor = fake_editor(tmp_path, """
            with open(path, "w") as f:
                f.write("original\\n")
            time.sleep(0.2)
        """)
        recorder = Recorder()

        saves = await edit_with_live_saves(target, recorder, editor=editor, settle=SETTLE, tick=TICK)

        assert saves == 0
        assert recorder.saves == []

    async def test_bad_tags_do_not_end_session(self, tmp_path, target):
        from kegdex.editor import edit_with_live_saves
        from kegdex.models import NodeMeta

        editor = fake_editor(tmp_path, """
            with open(path, "w") as f:
                f.write("tags: 5\\n")
            time.sleep(0.4)
            with open(path, "w") as f:
                f.write("tags: [ok]\\n")
            time.sleep(0.4)
        """)
        applied: list[list[str]] = []

        async def on_save(data: bytes) -> None:
            applied.append(NodeMeta.from_yaml(data).tags)

        saves = await edit_with_live_saves(target, on_save, editor=editor, settle=SETTLE, tick=TICK)

        assert saves >= 1
        assert applied[-1] == ["ok"]

    async def test_no_save(self, tmp_path, target):
        from kegdex.editor import edit_with_live_saves

        recorder = Recorder()

        saves = await edit_with_live_saves(
            target, recorder, editor=fake_editor(tmp_path, "pass\n"), settle=SETTLE, tick=TICK,
        )

        assert saves == 0
        assert target.read_bytes() == b"original\n"

    async def test_nonzero_exit(self, tmp_path, target):
        from kegdex.editor import EditorError, edit_with_live_saves

        with pytest.raises(EditorError, match="status 3"):
            await edit_with_live_saves(
                target, Recorder(), editor=fake_editor(tmp_path, "sys.exit(3)\n"), settle=SETTLE, tick=TICK,
            )

    async def test_missing_editor(self, tmp_path, target):
        from kegdex.editor import EditorError, edit_with_live_saves

        with pytest.raises(EditorError, match="failed to start editor"):
            await edit_with_live_saves(
                target, Recorder(), editor=[str(tmp_path / "no-such-editor")], settle=SETTLE, tick=TICK,
            )

    async def test_cancel_terminates_editor(self, tmp_path, target):
        from kegdex.editor import edit_with_live_saves

        editor = fake_editor(tmp_path, "time.sleep(30)\n")
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        loop.call_later(0.3, cancel.set)
        started = loop.time()

        with pytest.raises(asyncio.CancelledError):
            await edit_with_live_saves(
                target, Recorder(), editor=editor, settle=SETTLE, tick=TICK, cancel=cancel,
            )

        assert loop.time() - started < 10

    async def test_failed_save_is_reported(self, tmp_path, target):
        from kegdex.editor import edit_with_live_saves
        from kegdex.utils import ParseFailureError

        async def rejecting(data: bytes) -> None:
            raise ParseFailureError("bad frontmatter")

        editor = fake_editor(tmp_path, """
            with open(path, "w") as f:
                f.write("broken\\n")
        """)

        with pytest.raises(ParseFailureError, match="bad frontmatter"):
            await edit_with_live_saves(target, rejecting, editor=editor, settle=SETTLE, tick=TICK)
