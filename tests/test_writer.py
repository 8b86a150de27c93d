"""
Tests for the edit file format and the create and edit flows.
"""

import io
import sys
import textwrap

import pytest


def editor_writing(tmp_path, content: bytes) -> list[str]:
    """Editor command that replaces the edited file with content."""
    payload = tmp_path / "payload.bin"
    payload.write_bytes(content)
    script = tmp_path / "write_payload.py"
    script.write_text(textwrap.dedent(f"""
        import shutil, sys
        shutil.copyfile({str(payload)!r}, sys.argv[1])
    """), encoding="utf-8")
    return [sys.executable, str(script)]


class TestEditFile:
    """Tests for compose_edit_file and split_edit_file."""

    def test_compose(self):
        from kegdex.writer import compose_edit_file

        assert compose_edit_file(b"tags: [a]\n\n", b"# T\n") == b"---\ntags: [a]\n---\n# T\n"

    def test_split(self):
        from kegdex.writer import split_edit_file

        meta, content = split_edit_file(b"---\ntitle: X\ntags: [a]\n---\n# Body\n")

        assert meta == b"title: X\ntags: [a]\n"
        assert content == b"# Body\n"

    def test_split_without_frontmatter(self):
        from kegdex.writer import split_edit_file

        assert split_edit_file(b"# Just body\n") == (b"", b"# Just body\n")

    def test_split_dots_closing_marker(self):
        from kegdex.writer import split_edit_file

        assert split_edit_file(b"---\ntags: []\n...\nbody") == (b"tags: []\n", b"body")

    @pytest.mark.parametrize("raw", [
        b"---\ntags: [a]\n# never closed\n",
        b"---\ntags: [broken\n---\nbody\n",
        b"---\n- a list\n---\nbody\n",
    ])
    def test_split_invalid(self, raw):
        from kegdex.utils import ParseFailureError
        from kegdex.writer import split_edit_file

        with pytest.raises(ParseFailureError):
            split_edit_file(raw)

    def test_size_limit(self, monkeypatch):
        from kegdex.config import settings
        from kegdex.utils import InvalidError
        from kegdex.writer import validate_content_size

        monkeypatch.setattr(settings, "max_content_size", 10)

        assert validate_content_size(b"small") == b"small"
        with pytest.raises(InvalidError, match="exceeds maximum"):
            validate_content_size(b"x" * 11)


class TestCreateNode:
    """Tests for create_node."""

    async def test_piped_input(self, keg):
        from kegdex.models import NodeId, Stream
        from kegdex.writer import create_node

        stream = Stream(is_piped=True, input=io.BytesIO(b"---\ntags: [Piped]\n---\n# From pipe\n\nHello.\n"))

        node_id = await create_node(keg, stream)

        assert node_id == NodeId(id=1)
        assert (await keg.read_meta(node_id)).tags == ["piped"]
        assert await keg.read_content(node_id) == b"# From pipe\n\nHello.\n"
        assert (await keg.read_stats(node_id)).title == "From pipe"

    async def test_options(self, keg):
        from kegdex.models import CreateOptions, Stream
        from kegdex.writer import create_node

        node_id = await create_node(keg, Stream(), CreateOptions(title="Opt", tags=["x"]))

        assert (await keg.read_stats(node_id)).title == "Opt"

    async def test_interactive(self, keg, tmp_path):
        from kegdex.models import Stream
        from kegdex.writer import create_node

        next_id = await keg.next_id()
        editor = editor_writing(tmp_path, b"---\ntags: [drafted]\n---\n# Drafted\n\nIn the editor.\n")

        node_id = await create_node(keg, Stream(is_tty=True), editor=editor)

        assert node_id == next_id
        assert (await keg.read_meta(node_id)).tags == ["drafted"]
        assert (await keg.read_stats(node_id)).lead == "In the editor."

    async def test_interactive_without_save(self, keg, tmp_path):
        from kegdex.models import NodeId, Stream
        from kegdex.utils import InvalidError
        from kegdex.writer import NEW_NODE_TEMPLATE, create_node

        editor = editor_writing(tmp_path, NEW_NODE_TEMPLATE)

        with pytest.raises(InvalidError, match="no content saved"):
            await create_node(keg, Stream(is_tty=True), editor=editor)

        assert await keg.list_nodes() == [NodeId(id=0)]


class TestEditNode:
    """Tests for edit_node."""

    async def test_piped_edit(self, sample_keg):
        from kegdex.models import NodeId, Stream
        from kegdex.writer import edit_node

        raw = b"---\ntags: [z]\n---\n# Three edited\n"

        changed = await edit_node(sample_keg, NodeId(id=3), Stream(is_piped=True, input=io.BytesIO(raw)))

        assert changed is True
        assert (await sample_keg.read_meta(NodeId(id=3))).tags == ["z"]
        assert await sample_keg.read_content(NodeId(id=3)) == b"# Three edited\n"

    async def test_piped_edit_invalid_meta_writes_nothing(self, sample_keg):
        from kegdex.models import NodeId, Stream
        from kegdex.utils import ParseFailureError
        from kegdex.writer import edit_node

        node = NodeId(id=3)
        before = (await sample_keg.repo.read_meta(node), await sample_keg.read_content(node))
        raw = b"---\ntags: [oops\n---\n# Changed\n"

        with pytest.raises(ParseFailureError):
            await edit_node(sample_keg, node, Stream(is_piped=True, input=io.BytesIO(raw)))

        assert (await sample_keg.repo.read_meta(node), await sample_keg.read_content(node)) == before

    async def test_interactive_edit(self, sample_keg, tmp_path):
        from kegdex.models import NodeId, Stream
        from kegdex.writer import edit_node

        editor = editor_writing(tmp_path, b"---\ntags: [c]\n---\n# Three\n\nEdited lead.\n")

        changed = await edit_node(sample_keg, NodeId(id=3), Stream(is_tty=True), editor=editor)

        assert changed is True
        assert (await sample_keg.read_stats(NodeId(id=3))).lead == "Edited lead."

    async def test_missing_node(self, keg):
        from kegdex.models import NodeId, Stream
        from kegdex.utils import NotExistError
        from kegdex.writer import edit_node

        with pytest.raises(NotExistError):
            await edit_node(keg, NodeId(id=77), Stream(is_piped=True, input=io.BytesIO(b"x")))
