"""
Tests for MCP tool handlers.
"""

import json


class TestReadTools:
    """Tests for the read-only tools."""

    async def test_list(self, keg_cache, keg_path):
        from kegdex.tools import handle_tool

        text = await handle_tool("keg_list", {"tags": "a and not c"}, keg_cache, keg_path)

        assert text == "Found 1 nodes:\n\n- **1** One (2025-01-01T12:00:00Z)\n"

    async def test_list_invalid_expression(self, keg_cache, keg_path):
        from kegdex.tools import handle_tool

        text = await handle_tool("keg_list", {"tags": "(a"}, keg_cache, keg_path)

        assert text.startswith("Error (parse_failure): invalid tag expression")

    async def test_cat(self, keg_cache, keg_path):
        from kegdex.tools import handle_tool

        text = await handle_tool("keg_cat", {"node_id": "2"}, keg_cache, keg_path)

        assert text.startswith("# Two\n")
        assert "**Tags:** a, c" in text
        assert "**Backlinks:** 1" in text
        assert "Second node links ../1 and ../3." in text

    async def test_cat_invalid_id(self, keg_cache, keg_path):
        from kegdex.tools import handle_tool

        text = await handle_tool("keg_cat", {"node_id": "abc"}, keg_cache, keg_path)

        assert text.startswith("Error (invalid): invalid node id")

    async def test_cat_missing(self, keg_cache, keg_path):
        from kegdex.tools import handle_tool

        assert await handle_tool("keg_cat", {"node_id": "40"}, keg_cache, keg_path) == "Node not found: '40'"

    async def test_tags_and_backlinks(self, keg_cache, keg_path):
        from kegdex.tools import handle_tool

        tags = await handle_tool("keg_tags", {}, keg_cache, keg_path)
        backlinks = await handle_tool("keg_backlinks", {"node_id": "3"}, keg_cache, keg_path)

        assert tags == "Found 3 tags:\n\n- a: 2\n- c: 2\n- b: 1\n"
        assert "- **2** Two" in backlinks

    async def test_search(self, keg_cache, keg_path):
        from kegdex.tools import handle_tool

        text = await handle_tool("keg_search", {"query": "third"}, keg_cache, keg_path)

        assert text.startswith("Found 1 nodes for 'third'")
        assert "**Three** (3)" in text

    async def test_stats(self, keg_cache, keg_path):
        from kegdex.tools import handle_tool

        text = await handle_tool("keg_stats", {}, keg_cache, keg_path)

        assert "**Total Nodes:** 4" in text
        assert "**Orphan Nodes:** 1" in text

    async def test_unknown_tool(self, keg_cache, keg_path):
        from kegdex.tools import handle_tool

        assert await handle_tool("nope", {}, keg_cache, keg_path) == "Unknown tool: nope"


class TestWriteTools:
    """Tests for the mutating tools."""

    async def test_create_then_list(self, keg_cache, keg_path):
        from kegdex.tools import handle_tool

        text = await handle_tool("keg_create", {"title": "Four", "tags": ["new"]}, keg_cache, keg_path)
        listed = await handle_tool("keg_list", {"tags": "new"}, keg_cache, keg_path)

        assert text == "Created node 4"
        assert "**4** Four" in listed

    async def test_create_requires_title(self, keg_cache, keg_path):
        from kegdex.tools import handle_tool

        assert await handle_tool("keg_create", {"title": "  "}, keg_cache, keg_path) == "Error: title is required"

    async def test_edit(self, keg_cache, keg_path, sample_keg):
        from kegdex.models import NodeId
        from kegdex.tools import handle_tool

        content = "---\ntags: [edited]\n---\n# Three\n\nNew words.\n"
        text = await handle_tool("keg_edit", {"node_id": "3", "content": content}, keg_cache, keg_path)

        assert text == "Updated node 3"
        assert (await sample_keg.read_meta(NodeId(id=3))).tags == ["edited"]
        assert "**3** Three" in await handle_tool("keg_list", {"tags": "edited"}, keg_cache, keg_path)

    async def test_edit_rejects_scalar_tags(self, keg_cache, keg_path, sample_keg):
        from kegdex.models import NodeId
        from kegdex.tools import handle_tool

        before = await sample_keg.read_meta(NodeId(id=1))
        content = "---\ntags: 5\n---\n# One\n"
        text = await handle_tool("keg_edit", {"node_id": "1", "content": content}, keg_cache, keg_path)

        assert text.startswith("Error")
        assert "tags must be a list or string" in text
        assert await sample_keg.read_meta(NodeId(id=1)) == before

    async def test_move(self, keg_cache, keg_path):
        from kegdex.tools import handle_tool

        text = await handle_tool("keg_move", {"src": "2", "dst": "20"}, keg_cache, keg_path)
        backlinks = await handle_tool("keg_backlinks", {"node_id": "20"}, keg_cache, keg_path)

        assert text == "Moved node 2 to 20\nRewrote references in: 1\n"
        assert "- **1** One" in backlinks

    async def test_move_collision(self, keg_cache, keg_path):
        from kegdex.tools import handle_tool

        text = await handle_tool("keg_move", {"src": "2", "dst": "3"}, keg_cache, keg_path)

        assert text == "Error (destination_exists): destination node 3 already exists"

    async def test_remove(self, keg_cache, keg_path):
        from kegdex.tools import handle_tool

        assert await handle_tool("keg_remove", {"node_id": "3"}, keg_cache, keg_path) == "Removed node 3"
        assert await handle_tool("keg_remove", {"node_id": "0"}, keg_cache, keg_path) == (
            "Error (invalid): node 0 cannot be removed"
        )
        assert await handle_tool("keg_remove", {"node_id": "3"}, keg_cache, keg_path) == (
            "Error (not_exist): node 3 not found"
        )

    async def test_index(self, keg_cache, keg_path):
        from kegdex.tools import handle_tool

        assert await handle_tool("keg_index", {"rebuild": True}, keg_cache, keg_path) == (
            "Indexed 4 nodes (full rebuild)"
        )


class TestServer:
    """Tests for the server factory."""

    def test_tool_names(self):
        from kegdex.tools import TOOLS

        names = {tool.name for tool in TOOLS}

        assert {"keg_list", "keg_cat", "keg_create", "keg_move", "keg_remove", "keg_index"} <= names

    async def test_create_server(self, keg_cache, keg_path):
        from mcp.server import Server

        from kegdex.search import get_keg_stats
        from kegdex.tools import create_server

        server = create_server(keg_cache, keg_path)

        assert isinstance(server, Server)
        assert json.loads(json.dumps(await get_keg_stats(keg_cache, keg_path)))["total_nodes"] == 4
