"""
MCP Tools module for kegdex.

Contains the MCP tool handlers (list_tools and call_tool) and the server
factory. The server works on one keg root through a caller owned KegCache.
"""

import json
from pathlib import Path
from typing import Any

import structlog
from mcp.server import Server
from mcp.types import (
    Resource,
    TextContent,
    Tool,
)

from .cache import KegCache
from .config import settings
from .models import CreateOptions, IndexOptions, NodeId, OperationResult
from .search import (
    explore_tags,
    get_backlinks,
    get_keg_stats,
    get_node,
    list_nodes,
    search_nodes,
)
from .utils import KegError, format_time
from .writer import apply_edited_raw, validate_content_size

logger = structlog.get_logger(__name__)

_NODE_ID_PROPERTY = {
    "type": "string",
    "description": "Node id, e.g. '42' or '42-0001'"
}

TOOLS = [
    Tool(
        name="keg_list",
        description="List nodes of the keg, optionally filtered by a boolean tag expression "
                    "such as 'golang and (cli or web) and not draft'.",
        inputSchema={
            "type": "object",
            "properties": {
                "tags": {
                    "type": "string",
                    "description": "Optional tag expression (and, or, not, parentheses; quote tags named like keywords)"
                }
            }
        }
    ),
    Tool(
        name="keg_cat",
        description="Read a node: title, tags, links, backlinks and full markdown body.",
        inputSchema={
            "type": "object",
            "properties": {"node_id": _NODE_ID_PROPERTY},
            "required": ["node_id"]
        }
    ),
    Tool(
        name="keg_search",
        description="Search nodes by title or body. All words must match.",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Search query (keywords or phrase)"
                },
                "max_results": {
                    "type": "integer",
                    "description": "Maximum number of results (default: 10)",
                    "default": 10
                }
            },
            "required": ["query"]
        }
    ),
    Tool(
        name="keg_tags",
        description="List every tag in the keg with its node count.",
        inputSchema={"type": "object", "properties": {}}
    ),
    Tool(
        name="keg_backlinks",
        description="List nodes that link to a node.",
        inputSchema={
            "type": "object",
            "properties": {"node_id": _NODE_ID_PROPERTY},
            "required": ["node_id"]
        }
    ),
    Tool(
        name="keg_stats",
        description="Statistics about the keg (node count, words, links, top tags, recent changes).",
        inputSchema={"type": "object", "properties": {}}
    ),
    Tool(
        name="keg_create",
        description="Create a node with the next free id. Without a body, the body is '# <title>' followed by the lead.",
        inputSchema={
            "type": "object",
            "properties": {
                "title": {"type": "string", "description": "Node title"},
                "lead": {"type": "string", "description": "Optional first paragraph"},
                "tags": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Tags for the node"
                },
                "body": {"type": "string", "description": "Optional full markdown body"}
            },
            "required": ["title"]
        }
    ),
    Tool(
        name="keg_edit",
        description="Replace a node's content. The text may start with a YAML frontmatter block "
                    "(--- ... ---) holding the node metadata; the rest is the markdown body.",
        inputSchema={
            "type": "object",
            "properties": {
                "node_id": _NODE_ID_PROPERTY,
                "content": {"type": "string", "description": "New node content"}
            },
            "required": ["node_id", "content"]
        }
    ),
    Tool(
        name="keg_move",
        description="Renumber a node and rewrite every ../<id> reference to it across the keg.",
        inputSchema={
            "type": "object",
            "properties": {
                "src": {"type": "string", "description": "Current node id"},
                "dst": {"type": "string", "description": "New node id (must be free)"}
            },
            "required": ["src", "dst"]
        }
    ),
    Tool(
        name="keg_remove",
        description="Remove a node. Node 0 cannot be removed.",
        inputSchema={
            "type": "object",
            "properties": {"node_id": _NODE_ID_PROPERTY},
            "required": ["node_id"]
        }
    ),
    Tool(
        name="keg_index",
        description="Update the keg's dex (node list, tags, links, backlinks, changes).",
        inputSchema={
            "type": "object",
            "properties": {
                "rebuild": {
                    "type": "boolean",
                    "description": "Rebuild everything instead of updating incrementally",
                    "default": False
                }
            }
        }
    ),
]


def _format_error(result: OperationResult) -> str:
    return f"Error ({result.kind}): {result.error}"


async def _reindex(cache: KegCache, root: Path) -> None:
    await cache.keg(root).index()
    cache.invalidate(root)


async def _dispatch(name: str, arguments: dict[str, Any], cache: KegCache, root: Path) -> str:
    keg = cache.keg(root)

    if name == "keg_list":
        refs = await list_nodes(cache, root, arguments.get("tags") or None)
        if not refs:
            return "No nodes found"
        output = f"Found {len(refs)} nodes:\n\n"
        for ref in refs:
            updated = format_time(ref.updated) if ref.updated else ""
            output += f"- **{ref.id}** {ref.title} ({updated})\n"
        return output

    elif name == "keg_cat":
        node_id = NodeId.parse(arguments.get("node_id", ""))
        view = await get_node(cache, root, node_id)
        if view is None:
            return f"Node not found: '{node_id}'"
        output = f"# {view.title}\n\n"
        output += f"**Id:** {view.id}\n"
        output += f"**Updated:** {view.updated}\n"
        output += f"**Tags:** {', '.join(view.tags)}\n"
        output += f"**Links:** {', '.join(view.links)}\n"
        output += f"**Backlinks:** {', '.join(view.backlinks)}\n\n"
        output += "---\n\n"
        output += view.body
        return output

    elif name == "keg_search":
        query = arguments.get("query", "")
        max_results = min(arguments.get("max_results", 10), settings.max_search_results)
        results = await search_nodes(cache, root, query, max_results)
        if not results:
            return f"No nodes found for query: '{query}'"
        output = f"Found {len(results)} nodes for '{query}':\n\n"
        for r in results:
            output += f"**{r.title}** ({r.id})\n"
            output += f"  Tags: {', '.join(r.tags[:3]) if r.tags else 'none'}\n"
            output += f"  {r.snippet}\n\n"
        return output

    elif name == "keg_tags":
        tags = await explore_tags(cache, root)
        if not tags:
            return "No tags found"
        output = f"Found {len(tags)} tags:\n\n"
        for tag, count in tags:
            output += f"- {tag}: {count}\n"
        return output

    elif name == "keg_backlinks":
        node_id = NodeId.parse(arguments.get("node_id", ""))
        refs = await get_backlinks(cache, root, node_id)
        if not refs:
            return f"No backlinks found for: '{node_id}'"
        output = f"Found {len(refs)} nodes linking to '{node_id}':\n\n"
        for ref in refs:
            output += f"- **{ref.id}** {ref.title}\n"
        return output

    elif name == "keg_stats":
        stats = await get_keg_stats(cache, root)
        output = "# Keg Statistics\n\n"
        output += f"**Total Nodes:** {stats['total_nodes']}\n"
        output += f"**Total Words:** {stats['total_words']:,}\n"
        output += f"**Total Links:** {stats['total_links']:,}\n"
        output += f"**Orphan Nodes:** {len(stats['orphans'])}\n\n"
        output += "## Top Tags\n"
        for tag, count in stats['top_tags'][:15]:
            output += f"- {tag}: {count}\n"
        output += "\n## Recent Changes\n"
        for node in stats['recent_nodes']:
            output += f"- {node['updated']} **{node['id']}** {node['title']}\n"
        return output

    elif name == "keg_create":
        title = arguments.get("title", "")
        if not title or not title.strip():
            return "Error: title is required"
        body = arguments.get("body")
        options = CreateOptions(
            title=title.strip(),
            lead=arguments.get("lead", ""),
            tags=arguments.get("tags", []),
            body=validate_content_size(body.encode("utf-8")) if body else None,
        )
        node_id = await keg.create(options)
        await _reindex(cache, root)
        return f"Created node {node_id}"

    elif name == "keg_edit":
        node_id = NodeId.parse(arguments.get("node_id", ""))
        await apply_edited_raw(keg, node_id, arguments.get("content", "").encode("utf-8"))
        await _reindex(cache, root)
        return f"Updated node {node_id}"

    elif name == "keg_move":
        src = NodeId.parse(arguments.get("src", ""))
        dst = NodeId.parse(arguments.get("dst", ""))
        rewritten = await keg.move(src, dst)
        await _reindex(cache, root)
        output = f"Moved node {src} to {dst}\n"
        if rewritten:
            output += f"Rewrote references in: {', '.join(str(n) for n in rewritten)}\n"
        return output

    elif name == "keg_remove":
        node_id = NodeId.parse(arguments.get("node_id", ""))
        await keg.remove(node_id)
        await _reindex(cache, root)
        return f"Removed node {node_id}"

    elif name == "keg_index":
        rebuild = bool(arguments.get("rebuild", False))
        dex = await keg.index(IndexOptions(rebuild=rebuild))
        cache.invalidate(root)
        return f"Indexed {len(dex.nodes())} nodes ({'full rebuild' if rebuild else 'incremental'})"

    return f"Unknown tool: {name}"


async def handle_tool(name: str, arguments: dict[str, Any], cache: KegCache, root: Path) -> str:
    """Run a tool and render its text output. Keg errors become error text."""
    try:
        return await _dispatch(name, arguments or {}, cache, root)
    except KegError as e:
        result = OperationResult(success=False, kind=e.kind.value, error=str(e))
        logger.warning("tool_failed", tool=name, kind=result.kind, error=result.error)
        return _format_error(result)


def create_server(cache: KegCache, root: Path) -> Server:
    """Build the MCP server for the keg at root."""
    server = Server("kegdex")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List available tools."""
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool calls."""
        text = await handle_tool(name, arguments, cache, root)
        return [TextContent(type="text", text=text)]

    # ============== Resources ==============

    @server.list_resources()
    async def list_resources() -> list[Resource]:
        """List available resources."""
        return [
            Resource(
                uri="keg://stats",
                name="Keg Statistics",
                description="Statistics about the keg",
                mimeType="application/json"
            ),
        ]

    @server.read_resource()
    async def read_resource(uri) -> str:
        """Read a resource."""
        if str(uri) == "keg://stats":
            stats = await get_keg_stats(cache, root)
            return json.dumps(stats, indent=2)

        return json.dumps({"error": f"Unknown resource: {uri}"})

    return server
