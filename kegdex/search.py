"""
Search and query functions for kegdex.

Contains functions for listing nodes by tag expression, reading a node with
its backlinks, exploring tags, full text search and keg statistics. All reads
go through a KegCache.
"""

from pathlib import Path

import structlog

from .cache import KegCache
from .models import NodeId, NodeRef, NodeView, SearchResult
from .tag_expr import evaluate
from .utils import SEARCH_SPLIT_PATTERN, format_time

logger = structlog.get_logger(__name__)


async def list_nodes(cache: KegCache, root: Path, tag_expression: str | None = None) -> list[NodeRef]:
    """Node listing, optionally filtered by a boolean tag expression.

    Raises:
        TagExpressionError: If the expression is invalid
    """
    dex = await cache.get_dex(root)
    refs = dex.nodes()
    if not tag_expression:
        return refs
    matched = evaluate(tag_expression, dex.node_ids(), dex.tag_nodes)
    return [ref for ref in refs if ref.id in matched]


async def get_node(cache: KegCache, root: Path, node_id: NodeId) -> NodeView | None:
    """Full view of one node, or None when it does not exist."""
    node = await cache.get_node(root, node_id)
    if node is None:
        return None
    dex = await cache.get_dex(root)
    return NodeView(
        id=str(node.id),
        title=node.title,
        lead=node.lead,
        tags=node.tags,
        updated=format_time(node.updated) if node.updated else "",
        links=[str(i) for i in dex.links(node_id)],
        backlinks=[str(i) for i in dex.backlinks(node_id)],
        body=node.body,
    )


async def get_backlinks(cache: KegCache, root: Path, node_id: NodeId) -> list[NodeRef]:
    """Nodes whose body links to node_id."""
    dex = await cache.get_dex(root)
    refs = []
    for src in dex.backlinks(node_id):
        ref = dex.get_ref(src)
        if ref is not None:
            refs.append(ref)
    return refs


async def explore_tags(cache: KegCache, root: Path) -> list[tuple[str, int]]:
    """Every tag with the number of nodes carrying it, most used first."""
    dex = await cache.get_dex(root)
    counts = [(tag, len(dex.tag_nodes(tag))) for tag in dex.tag_list()]
    counts.sort(key=lambda x: (-x[1], x[0]))
    return counts


async def search_nodes(cache: KegCache, root: Path, query: str, max_results: int = 10) -> list[SearchResult]:
    """Search nodes by title or body.

    Supports multi-word queries: all words must be present (AND logic).
    """
    results: list[SearchResult] = []

    terms = [t.strip().lower() for t in SEARCH_SPLIT_PATTERN.split(query) if t.strip()]
    if not terms:
        return []

    for node in await cache.get_nodes(root):
        if not all(term in node.title_lower or term in node.body_lower for term in terms):
            continue

        score = 0
        for term in terms:
            if term in node.title_lower:
                score += 10
            if term in node.tags:
                score += 5
            score += node.body_lower.count(term)

        snippet_idx = -1
        for term in terms:
            idx = node.body_lower.find(term)
            if idx >= 0:
                snippet_idx = idx
                break

        if snippet_idx >= 0:
            start = max(0, snippet_idx - 50)
            end = min(len(node.body), snippet_idx + 150)
            snippet = "..." + node.body[start:end].replace("\n", " ") + "..."
        else:
            snippet = node.lead or node.body[:200].replace("\n", " ")

        results.append(SearchResult(
            id=str(node.id),
            title=node.title,
            score=float(score),
            snippet=snippet,
            tags=node.tags,
            matched_terms=terms,
        ))

    results.sort(key=lambda x: x.score, reverse=True)
    final_results = results[:max_results]
    logger.debug("search_completed", query=query, results=len(final_results))
    return final_results


async def get_keg_stats(cache: KegCache, root: Path) -> dict:
    """Statistics about a keg."""
    dex = await cache.get_dex(root)
    nodes = await cache.get_nodes(root)
    refs = dex.nodes()

    recent = sorted((r for r in refs if r.updated), key=lambda r: r.updated, reverse=True)[:10]
    orphans = [str(r.id) for r in refs if not dex.links(r.id) and not dex.backlinks(r.id)]

    return {
        "total_nodes": len(refs),
        "total_words": sum(n.word_count for n in nodes),
        "total_links": sum(len(dex.links(r.id)) for r in refs),
        "top_tags": (await explore_tags(cache, root))[:20],
        "orphans": orphans,
        "recent_nodes": [
            {"id": str(r.id), "title": r.title, "updated": format_time(r.updated)}
            for r in recent
        ],
    }
