"""
In-memory cache module for kegdex.

Contains the KegCache class that keeps an indexed dex and the parsed nodes of
each open keg, keyed by the keg's resolved root directory.
"""

import time
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from .content import parse_content
from .dex import Dex
from .keg import Keg
from .models import CachedNode, IndexOptions, NodeId

logger = structlog.get_logger(__name__)


@dataclass
class _KegEntry:
    keg: Keg
    dex: Dex | None = None
    nodes: dict[NodeId, CachedNode] = field(default_factory=dict)
    loaded_at: float = 0


class KegCache:
    """Cache of open kegs. Avoids re-reading every node on each request.

    Uses incremental refresh: runs an incremental index, then only reloads
    nodes whose stats hash changed and drops nodes that disappeared.
    """

    def __init__(self, ttl: int = 60):
        self.ttl = ttl
        self._entries: dict[Path, _KegEntry] = {}

    @staticmethod
    def key(root: Path | str) -> Path:
        return Path(root).expanduser().resolve()

    def keg(self, root: Path | str) -> Keg:
        """The Keg for root, opened once per resolved path."""
        key = self.key(root)
        entry = self._entries.get(key)
        if entry is None:
            entry = _KegEntry(keg=Keg.open(key))
            self._entries[key] = entry
        return entry.keg

    def add(self, root: Path | str, keg: Keg) -> None:
        """Register an already opened keg under root."""
        self._entries[self.key(root)] = _KegEntry(keg=keg)

    def is_stale(self, root: Path | str) -> bool:
        entry = self._entries.get(self.key(root))
        if entry is None or entry.dex is None:
            return True
        return (time.time() - entry.loaded_at) > self.ttl

    def invalidate(self, root: Path | str | None = None) -> None:
        """Mark one keg (or all) stale so the next read refreshes."""
        entries = self._entries.values() if root is None else [self._entries.get(self.key(root))]
        for entry in entries:
            if entry is not None:
                entry.loaded_at = 0
                entry.dex = None

    async def _load_node(self, keg: Keg, node_id: NodeId, dex: Dex) -> CachedNode:
        raw = await keg.read_content(node_id)
        meta = await keg.read_meta(node_id)
        content = parse_content(raw)
        ref = dex.get_ref(node_id)
        title = meta.title or content.title
        return CachedNode(
            id=node_id,
            title=title,
            title_lower=title.lower(),
            lead=meta.lead or content.lead,
            tags=meta.tags,
            body=content.body,
            body_lower=content.body.lower(),
            links=content.links,
            hash=content.digest,
            updated=ref.updated if ref else None,
            word_count=len(content.body.split()),
        )

    async def refresh(self, root: Path | str, force: bool = False) -> None:
        """Re-index and reload a keg if its entry is stale.

        Args:
            root: Keg directory
            force: If True, rebuilds the dex and reloads every node.
        """
        keg = self.keg(root)
        entry = self._entries[self.key(root)]
        if not force and not self.is_stale(root):
            return

        start_time = time.time()
        dex = await keg.index(IndexOptions(rebuild=force))

        added = updated = removed = 0
        current = {ref.id for ref in dex.nodes()}
        full = force or not entry.nodes
        if full:
            entry.nodes.clear()

        for node_id in sorted(current):
            cached = entry.nodes.get(node_id)
            if cached is not None:
                stats = await keg.read_stats(node_id)
                if stats is not None and stats.hash == cached.hash:
                    continue
            entry.nodes[node_id] = await self._load_node(keg, node_id, dex)
            if cached is None:
                added += 1
            else:
                updated += 1

        for node_id in set(entry.nodes) - current:
            del entry.nodes[node_id]
            removed += 1

        entry.dex = dex
        entry.loaded_at = time.time()
        logger.info(
            "cache_refreshed",
            root=str(self.key(root)),
            refresh_type="full" if full else "incremental",
            node_count=len(entry.nodes),
            added=added,
            updated=updated,
            removed=removed,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )

    async def get_dex(self, root: Path | str) -> Dex:
        await self.refresh(root)
        return self._entries[self.key(root)].dex

    async def get_nodes(self, root: Path | str) -> list[CachedNode]:
        """All cached nodes in ascending id order."""
        await self.refresh(root)
        nodes = self._entries[self.key(root)].nodes
        return [nodes[i] for i in sorted(nodes)]

    async def get_node(self, root: Path | str, node_id: NodeId) -> CachedNode | None:
        await self.refresh(root)
        return self._entries[self.key(root)].nodes.get(node_id)

    async def get_node_count(self, root: Path | str) -> int:
        await self.refresh(root)
        return len(self._entries[self.key(root)].nodes)
