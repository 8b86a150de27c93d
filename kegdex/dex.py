"""
Dex: the derived indexes of a keg.

Artifacts live under `dex/` and are plain text:

    nodes.tsv   <id>\\t<updated>\\t<title>          ascending by id
    tags        <tag>\\t<id> <id> ...                sorted by tag
    links       <src>\\t<dst> <dst> ...
    backlinks   <dst>\\t<src> <src> ...
    changes.md  * <YYYY-MM-DD HH:MM:SS>Z [<title>](../<id>)   newest first

Keg configs may declare extra tag filtered indexes that use the changes.md
line format. An index run reads and validates every node before writing
anything, so a single malformed node leaves all artifacts untouched.
"""

import time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

import structlog

from .config import (
    BACKLINKS_INDEX,
    CHANGES_INDEX,
    CORE_INDEXES,
    DEX_DIR,
    LINKS_INDEX,
    NODES_INDEX,
    TAGS_INDEX,
)
from .content import parse_content
from .models import Content, IndexOptions, KegConfig, NodeId, NodeMeta, NodeRef, NodeStats
from .repository import Repository
from .tag_expr import Expr, evaluate_expr, parse_tag_expression
from .utils import (
    InvalidError,
    NotExistError,
    ParseFailureError,
    format_time,
    parse_time,
)

logger = structlog.get_logger(__name__)

_EPOCH = datetime.fromtimestamp(0).astimezone()


def _parse_id_list(text: str) -> set[NodeId]:
    ids: set[NodeId] = set()
    for part in text.split():
        try:
            ids.add(NodeId.parse(part))
        except InvalidError:
            continue
    return ids


def _lines(data: bytes) -> Iterable[str]:
    for line in data.decode("utf-8", errors="replace").splitlines():
        if line.strip():
            yield line


def _one_line(title: str) -> str:
    return " ".join(title.split())


# ============== Artifacts ==============

class NodeIndex:
    """Listing of every node with its title and last update."""

    def __init__(self, refs: Iterable[NodeRef] = ()):
        self.refs: dict[NodeId, NodeRef] = {ref.id: ref for ref in refs}

    @classmethod
    def parse(cls, data: bytes) -> "NodeIndex":
        """Parse nodes.tsv, skipping lines that do not parse."""
        refs = []
        for line in _lines(data):
            parts = line.split("\t", 2)
            if len(parts) < 2:
                continue
            try:
                node_id = NodeId.parse(parts[0])
                updated = parse_time(parts[1]) if parts[1].strip() else None
            except (InvalidError, ValueError):
                continue
            title = parts[2] if len(parts) > 2 else ""
            refs.append(NodeRef(id=node_id, title=title, updated=updated))
        return cls(refs)

    def data(self) -> bytes:
        out = []
        for node_id in sorted(self.refs):
            ref = self.refs[node_id]
            updated = format_time(ref.updated) if ref.updated else ""
            out.append(f"{node_id}\t{updated}\t{_one_line(ref.title)}\n")
        return "".join(out).encode("utf-8")


class TagIndex:
    """Mapping of tag to the nodes carrying it."""

    def __init__(self, tags: dict[str, set[NodeId]] | None = None):
        self.tags: dict[str, set[NodeId]] = tags or {}

    @classmethod
    def parse(cls, data: bytes) -> "TagIndex":
        tags: dict[str, set[NodeId]] = {}
        for line in _lines(data):
            tag, _, ids = line.partition("\t")
            tag = tag.strip()
            if tag:
                tags.setdefault(tag, set()).update(_parse_id_list(ids))
        return cls(tags)

    def add(self, node_id: NodeId, tags: Iterable[str]) -> None:
        for tag in tags:
            self.tags.setdefault(tag, set()).add(node_id)

    def remove(self, node_id: NodeId) -> None:
        for tag in list(self.tags):
            self.tags[tag].discard(node_id)
            if not self.tags[tag]:
                del self.tags[tag]

    def tags_of(self, node_id: NodeId) -> list[str]:
        return sorted(tag for tag, ids in self.tags.items() if node_id in ids)

    def data(self) -> bytes:
        out = []
        for tag in sorted(self.tags):
            ids = " ".join(str(i) for i in sorted(self.tags[tag]))
            out.append(f"{tag}\t{ids}\n")
        return "".join(out).encode("utf-8")


class LinkIndex:
    """Mapping of node to a set of nodes; used for both links and backlinks."""

    def __init__(self, edges: dict[NodeId, set[NodeId]] | None = None):
        self.edges: dict[NodeId, set[NodeId]] = edges or {}

    @classmethod
    def parse(cls, data: bytes) -> "LinkIndex":
        edges: dict[NodeId, set[NodeId]] = {}
        for line in _lines(data):
            head, _, ids = line.partition("\t")
            try:
                node_id = NodeId.parse(head)
            except InvalidError:
                continue
            targets = _parse_id_list(ids)
            if targets:
                edges.setdefault(node_id, set()).update(targets)
        return cls(edges)

    def get(self, node_id: NodeId) -> list[NodeId]:
        return sorted(self.edges.get(node_id, ()))

    def inverse(self) -> "LinkIndex":
        inverse: dict[NodeId, set[NodeId]] = {}
        for src, targets in self.edges.items():
            for dst in targets:
                inverse.setdefault(dst, set()).add(src)
        return LinkIndex(inverse)

    def data(self) -> bytes:
        out = []
        for node_id in sorted(self.edges):
            if not self.edges[node_id]:
                continue
            ids = " ".join(str(i) for i in sorted(self.edges[node_id]))
            out.append(f"{node_id}\t{ids}\n")
        return "".join(out).encode("utf-8")


class ChangesIndex:
    """Markdown list of nodes, most recently updated first."""

    def __init__(self, refs: Iterable[NodeRef] = ()):
        self.refs = sorted(refs, key=lambda r: (r.updated or _EPOCH, r.id), reverse=True)

    def data(self) -> bytes:
        out = []
        for ref in self.refs:
            stamp = format_time(ref.updated).replace("T", " ") if ref.updated else ""
            out.append(f"* {stamp} [{_one_line(ref.title)}](../{ref.id})\n")
        return "".join(out).encode("utf-8")


class TagFilteredIndex:
    """Changes style index of the nodes matching a tag expression."""

    def __init__(self, name: str, query: str):
        self.name = name
        self.query = query
        try:
            self.expr: Expr = parse_tag_expression(query)
        except ParseFailureError as e:
            raise ParseFailureError(f"index {name}: {e}") from e

    def render(self, refs: list[NodeRef], tags: TagIndex) -> bytes:
        universe = {ref.id for ref in refs}
        matched = evaluate_expr(self.expr, universe, lambda t: tags.tags.get(t.lower(), ()))
        return ChangesIndex(ref for ref in refs if ref.id in matched).data()


def custom_indexes(config: KegConfig) -> list[TagFilteredIndex]:
    """Tag filtered indexes declared in a keg config.

    Entries without tags and entries naming a core artifact are skipped.

    Raises:
        ParseFailureError: If an entry's tag expression is invalid
    """
    core = {f"{DEX_DIR}/{n}" for n in CORE_INDEXES}
    indexes = []
    for entry in config.indexes:
        if not entry.tags.strip() or entry.file in core:
            continue
        name = entry.file.removeprefix(f"{DEX_DIR}/")
        if not name or "/" in name:
            raise InvalidError(f"invalid index file: {entry.file!r}")
        indexes.append(TagFilteredIndex(name, entry.tags))
    return indexes


# ============== Read API ==============

class Dex:
    """In-memory view of a keg's derived indexes."""

    def __init__(self, nodes: NodeIndex, tags: TagIndex, links: LinkIndex, backlinks: LinkIndex):
        self._nodes = nodes
        self._tags = tags
        self._links = links
        self._backlinks = backlinks

    @classmethod
    async def load(cls, repo: Repository) -> "Dex":
        """Read the artifacts back from a repository; missing ones are empty."""

        async def read(name: str) -> bytes:
            try:
                return await repo.get_index(name)
            except NotExistError:
                return b""

        links = LinkIndex.parse(await read(LINKS_INDEX))
        return cls(
            NodeIndex.parse(await read(NODES_INDEX)),
            TagIndex.parse(await read(TAGS_INDEX)),
            links,
            LinkIndex.parse(await read(BACKLINKS_INDEX)),
        )

    def nodes(self) -> list[NodeRef]:
        """Listing in ascending id order."""
        return [self._nodes.refs[i] for i in sorted(self._nodes.refs)]

    def node_ids(self) -> set[NodeId]:
        return set(self._nodes.refs)

    def get_ref(self, node_id: NodeId) -> NodeRef | None:
        return self._nodes.refs.get(node_id)

    def links(self, node_id: NodeId) -> list[NodeId]:
        return self._links.get(node_id)

    def backlinks(self, node_id: NodeId) -> list[NodeId]:
        return self._backlinks.get(node_id)

    def tag_list(self) -> list[str]:
        return sorted(self._tags.tags)

    def tag_nodes(self, tag: str) -> list[NodeId]:
        return sorted(self._tags.tags.get(tag.strip().lower(), ()))

    def tags_of(self, node_id: NodeId) -> list[str]:
        return self._tags.tags_of(node_id)


# ============== Index run ==============

@dataclass
class _NodeRecord:
    id: NodeId
    content: Content
    meta: NodeMeta
    meta_missing: bool
    stats: NodeStats | None

    @property
    def title(self) -> str:
        return self.meta.title or self.content.title

    @property
    def lead(self) -> str:
        return self.meta.lead or self.content.lead


async def _read_record(repo: Repository, node_id: NodeId) -> _NodeRecord:
    raw = await repo.read_content(node_id)
    meta_raw = await repo.read_meta(node_id)
    try:
        meta = NodeMeta.from_yaml(meta_raw)
        stats = await repo.read_stats(node_id)
    except ParseFailureError as e:
        raise ParseFailureError(f"node {node_id}: {e}") from e
    return _NodeRecord(
        id=node_id,
        content=parse_content(raw),
        meta=meta,
        meta_missing=not meta_raw.strip(),
        stats=stats,
    )


def compute_stats(
    content: Content,
    meta: NodeMeta,
    previous: NodeStats | None,
    existing: set[NodeId],
    now: datetime,
) -> NodeStats:
    """Stats recomputed from content.

    created is kept, updated only advances when the digest changed, and links
    to ids that do not exist in the keg are dropped.
    """
    stats = previous.model_copy(deep=True) if previous else NodeStats()
    if stats.hash != content.digest:
        stats.hash = content.digest
        stats.updated = now
    stats.title = meta.title or content.title
    stats.lead = meta.lead or content.lead
    stats.links = [str(link) for link in content.links if link in existing]
    stats.ensure_times(now)
    return stats


def _stats_stale(record: _NodeRecord, fresh: NodeStats) -> bool:
    old = record.stats
    if old is None:
        return True
    return (
        old.hash != fresh.hash
        or old.title != fresh.title
        or old.lead != fresh.lead
        or old.links != fresh.links
        or old.created is None
        or old.updated is None
    )


async def build_index(repo: Repository, options: IndexOptions, now: datetime) -> Dex:
    """Run an index over the whole keg and return the resulting Dex.

    Raises:
        ParseFailureError: If any node's meta or stats cannot be parsed, or a
            configured index expression is invalid. Nothing is written.
    """
    start_time = time.time()

    # Phase 1: read and validate everything.
    config = await repo.read_config() or KegConfig()
    filtered = custom_indexes(config)
    checkpoint = config.updated

    ids = await repo.list_nodes()
    id_set = set(ids)
    records = [await _read_record(repo, node_id) for node_id in ids]

    previous = None if options.rebuild else await Dex.load(repo)

    # Phase 2: stats.
    listing = NodeIndex() if previous is None else NodeIndex(
        ref for ref in previous.nodes() if ref.id in id_set
    )
    tags = TagIndex()
    if previous is not None:
        for tag in previous.tag_list():
            kept = {i for i in previous.tag_nodes(tag) if i in id_set}
            if kept:
                tags.tags[tag] = kept
    links = LinkIndex()
    reprocessed = 0
    stats_written = 0

    for record in records:
        fresh = compute_stats(record.content, record.meta, record.stats, id_set, now)
        stale = _stats_stale(record, fresh)

        if not options.no_update:
            if stale:
                await repo.write_stats(record.id, fresh)
                stats_written += 1
            if record.meta_missing:
                await repo.write_meta(record.id, record.meta.to_yaml())

        links.edges[record.id] = {NodeId.parse(link) for link in fresh.links}

        dirty = previous is None or stale
        if not dirty:
            ref = listing.refs.get(record.id)
            dirty = (
                ref is None
                or ref.title != _one_line(record.title)
                or ref.updated != fresh.updated
                or checkpoint is None
                or (fresh.updated is not None and fresh.updated > checkpoint)
                or tags.tags_of(record.id) != record.meta.tags
            )
        if dirty:
            reprocessed += 1
            listing.refs[record.id] = NodeRef(id=record.id, title=_one_line(record.title), updated=fresh.updated)
            tags.remove(record.id)
            tags.add(record.id, record.meta.tags)

    backlinks = links.inverse()
    refs = [listing.refs[i] for i in sorted(listing.refs)]

    # Phase 3: artifacts.
    if options.rebuild:
        await repo.clear_indexes()
    await repo.write_index(NODES_INDEX, listing.data())
    await repo.write_index(TAGS_INDEX, tags.data())
    await repo.write_index(LINKS_INDEX, links.data())
    await repo.write_index(BACKLINKS_INDEX, backlinks.data())
    await repo.write_index(CHANGES_INDEX, ChangesIndex(refs).data())
    for index in filtered:
        await repo.write_index(index.name, index.render(refs, tags))

    # Phase 4: checkpoint.
    config.updated = now
    await repo.write_config(config)

    logger.info(
        "index_completed",
        rebuild=options.rebuild,
        node_count=len(ids),
        reprocessed=reprocessed,
        stats_written=stats_written,
        custom_indexes=len(filtered),
        duration_ms=round((time.time() - start_time) * 1000, 2),
    )
    return Dex(listing, tags, links, backlinks)
