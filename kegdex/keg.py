"""
Node lifecycle for kegdex.

Keg ties a Repository backend to the content parser, the dex and the tag
query language: it allocates ids, creates nodes, applies content and metadata
writes, moves nodes while rewriting every reference to them, and removes
nodes. The dex is only reconciled by an explicit index run.
"""

import re
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import structlog

from .config import ZERO_NODE_CONTENT
from .content import parse_content
from .dex import Dex, build_index, compute_stats
from .models import CreateOptions, IndexOptions, KegConfig, NodeId, NodeMeta, NodeStats
from .repo_filesystem import FsRepository
from .repo_memory import MemoryRepository
from .repository import FileRepository, ImageRepository, Repository, require_capability
from .tag_expr import evaluate
from .utils import (
    DestinationExistsError,
    InvalidError,
    NotExistError,
    utc_now,
)

logger = structlog.get_logger(__name__)

ZERO_NODE = NodeId(id=0)


def reference_pattern(node_id: NodeId) -> re.Pattern[str]:
    """Matches the id part of every ../<id> reference to node_id."""
    return re.compile(r'(?<=\.\./)' + re.escape(node_id.path) + r'(?![\w-])')


def default_body(title: str, lead: str) -> bytes:
    body = f"# {title}\n"
    if lead:
        body += f"\n{lead}\n"
    return body.encode("utf-8")


class Keg:
    """A keg backed by a single repository."""

    def __init__(self, repo: Repository, clock: Callable[[], datetime] = utc_now):
        self.repo = repo
        self.clock = clock

    @classmethod
    def open(cls, path: Path | str, clock: Callable[[], datetime] = utc_now) -> "Keg":
        """Open a keg stored in a local directory."""
        return cls(FsRepository(Path(path).expanduser()), clock)

    @classmethod
    def memory(cls, clock: Callable[[], datetime] = utc_now) -> "Keg":
        """Create an empty keg held in memory."""
        return cls(MemoryRepository(), clock)

    async def init(self, title: str = "") -> None:
        """Create the keg config and node 0 when they are missing."""
        if await self.repo.read_config() is None:
            await self.repo.write_config(KegConfig(title=title))
        if not await self.repo.has_node(ZERO_NODE):
            await self._write_new(ZERO_NODE, ZERO_NODE_CONTENT.encode("utf-8"), NodeMeta())
        logger.info("keg_initialized", backend=self.repo.name, title=title)

    async def config(self) -> KegConfig:
        return await self.repo.read_config() or KegConfig()

    # ============== Reading ==============

    async def next_id(self) -> NodeId:
        """Peek the id the next create will allocate."""
        return await self.repo.next_id()

    async def has_node(self, node_id: NodeId) -> bool:
        return await self.repo.has_node(node_id)

    async def list_nodes(self) -> list[NodeId]:
        return await self.repo.list_nodes()

    async def read_content(self, node_id: NodeId) -> bytes:
        return await self.repo.read_content(node_id)

    async def read_meta(self, node_id: NodeId) -> NodeMeta:
        return NodeMeta.from_yaml(await self.repo.read_meta(node_id))

    async def read_stats(self, node_id: NodeId) -> NodeStats | None:
        return await self.repo.read_stats(node_id)

    # ============== Writing ==============

    async def _write_new(self, node_id: NodeId, body: bytes, meta: NodeMeta) -> None:
        meta_raw = meta.to_yaml()
        self.repo.validate_meta(meta_raw)
        existing = set(await self.repo.list_nodes()) | {node_id}
        stats = compute_stats(parse_content(body), meta, None, existing, self.clock())
        await self.repo.write_content(node_id, body)
        await self.repo.write_meta(node_id, meta_raw)
        await self.repo.write_stats(node_id, stats)

    async def create(self, options: CreateOptions | None = None) -> NodeId:
        """Allocate the next id and persist body, metadata and stats."""
        options = options or CreateOptions()
        meta = NodeMeta(tags=options.tags, attrs=options.attrs)
        if options.body is not None:
            body = options.body
            # explicit bodies keep the requested title and lead as overrides
            meta.title = options.title
            meta.lead = options.lead
        else:
            body = default_body(options.title, options.lead)

        node_id = await self.next_id()
        await self._write_new(node_id, body, meta)
        logger.info("node_created", node=str(node_id), title=options.title, tags=meta.tags)
        return node_id

    async def _refresh_stats(self, node_id: NodeId, bump: bool) -> NodeStats:
        body = await self.repo.read_content(node_id)
        meta = await self.read_meta(node_id)
        previous = await self.repo.read_stats(node_id)
        now = self.clock()
        stats = compute_stats(parse_content(body), meta, previous, set(await self.repo.list_nodes()), now)
        if bump:
            stats.updated = now
        await self.repo.write_stats(node_id, stats)
        return stats

    async def set_content(self, node_id: NodeId, body: bytes) -> bool:
        """Replace a node body. Returns False when the bytes are unchanged.

        Raises:
            NotExistError: If the node does not exist
        """
        current = await self.repo.read_content(node_id)
        if current == body:
            return False
        await self.repo.write_content(node_id, body)
        await self._refresh_stats(node_id, bump=True)
        return True

    async def set_meta(self, node_id: NodeId, meta: NodeMeta | bytes) -> bool:
        """Replace node metadata, validating before anything is written.

        Returns False when the serialized metadata is unchanged.

        Raises:
            NotExistError: If the node does not exist
            ParseFailureError: If raw metadata is not a YAML mapping
        """
        raw = meta.to_yaml() if isinstance(meta, NodeMeta) else meta
        self.repo.validate_meta(raw)
        current = await self.repo.read_meta(node_id)
        if current == raw:
            return False
        await self.repo.write_meta(node_id, raw)
        await self._refresh_stats(node_id, bump=True)
        return True

    # ============== Lifecycle ==============

    async def move(self, src: NodeId, dst: NodeId) -> list[NodeId]:
        """Renumber src to dst and rewrite every ../src reference in the keg.

        Returns the ids of nodes whose body was rewritten.

        Raises:
            NotExistError: If src does not exist
            DestinationExistsError: If dst already exists; src is left in place
        """
        if not await self.repo.has_node(src):
            raise NotExistError(f"node {src} not found")
        if await self.repo.has_node(dst):
            raise DestinationExistsError(f"destination node {dst} already exists")

        await self.repo.move_node(src, dst)
        logger.info("node_moved", src=str(src), dst=str(dst))

        pattern = reference_pattern(src)
        rewritten: list[NodeId] = []
        for node_id in await self.repo.list_nodes():
            raw = await self.repo.read_content(node_id)
            text = raw.decode("utf-8", errors="surrogateescape")
            updated, count = pattern.subn(dst.path, text)
            if count and await self.set_content(node_id, updated.encode("utf-8", errors="surrogateescape")):
                rewritten.append(node_id)

        logger.info("references_rewritten", src=str(src), dst=str(dst), nodes=[str(n) for n in rewritten])
        return rewritten

    async def remove(self, node_id: NodeId) -> None:
        """Delete a node. The dex is left for the next index run.

        Raises:
            InvalidError: If node_id is node 0
            NotExistError: If the node does not exist
        """
        if node_id == ZERO_NODE:
            raise InvalidError("node 0 cannot be removed")
        if not await self.repo.has_node(node_id):
            raise NotExistError(f"node {node_id} not found")
        await self.repo.remove(node_id)
        logger.info("node_removed", node=str(node_id))

    # ============== Dex ==============

    async def index(self, options: IndexOptions | None = None) -> Dex:
        return await build_index(self.repo, options or IndexOptions(), self.clock())

    async def dex(self) -> Dex:
        """Dex as last written by an index run."""
        return await Dex.load(self.repo)

    async def query_tags(self, expression: str) -> list[NodeId]:
        """Nodes matching a boolean tag expression, by the current dex.

        Raises:
            TagExpressionError: If the expression is invalid
        """
        dex = await self.dex()
        return sorted(evaluate(expression, dex.node_ids(), dex.tag_nodes))

    # ============== Attachments ==============

    async def list_files(self, node_id: NodeId) -> list[str]:
        return await require_capability(self.repo, FileRepository, "file attachments").list_files(node_id)

    async def read_file(self, node_id: NodeId, name: str) -> bytes:
        return await require_capability(self.repo, FileRepository, "file attachments").read_file(node_id, name)

    async def write_file(self, node_id: NodeId, name: str, data: bytes) -> None:
        await require_capability(self.repo, FileRepository, "file attachments").write_file(node_id, name, data)

    async def list_images(self, node_id: NodeId) -> list[str]:
        return await require_capability(self.repo, ImageRepository, "image attachments").list_images(node_id)

    async def read_image(self, node_id: NodeId, name: str) -> bytes:
        return await require_capability(self.repo, ImageRepository, "image attachments").read_image(node_id, name)

    async def write_image(self, node_id: NodeId, name: str, data: bytes) -> None:
        await require_capability(self.repo, ImageRepository, "image attachments").write_image(node_id, name, data)
