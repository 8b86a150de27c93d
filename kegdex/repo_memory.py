"""
In-memory backend for kegdex.

Used for tests and throwaway kegs. Implements only the required repository
surface, without file or image attachments.
"""

from dataclasses import dataclass

from .models import KegConfig, NodeId, NodeStats
from .repository import Repository
from .utils import DestinationExistsError, NotExistError


@dataclass
class _MemoryNode:
    content: bytes = b""
    meta: bytes = b""
    stats: NodeStats | None = None


class MemoryRepository(Repository):
    """Keg held in dictionaries."""

    def __init__(self):
        self._nodes: dict[NodeId, _MemoryNode] = {}
        self._indexes: dict[str, bytes] = {}
        self._config: KegConfig | None = None

    @property
    def name(self) -> str:
        return "memory"

    def _require_node(self, node_id: NodeId) -> _MemoryNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise NotExistError(f"node {node_id} not found")
        return node

    async def has_node(self, node_id: NodeId) -> bool:
        return node_id in self._nodes

    async def list_nodes(self) -> list[NodeId]:
        return sorted(self._nodes)

    async def read_content(self, node_id: NodeId) -> bytes:
        return self._require_node(node_id).content

    async def write_content(self, node_id: NodeId, data: bytes) -> None:
        self._nodes.setdefault(node_id, _MemoryNode()).content = bytes(data)

    async def read_meta(self, node_id: NodeId) -> bytes:
        return self._require_node(node_id).meta

    async def write_meta(self, node_id: NodeId, data: bytes) -> None:
        self.validate_meta(data)
        self._nodes.setdefault(node_id, _MemoryNode()).meta = bytes(data)

    async def read_stats(self, node_id: NodeId) -> NodeStats | None:
        stats = self._require_node(node_id).stats
        return stats.model_copy(deep=True) if stats is not None else None

    async def write_stats(self, node_id: NodeId, stats: NodeStats) -> None:
        self._nodes.setdefault(node_id, _MemoryNode()).stats = stats.model_copy(deep=True)

    async def move_node(self, src: NodeId, dst: NodeId) -> None:
        node = self._require_node(src)
        if dst in self._nodes:
            raise DestinationExistsError(f"destination node {dst} already exists")
        self._nodes[dst] = node
        del self._nodes[src]

    async def remove(self, node_id: NodeId) -> None:
        self._require_node(node_id)
        del self._nodes[node_id]

    async def get_index(self, name: str) -> bytes:
        if name not in self._indexes:
            raise NotExistError(f"index {name} not found")
        return self._indexes[name]

    async def write_index(self, name: str, data: bytes) -> None:
        self._indexes[name] = bytes(data)

    async def list_indexes(self) -> list[str]:
        return sorted(self._indexes)

    async def clear_indexes(self) -> None:
        self._indexes.clear()

    async def read_config(self) -> KegConfig | None:
        return self._config.model_copy(deep=True) if self._config is not None else None

    async def write_config(self, config: KegConfig) -> None:
        self._config = config.model_copy(deep=True)
