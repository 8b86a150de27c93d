"""
Storage interface for kegdex.

Repository is the minimal surface every backend implements. File and image
attachments are optional capabilities expressed as protocols; callers probe
for them with require_capability before use.
"""

from abc import ABC, abstractmethod
from typing import Protocol, TypeVar, runtime_checkable

from .models import KegConfig, NodeId, NodeMeta, NodeStats
from .utils import UnsupportedError

P = TypeVar("P")


class Repository(ABC):
    """Persistent storage of one keg."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short backend name used in messages."""

    @abstractmethod
    async def has_node(self, node_id: NodeId) -> bool: ...

    @abstractmethod
    async def list_nodes(self) -> list[NodeId]:
        """All node ids in ascending order."""

    async def next_id(self) -> NodeId:
        """Peek the id the next created node will get."""
        ids = await self.list_nodes()
        if not ids:
            return NodeId(id=0)
        return NodeId(id=max(i.id for i in ids) + 1)

    @abstractmethod
    async def read_content(self, node_id: NodeId) -> bytes:
        """Raw body of a node; empty bytes when the node has no body yet.

        Raises:
            NotExistError: If the node does not exist
        """

    @abstractmethod
    async def write_content(self, node_id: NodeId, data: bytes) -> None: ...

    @abstractmethod
    async def read_meta(self, node_id: NodeId) -> bytes:
        """Raw meta.yaml of a node; empty bytes when absent."""

    @abstractmethod
    async def write_meta(self, node_id: NodeId, data: bytes) -> None:
        """Validate then persist raw metadata.

        Raises:
            ParseFailureError: If data is not a YAML mapping; nothing is written
        """

    @abstractmethod
    async def read_stats(self, node_id: NodeId) -> NodeStats | None:
        """Stats of a node, or None when they were never written."""

    @abstractmethod
    async def write_stats(self, node_id: NodeId, stats: NodeStats) -> None: ...

    @abstractmethod
    async def move_node(self, src: NodeId, dst: NodeId) -> None:
        """Relocate a node's storage.

        Raises:
            NotExistError: If src does not exist
            DestinationExistsError: If dst already exists
        """

    @abstractmethod
    async def remove(self, node_id: NodeId) -> None:
        """Delete a node's storage.

        Raises:
            NotExistError: If the node does not exist
        """

    @abstractmethod
    async def get_index(self, name: str) -> bytes:
        """Raw dex artifact.

        Raises:
            NotExistError: If the artifact was never written
        """

    @abstractmethod
    async def write_index(self, name: str, data: bytes) -> None: ...

    @abstractmethod
    async def list_indexes(self) -> list[str]: ...

    @abstractmethod
    async def clear_indexes(self) -> None: ...

    @abstractmethod
    async def read_config(self) -> KegConfig | None:
        """Keg config, or None for an uninitialised keg."""

    @abstractmethod
    async def write_config(self, config: KegConfig) -> None: ...

    def validate_meta(self, data: bytes) -> None:
        NodeMeta.from_yaml(data)


@runtime_checkable
class FileRepository(Protocol):
    """Backend capability: arbitrary file attachments."""

    async def list_files(self, node_id: NodeId) -> list[str]: ...

    async def read_file(self, node_id: NodeId, name: str) -> bytes: ...

    async def write_file(self, node_id: NodeId, name: str, data: bytes) -> None: ...

    async def delete_file(self, node_id: NodeId, name: str) -> None: ...


@runtime_checkable
class ImageRepository(Protocol):
    """Backend capability: image attachments."""

    async def list_images(self, node_id: NodeId) -> list[str]: ...

    async def read_image(self, node_id: NodeId, name: str) -> bytes: ...

    async def write_image(self, node_id: NodeId, name: str, data: bytes) -> None: ...

    async def delete_image(self, node_id: NodeId, name: str) -> None: ...


def require_capability(repo: Repository, capability: type[P], what: str) -> P:
    """Return repo typed as capability, or raise if the backend lacks it.

    Raises:
        UnsupportedError: If repo does not implement capability
    """
    if not isinstance(repo, capability):
        raise UnsupportedError(f"{repo.name} backend does not support {what}")
    return repo
