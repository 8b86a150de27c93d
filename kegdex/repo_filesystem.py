"""
Filesystem backend for kegdex.

A keg is a directory holding one sub-directory per node plus a `dex/`
directory of derived indexes and a `keg` config file:

    <keg>/keg
    <keg>/<id>/README.md
    <keg>/<id>/meta.yaml
    <keg>/<id>/stats.json
    <keg>/<id>/assets/*
    <keg>/<id>/images/*
    <keg>/dex/{nodes.tsv,tags,links,backlinks,changes.md}

Every write goes through a temp file and an atomic rename.
"""

import asyncio
import shutil
from pathlib import Path

import aiofiles
import aiofiles.os
import structlog

from .config import (
    ASSETS_DIR,
    CONTENT_FILE,
    DEX_DIR,
    IMAGES_DIR,
    KEG_CONFIG_FILE,
    META_FILE,
    STATS_FILE,
)
from .models import KegConfig, NodeId, NodeStats
from .repository import Repository
from .utils import (
    BackendError,
    DestinationExistsError,
    InvalidError,
    NotExistError,
    atomic_write,
)

logger = structlog.get_logger(__name__)


def _validate_attachment_name(name: str) -> str:
    """Reject attachment names that would escape the node directory.

    Raises:
        InvalidError: If the name is empty or contains path components
    """
    if not name or not name.strip():
        raise InvalidError("attachment name cannot be empty")
    if "/" in name or "\\" in name or name in (".", ".."):
        raise InvalidError(f"invalid attachment name: {name!r}")
    return name


async def _read_bytes(path: Path) -> bytes:
    async with aiofiles.open(path, "rb") as f:
        return await f.read()


class FsRepository(Repository):
    """Keg stored in a local directory. Supports file and image attachments."""

    def __init__(self, root: Path):
        self.root = Path(root)

    @property
    def name(self) -> str:
        return "filesystem"

    def node_dir(self, node_id: NodeId) -> Path:
        return self.root / node_id.path

    @property
    def dex_dir(self) -> Path:
        return self.root / DEX_DIR

    async def _require_node(self, node_id: NodeId) -> Path:
        path = self.node_dir(node_id)
        if not await aiofiles.os.path.isdir(path):
            raise NotExistError(f"node {node_id} not found")
        return path

    async def _write(self, path: Path, data: bytes) -> None:
        try:
            await atomic_write(path, data)
        except OSError as e:
            raise BackendError(f"failed to write {path}: {e}") from e

    # ============== Nodes ==============

    async def has_node(self, node_id: NodeId) -> bool:
        return await aiofiles.os.path.isdir(self.node_dir(node_id))

    async def list_nodes(self) -> list[NodeId]:
        if not await aiofiles.os.path.isdir(self.root):
            return []
        ids: list[NodeId] = []
        for entry in await aiofiles.os.listdir(self.root):
            try:
                node_id = NodeId.parse(entry)
            except InvalidError:
                continue
            if await aiofiles.os.path.isdir(self.root / entry):
                ids.append(node_id)
        return sorted(ids)

    async def read_content(self, node_id: NodeId) -> bytes:
        path = await self._require_node(node_id)
        try:
            return await _read_bytes(path / CONTENT_FILE)
        except FileNotFoundError:
            return b""

    async def write_content(self, node_id: NodeId, data: bytes) -> None:
        await self._write(self.node_dir(node_id) / CONTENT_FILE, data)

    async def read_meta(self, node_id: NodeId) -> bytes:
        path = await self._require_node(node_id)
        try:
            return await _read_bytes(path / META_FILE)
        except FileNotFoundError:
            return b""

    async def write_meta(self, node_id: NodeId, data: bytes) -> None:
        self.validate_meta(data)
        await self._write(self.node_dir(node_id) / META_FILE, data)

    async def read_stats(self, node_id: NodeId) -> NodeStats | None:
        path = await self._require_node(node_id)
        try:
            raw = await _read_bytes(path / STATS_FILE)
        except FileNotFoundError:
            return None
        return NodeStats.from_json(raw)

    async def write_stats(self, node_id: NodeId, stats: NodeStats) -> None:
        await self._write(self.node_dir(node_id) / STATS_FILE, stats.to_json())

    async def move_node(self, src: NodeId, dst: NodeId) -> None:
        src_path = await self._require_node(src)
        dst_path = self.node_dir(dst)
        if await aiofiles.os.path.exists(dst_path):
            raise DestinationExistsError(f"destination node {dst} already exists")
        try:
            await aiofiles.os.rename(src_path, dst_path)
        except OSError as e:
            raise BackendError(f"failed to move node {src} to {dst}: {e}") from e

    async def remove(self, node_id: NodeId) -> None:
        path = await self._require_node(node_id)
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except OSError as e:
            raise BackendError(f"failed to remove node {node_id}: {e}") from e

    # ============== Indexes ==============

    async def get_index(self, name: str) -> bytes:
        try:
            return await _read_bytes(self.dex_dir / name)
        except FileNotFoundError:
            raise NotExistError(f"index {name} not found")

    async def write_index(self, name: str, data: bytes) -> None:
        await self._write(self.dex_dir / name, data)

    async def list_indexes(self) -> list[str]:
        if not await aiofiles.os.path.isdir(self.dex_dir):
            return []
        names = []
        for entry in await aiofiles.os.listdir(self.dex_dir):
            if entry.startswith("."):
                continue
            if await aiofiles.os.path.isfile(self.dex_dir / entry):
                names.append(entry)
        return sorted(names)

    async def clear_indexes(self) -> None:
        for name in await self.list_indexes():
            await aiofiles.os.remove(self.dex_dir / name)

    # ============== Config ==============

    async def read_config(self) -> KegConfig | None:
        try:
            raw = await _read_bytes(self.root / KEG_CONFIG_FILE)
        except FileNotFoundError:
            return None
        return KegConfig.from_yaml(raw)

    async def write_config(self, config: KegConfig) -> None:
        await self._write(self.root / KEG_CONFIG_FILE, config.to_yaml())

    # ============== Attachments ==============

    async def _list_dir(self, node_id: NodeId, sub: str) -> list[str]:
        path = await self._require_node(node_id) / sub
        if not await aiofiles.os.path.isdir(path):
            return []
        return sorted(e for e in await aiofiles.os.listdir(path) if not e.startswith("."))

    async def _read_attachment(self, node_id: NodeId, sub: str, name: str) -> bytes:
        path = await self._require_node(node_id) / sub / _validate_attachment_name(name)
        try:
            return await _read_bytes(path)
        except FileNotFoundError:
            raise NotExistError(f"{sub}/{name} not found on node {node_id}")

    async def _write_attachment(self, node_id: NodeId, sub: str, name: str, data: bytes) -> None:
        path = await self._require_node(node_id) / sub / _validate_attachment_name(name)
        await self._write(path, data)
        logger.debug("attachment_written", node=str(node_id), path=f"{sub}/{name}", size=len(data))

    async def _delete_attachment(self, node_id: NodeId, sub: str, name: str) -> None:
        path = await self._require_node(node_id) / sub / _validate_attachment_name(name)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            raise NotExistError(f"{sub}/{name} not found on node {node_id}")

    async def list_files(self, node_id: NodeId) -> list[str]:
        return await self._list_dir(node_id, ASSETS_DIR)

    async def read_file(self, node_id: NodeId, name: str) -> bytes:
        return await self._read_attachment(node_id, ASSETS_DIR, name)

    async def write_file(self, node_id: NodeId, name: str, data: bytes) -> None:
        await self._write_attachment(node_id, ASSETS_DIR, name, data)

    async def delete_file(self, node_id: NodeId, name: str) -> None:
        await self._delete_attachment(node_id, ASSETS_DIR, name)

    async def list_images(self, node_id: NodeId) -> list[str]:
        return await self._list_dir(node_id, IMAGES_DIR)

    async def read_image(self, node_id: NodeId, name: str) -> bytes:
        return await self._read_attachment(node_id, IMAGES_DIR, name)

    async def write_image(self, node_id: NodeId, name: str, data: bytes) -> None:
        await self._write_attachment(node_id, IMAGES_DIR, name, data)

    async def delete_image(self, node_id: NodeId, name: str) -> None:
        await self._delete_attachment(node_id, IMAGES_DIR, name)
