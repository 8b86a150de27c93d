"""
Node writing flows for kegdex.

Contains the edit file format (YAML frontmatter holding the node metadata,
followed by the node body) and the create and edit flows that seed content
from piped input, an interactive editor, or explicit options.
"""

import asyncio
import shutil
import tempfile
from collections.abc import Sequence
from pathlib import Path

import aiofiles
import structlog

from .config import settings
from .editor import edit_with_live_saves
from .keg import Keg
from .models import CreateOptions, NodeId, NodeMeta, Stream
from .utils import InvalidError, NotExistError, ParseFailureError

logger = structlog.get_logger(__name__)

_OPEN_MARKER = b"---"
_CLOSE_MARKERS = (b"---", b"...")


def validate_content_size(content: bytes) -> bytes:
    """Validate content size.

    Raises:
        InvalidError: If the content exceeds size limits
    """
    if len(content) > settings.max_content_size:
        max_mb = settings.max_content_size / (1024 * 1024)
        actual_mb = len(content) / (1024 * 1024)
        raise InvalidError(
            f"Content size ({actual_mb:.2f}MB) exceeds maximum allowed size ({max_mb}MB)"
        )
    return content


def compose_edit_file(meta: bytes, content: bytes) -> bytes:
    """Build the editable form of a node: metadata as frontmatter, then the body."""
    return _OPEN_MARKER + b"\n" + meta.rstrip(b"\n") + b"\n" + _OPEN_MARKER + b"\n" + content


def split_edit_file(raw: bytes) -> tuple[bytes, bytes]:
    """Split an edit file into (meta, content), validating the metadata.

    A file without an opening delimiter is all content.

    Raises:
        ParseFailureError: If the closing delimiter is missing or the
            frontmatter is not a YAML mapping
    """
    if raw.startswith(b"\xef\xbb\xbf"):
        raw = raw[3:]
    lines = raw.splitlines(keepends=True)
    if not lines or lines[0].rstrip(b"\r\n").rstrip() != _OPEN_MARKER:
        return b"", raw

    for i in range(1, len(lines)):
        if lines[i].rstrip(b"\r\n").rstrip() in _CLOSE_MARKERS:
            meta = b"".join(lines[1:i])
            content = b"".join(lines[i + 1:])
            NodeMeta.from_yaml(meta)
            return meta, content

    raise ParseFailureError("frontmatter is missing its closing delimiter")


async def apply_edited_raw(keg: Keg, node_id: NodeId, raw: bytes) -> bool:
    """Apply an edit file to a node: metadata first, then the body.

    Both parts are validated before either is written. Returns True if either
    part changed.
    """
    validate_content_size(raw)
    meta, content = split_edit_file(raw)
    changed = False
    if meta.strip():
        changed = await keg.set_meta(node_id, meta)
    return await keg.set_content(node_id, content) or changed


async def create_from_raw(keg: Keg, raw: bytes) -> NodeId:
    """Create a node from an edit file or a plain markdown body."""
    validate_content_size(raw)
    meta_raw, content = split_edit_file(raw)
    meta = NodeMeta.from_yaml(meta_raw)
    return await keg.create(CreateOptions(
        title=meta.title,
        lead=meta.lead,
        tags=meta.tags,
        attrs=meta.attrs,
        body=content,
    ))


NEW_NODE_TEMPLATE = compose_edit_file(b"tags: []", b"# \n")


async def _edit_in_tempfile(
    initial: bytes,
    name: str,
    on_save,
    editor: str | Sequence[str] | None,
    cancel: asyncio.Event | None,
) -> int:
    workdir = Path(tempfile.mkdtemp(prefix="keg-"))
    try:
        path = workdir / name
        async with aiofiles.open(path, "wb") as f:
            await f.write(initial)
        return await edit_with_live_saves(path, on_save, editor=editor, cancel=cancel)
    finally:
        shutil.rmtree(workdir, ignore_errors=True)


async def create_node(
    keg: Keg,
    stream: Stream,
    options: CreateOptions | None = None,
    *,
    editor: str | Sequence[str] | None = None,
    cancel: asyncio.Event | None = None,
) -> NodeId:
    """Create a node from piped input, an editor session, or options.

    Piped input wins. On a terminal without options the next id is peeked and
    an editor is opened; the node is created on the first save and later saves
    update it.

    Raises:
        InvalidError: If the editor session ends without content
    """
    if stream.is_piped:
        data = stream.read_all()
        if data.strip():
            return await create_from_raw(keg, data)

    if stream.is_tty and options is None:
        next_id = await keg.next_id()
        created: list[NodeId] = []

        async def on_save(data: bytes) -> None:
            if created:
                await apply_edited_raw(keg, created[0], data)
            else:
                created.append(await create_from_raw(keg, data))

        await _edit_in_tempfile(NEW_NODE_TEMPLATE, f"{next_id}.md", on_save, editor, cancel)
        if not created:
            raise InvalidError("no content saved; node not created")
        logger.info("node_created_interactively", node=str(created[0]), peeked=str(next_id))
        return created[0]

    return await keg.create(options)


async def edit_node(
    keg: Keg,
    node_id: NodeId,
    stream: Stream,
    *,
    editor: str | Sequence[str] | None = None,
    cancel: asyncio.Event | None = None,
) -> bool:
    """Edit a node from piped input or in an editor. Returns True if anything was applied.

    Raises:
        NotExistError: If the node does not exist
    """
    if not await keg.has_node(node_id):
        raise NotExistError(f"node {node_id} not found")

    if stream.is_piped:
        return await apply_edited_raw(keg, node_id, stream.read_all())

    meta = await keg.repo.read_meta(node_id)
    content = await keg.read_content(node_id)

    async def on_save(data: bytes) -> None:
        await apply_edited_raw(keg, node_id, data)

    saves = await _edit_in_tempfile(compose_edit_file(meta, content), f"{node_id}.md", on_save, editor, cancel)
    return saves > 0
