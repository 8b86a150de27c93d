"""
Utility functions, error types and compiled regex patterns for kegdex.

Contains the error hierarchy, frontmatter parsing, tag normalization and
atomic file writes shared by the repository backends.
"""

import enum
import os
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
import yaml

# Pre-compiled regex patterns for performance
FRONTMATTER_PATTERN = re.compile(r'^---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|$)', re.DOTALL)
NODE_LINK_PATTERN = re.compile(r'\.\./(\d+(?:-\d{4})?)(?![\w-])')
NODE_ID_PATTERN = re.compile(r'^(0|[1-9]\d*)(?:-(\d{4}))?$')
HEADING_PATTERN = re.compile(r'^(#{1,6})[ \t]+(.*?)[ \t#]*$')
SEARCH_SPLIT_PATTERN = re.compile(r'[\s\-_]+')
TAG_SPLIT_PATTERN = re.compile(r',')


# ============== Exceptions ==============

class ErrorKind(str, enum.Enum):
    """Categories callers can branch on without matching messages."""

    INVALID = "invalid"
    NOT_EXIST = "not_exist"
    DESTINATION_EXISTS = "destination_exists"
    PARSE_FAILURE = "parse_failure"
    UNSUPPORTED = "unsupported"
    BACKEND = "backend"


class KegError(Exception):
    """Base class for all keg errors."""

    kind = ErrorKind.BACKEND


class InvalidError(KegError):
    """Raised for malformed ids, configs or forbidden operations."""

    kind = ErrorKind.INVALID


class NotExistError(KegError):
    """Raised when a node, file or index is missing."""

    kind = ErrorKind.NOT_EXIST


class DestinationExistsError(KegError):
    """Raised when a move or write target is already occupied."""

    kind = ErrorKind.DESTINATION_EXISTS


class ParseFailureError(KegError):
    """Raised when metadata, stats or an expression cannot be parsed."""

    kind = ErrorKind.PARSE_FAILURE


class UnsupportedError(KegError):
    """Raised when a backend lacks an optional capability."""

    kind = ErrorKind.UNSUPPORTED


class BackendError(KegError):
    """Raised when the storage layer fails underneath an operation."""

    kind = ErrorKind.BACKEND


# ============== Helper Functions ==============

def parse_frontmatter(content: str) -> tuple[dict, str]:
    """Extract YAML frontmatter and body from node content.

    Unparseable frontmatter is dropped but still stripped from the body.
    """
    frontmatter = {}
    body = content

    match = FRONTMATTER_PATTERN.match(content)
    if match:
        try:
            loaded = yaml.safe_load(match.group(1))
            if isinstance(loaded, dict):
                frontmatter = loaded
        except yaml.YAMLError:
            pass
        body = content[match.end():]

    return frontmatter, body


def load_yaml_mapping(raw: bytes | str, what: str = "yaml") -> dict[str, Any]:
    """Parse a YAML document that must be a mapping (or empty).

    Raises:
        ParseFailureError: If the YAML is malformed or not a mapping
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not raw.strip():
        return {}
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ParseFailureError(f"invalid {what}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ParseFailureError(f"invalid {what}: expected a mapping, got {type(data).__name__}")
    return data


def dump_yaml(data: dict[str, Any]) -> str:
    """Serialize a mapping the way keg files are written."""
    if not data:
        return ""
    return yaml.dump(data, allow_unicode=True, default_flow_style=False, sort_keys=False)


def normalize_tags(raw: Any) -> list[str]:
    """Normalize tags given as a list or a comma separated string.

    Tags are trimmed, lowercased, deduplicated and sorted.

    Raises:
        ParseFailureError: If tags are neither a list nor a string
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        items = TAG_SPLIT_PATTERN.split(raw)
    elif isinstance(raw, (list, tuple, set)):
        items = [str(t) for t in raw]
    else:
        raise ParseFailureError("invalid meta: tags must be a list or string")
    tags = {t.strip().lower() for t in items if t and t.strip()}
    return sorted(tags)


async def atomic_write(path: Path, data: bytes) -> None:
    """Write bytes to path through a sibling temp file and rename."""
    await aiofiles.os.makedirs(path.parent, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        async with aiofiles.open(tmp, "wb") as f:
            await f.write(data)
        await aiofiles.os.replace(tmp, path)
    except OSError:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


# ============== Timestamps ==============

def utc_now() -> datetime:
    """Current time in UTC, truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_time(value: datetime) -> str:
    """Render a timestamp as RFC3339 in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(text: str) -> datetime:
    """Parse an RFC3339 timestamp.

    Raises:
        ValueError: If text is not a timestamp
    """
    text = text.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value
