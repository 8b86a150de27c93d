"""
Pydantic models for kegdex.

Contains node identifiers, node metadata and stats, parsed content, keg
configuration, operation options and tool result models.
"""

import json
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator

from .config import CONFIG_VERSIONS, CURRENT_CONFIG_VERSION
from .utils import (
    NODE_ID_PATTERN,
    InvalidError,
    ParseFailureError,
    dump_yaml,
    format_time,
    load_yaml_mapping,
    normalize_tags,
)


class NodeId(BaseModel):
    """Identifier of a node: a sequential integer with an optional 4 digit code."""

    model_config = ConfigDict(frozen=True)

    id: int
    code: str = ""

    @classmethod
    def parse(cls, value: "str | int | NodeId") -> "NodeId":
        """Parse "42" or "42-0001" into a NodeId.

        Raises:
            InvalidError: If the value is not a valid node id
        """
        if isinstance(value, NodeId):
            return value
        if isinstance(value, bool):
            raise InvalidError(f"invalid node id: {value!r}")
        if isinstance(value, int):
            if value < 0:
                raise InvalidError(f"invalid node id: {value}")
            return cls(id=value)
        text = str(value).strip()
        match = NODE_ID_PATTERN.match(text)
        if not match:
            raise InvalidError(f"invalid node id: {value!r}")
        return cls(id=int(match.group(1)), code=match.group(2) or "")

    @property
    def path(self) -> str:
        """Path segment of the node inside a keg."""
        if self.code:
            return f"{self.id}-{self.code}"
        return str(self.id)

    def __str__(self) -> str:
        return self.path

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, NodeId):
            return NotImplemented
        return (self.id, self.code) < (other.id, other.code)

    def __le__(self, other: object) -> bool:
        if not isinstance(other, NodeId):
            return NotImplemented
        return (self.id, self.code) <= (other.id, other.code)

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, NodeId):
            return NotImplemented
        return (self.id, self.code) > (other.id, other.code)

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, NodeId):
            return NotImplemented
        return (self.id, self.code) >= (other.id, other.code)


class NodeRef(BaseModel):
    """Entry of the node listing."""

    id: NodeId
    title: str = ""
    updated: datetime | None = None


class NodeStats(BaseModel):
    """Derived per-node stats, persisted as stats.json."""

    title: str = ""
    hash: str = ""
    created: datetime | None = None
    updated: datetime | None = None
    accessed: datetime | None = None
    lead: str = ""
    links: list[str] = Field(default_factory=list)

    @field_serializer("created", "updated", "accessed")
    def _rfc3339(self, value: datetime | None) -> str | None:
        return format_time(value) if value is not None else None

    @classmethod
    def from_json(cls, raw: bytes) -> "NodeStats":
        if not raw.strip():
            return cls()
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise ParseFailureError(f"invalid stats: {e}") from e

    def to_json(self) -> bytes:
        return json.dumps(self.model_dump(mode="json"), indent=2, ensure_ascii=False).encode("utf-8") + b"\n"

    def link_ids(self) -> list[NodeId]:
        ids = []
        for link in self.links:
            try:
                ids.append(NodeId.parse(link))
            except InvalidError:
                continue
        return ids

    def ensure_times(self, now: datetime) -> None:
        """Fill any unset timestamp with now."""
        if self.created is None:
            self.created = now
        if self.updated is None:
            self.updated = now
        if self.accessed is None:
            self.accessed = now


class NodeMeta(BaseModel):
    """User editable node metadata, persisted as meta.yaml.

    Known keys are title, lead (or summary) and tags; everything else is kept
    verbatim in attrs.
    """

    title: str = ""
    lead: str = ""
    tags: list[str] = Field(default_factory=list)
    attrs: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_yaml(cls, raw: bytes | str) -> "NodeMeta":
        """Parse meta.yaml.

        Raises:
            ParseFailureError: If the YAML is malformed
        """
        data = load_yaml_mapping(raw, "meta")
        title = data.pop("title", "") or ""
        lead = data.pop("lead", "") or data.pop("summary", "") or ""
        data.pop("summary", None)
        tags = normalize_tags(data.pop("tags", None))
        return cls(title=str(title), lead=str(lead), tags=tags, attrs=data)

    def to_yaml(self) -> bytes:
        data: dict[str, Any] = {}
        if self.title:
            data["title"] = self.title
        if self.lead:
            data["lead"] = self.lead
        data["tags"] = normalize_tags(self.tags)
        data.update(self.attrs)
        return dump_yaml(data).encode("utf-8")


class Content(BaseModel):
    """Parsed view of a node body."""

    title: str = ""
    lead: str = ""
    links: list[NodeId] = Field(default_factory=list)
    digest: str = ""
    frontmatter: dict[str, Any] = Field(default_factory=dict)
    body: str = ""
    format: str = "markdown"


class IndexSpec(BaseModel):
    """A tag filtered index declared in the keg config."""

    file: str
    summary: str = ""
    tags: str = ""


class KegConfig(BaseModel):
    """Keg level configuration, persisted as the `keg` file."""

    model_config = ConfigDict(extra="allow")

    kegv: str = CURRENT_CONFIG_VERSION
    title: str = ""
    url: str = ""
    creator: str = ""
    state: str = ""
    summary: str = ""
    updated: datetime | None = None
    indexes: list[IndexSpec] = Field(default_factory=list)

    @field_validator("updated")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_yaml(cls, raw: bytes | str) -> "KegConfig":
        """Parse a keg config.

        Raises:
            InvalidError: If the config is malformed
        """
        try:
            data = load_yaml_mapping(raw, "keg config")
            config = cls.model_validate(data)
        except (ParseFailureError, ValidationError) as e:
            raise InvalidError(f"invalid keg config: {e}") from e
        if config.kegv not in CONFIG_VERSIONS:
            raise InvalidError(f"unsupported keg config version: {config.kegv!r}")
        # older versions carry a subset of the current fields
        config.kegv = CURRENT_CONFIG_VERSION
        return config

    def to_yaml(self) -> bytes:
        data = self.model_dump(mode="json", exclude_defaults=True)
        data["kegv"] = self.kegv
        ordered = {"kegv": data.pop("kegv")}
        ordered.update(data)
        return dump_yaml(ordered).encode("utf-8")


class IndexOptions(BaseModel):
    """Options for an index run."""

    rebuild: bool = False
    no_update: bool = False


class CreateOptions(BaseModel):
    """Options for creating a node."""

    title: str = ""
    lead: str = ""
    tags: list[str] = Field(default_factory=list)
    attrs: dict[str, Any] = Field(default_factory=dict)
    body: bytes | None = None


class Stream(BaseModel):
    """Describes where interactive input comes from."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    is_piped: bool = False
    is_tty: bool = False
    input: Any = None

    def read_all(self) -> bytes:
        if self.input is None:
            return b""
        return self.input.read()


class NodeView(BaseModel):
    """Model for a node as presented to tool callers."""

    id: str
    title: str
    lead: str
    tags: list[str]
    updated: str
    links: list[str]
    backlinks: list[str]
    body: str


class SearchResult(BaseModel):
    """Model for a search result."""

    id: str
    title: str
    score: float
    snippet: str
    tags: list[str]
    matched_terms: list[str]


class OperationResult(BaseModel):
    """Model for the result of a mutating operation."""

    success: bool
    node_id: str = ""
    kind: str = ""
    error: str = ""
    message: str = ""


class CachedNode(BaseModel):
    """Model for a node held in the keg cache."""

    id: NodeId
    title: str
    title_lower: str
    lead: str
    tags: list[str]
    body: str
    body_lower: str
    links: list[NodeId]
    hash: str
    updated: datetime | None = None
    word_count: int = 0
