"""
Content parser for kegdex.

Turns the raw bytes of a node body into a Content model: title, lead,
outbound node links and a digest used for change detection.
"""

import hashlib

from .models import Content, NodeId
from .utils import HEADING_PATTERN, NODE_LINK_PATTERN, InvalidError, parse_frontmatter


def content_digest(raw: bytes) -> str:
    """Stable digest of a node body, ignoring surrounding whitespace."""
    return hashlib.md5(raw.strip()).hexdigest()


def extract_links(text: str) -> list[NodeId]:
    """Return node ids referenced as ../<id>, deduplicated in first-seen order."""
    links: list[NodeId] = []
    seen: set[NodeId] = set()
    for match in NODE_LINK_PATTERN.finditer(text):
        try:
            node_id = NodeId.parse(match.group(1))
        except InvalidError:
            # leading zeros
            continue
        if node_id not in seen:
            seen.add(node_id)
            links.append(node_id)
    return links


def _heading_level(line: str) -> int:
    match = HEADING_PATTERN.match(line.strip())
    if not match:
        return 0
    return len(match.group(1))


def _find_title(lines: list[str]) -> tuple[str, int]:
    """Return the first level-1 heading and the index of its line, or ("", -1)."""
    in_fence = False
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith("```"):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = HEADING_PATTERN.match(stripped)
        if match and len(match.group(1)) == 1:
            return match.group(2).strip(), i
    return "", -1


def _find_lead(lines: list[str], start: int) -> str:
    """First paragraph at or after start; empty if a heading comes first."""
    i = start
    while i < len(lines) and not lines[i].strip():
        i += 1
    if i >= len(lines) or _heading_level(lines[i]):
        return ""

    paragraph: list[str] = []
    while i < len(lines):
        stripped = lines[i].strip()
        if not stripped or _heading_level(stripped):
            break
        paragraph.append(stripped)
        i += 1
    return " ".join(paragraph)


def parse_content(raw: bytes) -> Content:
    """Parse raw node bytes.

    Identical input always yields identical output. A missing heading gives an
    empty title and a missing paragraph gives an empty lead; neither is an
    error.
    """
    digest = content_digest(raw)
    text = raw.decode("utf-8", errors="replace").lstrip("\ufeff")
    if not text.strip():
        return Content(digest=digest, format="empty")

    frontmatter, body = parse_frontmatter(text)
    lines = body.splitlines()

    title, title_line = _find_title(lines)
    lead = _find_lead(lines, title_line + 1)

    return Content(
        title=title,
        lead=lead,
        links=extract_links(body),
        digest=digest,
        frontmatter=frontmatter,
        body=body,
    )
