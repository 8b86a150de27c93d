"""
Pytest configuration and fixtures for kegdex tests.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


class FakeClock:
    """Deterministic clock; every call returns the current instant."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int = 60) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def keg_path(tmp_path: Path) -> Path:
    return tmp_path / "keg"


@pytest.fixture
async def keg(keg_path: Path, clock):
    """An initialised filesystem keg holding only node 0."""
    from kegdex.keg import Keg

    k = Keg.open(keg_path, clock)
    await k.init("Test Keg")
    return k


@pytest.fixture
async def memory_keg(clock):
    """An initialised in-memory keg holding only node 0."""
    from kegdex.keg import Keg

    k = Keg.memory(clock)
    await k.init("Memory Keg")
    return k


@pytest.fixture
async def sample_keg(keg, clock):
    """A filesystem keg with three linked, tagged nodes and a fresh dex.

    1: tags a, b; links to 2
    2: tags a, c; links to 1 and 3
    3: tag c; no links
    """
    from kegdex.models import CreateOptions

    await keg.create(CreateOptions(
        title="One",
        body=b"# One\n\nFirst node. See [two](../2).\n",
        tags=["a", "b"],
    ))
    await keg.create(CreateOptions(
        title="Two",
        body=b"# Two\n\nSecond node links ../1 and ../3.\n",
        tags=["a", "c"],
    ))
    await keg.create(CreateOptions(title="Three", lead="Third node.", tags=["c"]))
    clock.advance()
    await keg.index()
    return keg


@pytest.fixture
async def keg_cache(sample_keg, keg_path):
    """A KegCache serving sample_keg."""
    from kegdex.cache import KegCache

    cache = KegCache(ttl=3600)
    cache.add(keg_path, sample_keg)
    return cache


def write_node(root: Path, node_id: str, body: str, meta: str = "tags: []\n") -> Path:
    """Write a node directory by hand, bypassing the engine."""
    node_dir = root / node_id
    node_dir.mkdir(parents=True, exist_ok=True)
    (node_dir / "README.md").write_text(body, encoding="utf-8")
    (node_dir / "meta.yaml").write_text(meta, encoding="utf-8")
    return node_dir


@pytest.fixture
def node_writer():
    return write_node
