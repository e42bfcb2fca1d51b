"""
In-process content distribution.

Payloads are addressed by magnet URIs whose ``urn:sha1:`` exact topic is the
SHA-1 of the payload, so the identifier can be sent over any text channel.
"""

from dataclasses import (
    dataclass,
    field,
)
import hashlib
import logging
import uuid
from urllib.parse import (
    parse_qs,
    quote,
    urlsplit,
)

import trio

from pairlink.abc import IContentService
from pairlink.exceptions import ContentNotFoundError

logger = logging.getLogger("pairlink.content.service")

MAGNET_SCHEME = "magnet"
CONTENT_HASH_PREFIX = "urn:sha1:"


def make_magnet_uri(content_hash: str, name: str) -> str:
    return f"{MAGNET_SCHEME}:?xt={CONTENT_HASH_PREFIX}{content_hash}&dn={quote(name)}"


def parse_magnet_uri(uri: str) -> tuple[str, str | None]:
    """
    Split a magnet URI into its content hash and display name.

    :raises ContentNotFoundError: If ``uri`` is not a magnet URI with a
        SHA-1 content hash.
    """
    parts = urlsplit(uri)
    if parts.scheme != MAGNET_SCHEME:
        raise ContentNotFoundError(f"Not a magnet URI: {uri!r}")
    query = parse_qs(parts.query)
    for topic in query.get("xt", []):
        if topic.startswith(CONTENT_HASH_PREFIX):
            names = query.get("dn")
            return topic[len(CONTENT_HASH_PREFIX) :].lower(), names[0] if names else None
    raise ContentNotFoundError(f"Magnet URI has no SHA-1 content hash: {uri!r}")


@dataclass
class _Seed:
    name: str
    data: bytes
    seeders: set[str] = field(default_factory=set)


class ContentSwarm:
    """Payloads seeded by the ``LocalContentService`` instances sharing it."""

    def __init__(self) -> None:
        self._seeds: dict[str, _Seed] = {}

    def add(self, seeder: str, content_hash: str, name: str, data: bytes) -> None:
        seed = self._seeds.setdefault(content_hash, _Seed(name=name, data=data))
        seed.seeders.add(seeder)

    def remove(self, seeder: str, content_hash: str) -> None:
        seed = self._seeds.get(content_hash)
        if seed is None:
            return
        seed.seeders.discard(seeder)
        if not seed.seeders:
            del self._seeds[content_hash]

    def get(self, content_hash: str) -> _Seed | None:
        return self._seeds.get(content_hash)

    def __len__(self) -> int:
        return len(self._seeds)


class LocalContentService(IContentService):
    """
    Content service backed by a ``ContentSwarm``.

    Every instance is one participant; a payload stays fetchable while at
    least one participant seeds it.
    """

    def __init__(self, swarm: ContentSwarm | None = None):
        self.swarm = swarm if swarm is not None else ContentSwarm()
        self.seeder_id = uuid.uuid4().hex
        self._published: set[str] = set()

    async def publish(self, data: bytes, name: str) -> str:
        content_hash = hashlib.sha1(data).hexdigest()
        self.swarm.add(self.seeder_id, content_hash, name, bytes(data))
        self._published.add(content_hash)
        uri = make_magnet_uri(content_hash, name)
        logger.debug(f"Seeding {len(data)} bytes as {uri}")
        await trio.lowlevel.checkpoint()
        return uri

    async def fetch(self, identifier: str) -> bytes:
        content_hash, _ = parse_magnet_uri(identifier)
        await trio.lowlevel.checkpoint()
        seed = self.swarm.get(content_hash)
        if seed is None:
            raise ContentNotFoundError(f"Nobody seeds {identifier!r}")
        logger.debug(f"Fetched {len(seed.data)} bytes for {seed.name!r}")
        return seed.data

    async def unpublish(self, identifier: str) -> None:
        content_hash, _ = parse_magnet_uri(identifier)
        self._published.discard(content_hash)
        self.swarm.remove(self.seeder_id, content_hash)
        await trio.lowlevel.checkpoint()

    async def close(self) -> None:
        """Stop seeding everything this participant published."""
        for content_hash in list(self._published):
            self.swarm.remove(self.seeder_id, content_hash)
        self._published.clear()
        await trio.lowlevel.checkpoint()
