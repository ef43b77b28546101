"""Router configuration store with a TTL cache.

Router configs are fetched by id from a ConfigSource and cached for
``ttl`` seconds. The store is explicit state: the caller constructs it,
calls start(), hands it to the orchestrator, and close()s it on shutdown.
Every config it returns has passed validate_router_config().
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

from modelpilot.errors import ConfigurationError
from modelpilot.providers.registry import load_router_configs
from modelpilot.routing.validation import validate_router_config
from modelpilot.schemas.config import RouterConfig

logger = logging.getLogger(__name__)

_DEFAULT_TTL_S = 300.0


class ConfigSource(ABC):
    """Where router configs come from."""

    @abstractmethod
    async def fetch(self, router_id: str) -> RouterConfig:
        """Return the config for ``router_id``.

        Raises:
            ConfigurationError: If the router does not exist or is malformed.
        """

    async def list_ids(self) -> list[str]:
        return []


class StaticConfigSource(ConfigSource):
    """Configs held in memory."""

    def __init__(self, configs: Mapping[str, RouterConfig]) -> None:
        self._configs = dict(configs)

    async def fetch(self, router_id: str) -> RouterConfig:
        config = self._configs.get(router_id)
        if config is None:
            raise ConfigurationError(
                f"Unknown router '{router_id}'", code="unknown_router",
            )
        return config

    async def list_ids(self) -> list[str]:
        return list(self._configs)


class TomlConfigSource(ConfigSource):
    """Configs read from routers.toml; the file is re-read on every fetch."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path

    def _load(self) -> dict[str, RouterConfig]:
        try:
            return load_router_configs(self._path)
        except (FileNotFoundError, ValueError) as e:
            raise ConfigurationError(str(e), code="config_source_error") from e

    async def fetch(self, router_id: str) -> RouterConfig:
        configs = await asyncio.to_thread(self._load)
        config = configs.get(router_id)
        if config is None:
            raise ConfigurationError(
                f"Unknown router '{router_id}'", code="unknown_router",
            )
        return config

    async def list_ids(self) -> list[str]:
        return list(await asyncio.to_thread(self._load))


@dataclass(frozen=True)
class _Entry:
    config: RouterConfig
    expires_at: float


class CachedConfigStore:
    """TTL cache in front of a ConfigSource.

    Concurrent misses for the same router share one fetch. Failed fetches
    are not cached.

    Args:
        source: Where configs are fetched from.
        ttl: Seconds a fetched config stays valid.
        clock: Monotonic clock (injectable for tests).
    """

    def __init__(
        self,
        source: ConfigSource,
        ttl: float = _DEFAULT_TTL_S,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._source = source
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._started = False
        self.hits = 0
        self.misses = 0

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, preload: bool = False) -> None:
        """Open the store; optionally warm the cache with every known router."""
        self._started = True
        if preload:
            for router_id in await self._source.list_ids():
                await self._refresh(router_id)
        logger.info("Config store started (ttl=%.0fs, %d cached)",
                    self._ttl, len(self._entries))

    async def get(self, router_id: str) -> RouterConfig:
        """Return a validated config, fetching it if missing or expired.

        Raises:
            ConfigurationError: Store not started, unknown router, or invalid config.
        """
        if not self._started:
            raise ConfigurationError(
                "Config store is not started", code="config_store_closed",
            )
        entry = self._entries.get(router_id)
        if entry is not None and entry.expires_at > self._clock():
            self.hits += 1
            return entry.config

        lock = self._locks.setdefault(router_id, asyncio.Lock())
        async with lock:
            # Another task may have refreshed while we waited
            entry = self._entries.get(router_id)
            if entry is not None and entry.expires_at > self._clock():
                self.hits += 1
                return entry.config
            self.misses += 1
            return await self._refresh(router_id)

    async def _refresh(self, router_id: str) -> RouterConfig:
        config = await self._source.fetch(router_id)
        validate_router_config(config)
        self._entries[router_id] = _Entry(config, self._clock() + self._ttl)
        logger.debug("Cached router config '%s'", router_id)
        return config

    def invalidate(self, router_id: str | None = None) -> None:
        """Drop one cached config, or all of them."""
        if router_id is None:
            self._entries.clear()
        else:
            self._entries.pop(router_id, None)

    async def close(self) -> None:
        self._entries.clear()
        self._locks.clear()
        self._started = False
        logger.info("Config store closed")
