"""Model registry and TOML configuration loaders.

Loads model descriptors from models.toml, router policies from
routers.toml, and process settings from defaults.toml. ModelRegistry holds
the descriptors as versioned copy-on-write snapshots: request handlers read
a snapshot once per request, and periodic aggregation swaps in a new one
without ever exposing a partially updated registry.
"""

from __future__ import annotations

import logging
import threading
import tomllib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING

from pydantic import ValidationError

from modelpilot.errors import ConfigurationError
from modelpilot.presets import objective_for_preset
from modelpilot.schemas.config import RouterConfig, RouterSettings
from modelpilot.schemas.models import ModelDescriptor
from modelpilot.schemas.outcome import ModelStats

if TYPE_CHECKING:
    from modelpilot.persistence.outcomes import OutcomeStore

logger = logging.getLogger(__name__)

# Default config directory relative to the modelpilot package
_CONFIG_DIR = Path(__file__).parent.parent / "config"

# Smoothing factor for rolling latency/quality updates
_DEFAULT_ALPHA = 0.3

# Attempts required before aggregates move a model's rolling figures
_MIN_ATTEMPTS = 5


def _read_toml(path: Path, kind: str) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"{kind} not found: {path}")
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_models(config_path: Path | None = None) -> dict[str, ModelDescriptor]:
    """Load model descriptors from a TOML file.

    Args:
        config_path: Path to models.toml. Defaults to modelpilot/config/models.toml.

    Returns:
        Dictionary mapping model ids to ModelDescriptor instances, in file order.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the TOML structure is invalid.
    """
    path = config_path or _CONFIG_DIR / "models.toml"
    raw = _read_toml(path, "Model registry")

    models_section = raw.get("models")
    if not models_section or not isinstance(models_section, dict):
        raise ValueError(f"No [models] section found in {path}")

    registry: dict[str, ModelDescriptor] = {}
    for key, entry in models_section.items():
        if not isinstance(entry, dict):
            continue
        try:
            registry[key] = ModelDescriptor(id=key, **entry)
        except ValidationError as e:
            raise ValueError(f"Invalid model '{key}' in {path}: {e}") from e

    return registry


def load_router_configs(config_path: Path | None = None) -> dict[str, RouterConfig]:
    """Load router policies from a TOML file.

    A router may name a ``preset`` instead of spelling out its objective
    weights.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigurationError: If an entry does not parse into a RouterConfig.
    """
    path = config_path or _CONFIG_DIR / "routers.toml"
    raw = _read_toml(path, "Router config")

    routers: dict[str, RouterConfig] = {}
    for router_id, entry in raw.get("routers", {}).items():
        routers[router_id] = parse_router_config(router_id, dict(entry))
    return routers


def parse_router_config(router_id: str, entry: dict) -> RouterConfig:
    """Build a RouterConfig from a raw mapping (TOML table or JSON body)."""
    preset = entry.pop("preset", None)
    if preset is not None and "objective" not in entry:
        try:
            entry["objective"] = objective_for_preset(preset)
        except KeyError:
            raise ConfigurationError(
                f"Router '{router_id}' names unknown preset '{preset}'",
            ) from None
    entry.setdefault("router_id", router_id)
    try:
        return RouterConfig.model_validate(entry)
    except ValidationError as e:
        raise ConfigurationError(
            f"Router '{router_id}' is malformed: "
            f"{e.error_count()} validation error(s)",
        ) from e


def load_settings(config_path: Path | None = None) -> RouterSettings:
    """Load process settings from the [router] table of defaults.toml."""
    path = config_path or _CONFIG_DIR / "defaults.toml"
    raw = _read_toml(path, "Router settings")
    return RouterSettings(**raw.get("router", {}))


@dataclass(frozen=True)
class RegistrySnapshot:
    """An immutable, versioned view of the model registry."""

    version: int
    models: Mapping[str, ModelDescriptor]

    def get(self, model_id: str) -> ModelDescriptor | None:
        return self.models.get(model_id)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self.models

    def __len__(self) -> int:
        return len(self.models)


class ModelRegistry:
    """Read-mostly registry with copy-on-write updates.

    Any number of readers may call snapshot() concurrently. Writers build
    a complete new snapshot and swap the reference; a lock only serializes
    writers against each other.
    """

    def __init__(self, models: Mapping[str, ModelDescriptor]) -> None:
        self._snapshot = RegistrySnapshot(1, MappingProxyType(dict(models)))
        self._write_lock = threading.Lock()

    @classmethod
    def from_toml(cls, config_path: Path | None = None) -> ModelRegistry:
        return cls(load_models(config_path))

    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    def apply_stats(
        self,
        stats: Iterable[ModelStats],
        *,
        alpha: float = _DEFAULT_ALPHA,
        min_attempts: int = _MIN_ATTEMPTS,
    ) -> RegistrySnapshot:
        """Fold aggregate outcome stats into a new snapshot.

        Rolling latency and quality move toward the observed figures by an
        exponential moving average. Models with fewer than ``min_attempts``
        attempts, or not in the registry, are left unchanged.
        """
        with self._write_lock:
            current = self._snapshot
            updated = dict(current.models)
            changed = 0
            for stat in stats:
                model = updated.get(stat.model_id)
                if model is None or stat.attempts < min_attempts:
                    continue
                changes: dict[str, float] = {
                    "quality": (1 - alpha) * model.quality + alpha * stat.avg_quality,
                }
                if stat.successes:
                    changes["avg_latency_ms"] = (
                        (1 - alpha) * model.avg_latency_ms
                        + alpha * stat.avg_latency_ms
                    )
                updated[stat.model_id] = model.model_copy(update=changes)
                changed += 1

            self._snapshot = RegistrySnapshot(
                current.version + 1, MappingProxyType(updated),
            )

        logger.info(
            "Registry snapshot v%d: %d model(s) updated",
            self._snapshot.version, changed,
        )
        return self._snapshot

    async def refresh(self, store: OutcomeStore) -> RegistrySnapshot:
        """Pull aggregate stats from the outcome store and apply them."""
        stats = await store.model_stats()
        return self.apply_stats(stats)
