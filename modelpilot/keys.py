"""Provider API key loading for ModelPilot.

Each model descriptor names the environment variable holding its key
(``api_key_env``). Keys are resolved with this priority:
  1. Environment variables (already set in the shell)
  2. ~/.modelpilot/keys.env
  3. .env in the current directory
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from modelpilot.schemas.models import ModelDescriptor

logger = logging.getLogger(__name__)

# Directory for user-level ModelPilot state (keys, outcome database)
MODELPILOT_HOME = Path.home() / ".modelpilot"
KEYS_FILE = MODELPILOT_HOME / "keys.env"

# Provider definitions: (env_var, display_name)
PROVIDERS = [
    ("OPENAI_API_KEY", "OpenAI"),
    ("ANTHROPIC_API_KEY", "Anthropic"),
    ("GEMINI_API_KEY", "Google"),
    ("XAI_API_KEY", "xAI"),
    ("MISTRAL_API_KEY", "Mistral"),
]


def load_keys_env() -> None:
    """Load API keys from ~/.modelpilot/keys.env and .env into os.environ.

    Existing env vars are NOT overwritten, and a key found in an earlier
    file is not overwritten by a later one.
    """
    for env_file in (KEYS_FILE, Path.cwd() / ".env"):
        if env_file.is_file():
            _load_env_file(env_file)


def _parse_env_line(line: str) -> tuple[str, str] | None:
    """Split one ``[export ]KEY=VALUE`` line, or None for blanks and comments."""
    line = line.strip()
    if not line or line.startswith("#") or "=" not in line:
        return None
    name, _, raw = line.removeprefix("export ").partition("=")
    name = name.strip()
    if not name:
        return None
    return name, raw.strip().strip("'\"")


def _load_env_file(path: Path) -> int:
    """Export provider keys from ``path`` that the environment lacks.

    Returns the number of variables set.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("Could not read key file %s: %s", path, e)
        return 0

    loaded = 0
    for line in text.splitlines():
        parsed = _parse_env_line(line)
        if parsed is None:
            continue
        name, value = parsed
        if os.environ.get(name):
            continue
        os.environ[name] = value
        loaded += 1
    if loaded:
        logger.debug("Loaded %d key(s) from %s", loaded, path)
    return loaded


def get_configured_keys() -> dict[str, bool]:
    """Return env_var -> whether it is set, for every known provider."""
    load_keys_env()
    return {env_var: bool(os.environ.get(env_var)) for env_var, _ in PROVIDERS}


def has_key(descriptor: ModelDescriptor) -> bool:
    """Whether the key for ``descriptor`` is available in the environment."""
    return bool(os.environ.get(descriptor.api_key_env))
