"""ModelPilot provider layer.

The provider layer is the only way upstream models are called. Each
provider family has one ProviderAdapter variant, selected by the model's
declared provider.
"""

from modelpilot.providers.base import ProviderAdapter
from modelpilot.providers.litellm_provider import (
    ADAPTER_CLASSES,
    AnthropicProvider,
    GoogleProvider,
    LiteLLMProvider,
    MistralProvider,
    OpenAIProvider,
    XAIProvider,
    default_adapters,
)
from modelpilot.providers.registry import (
    ModelRegistry,
    RegistrySnapshot,
    load_models,
    load_router_configs,
    load_settings,
)

__all__ = [
    "ADAPTER_CLASSES",
    "AnthropicProvider",
    "GoogleProvider",
    "LiteLLMProvider",
    "MistralProvider",
    "ModelRegistry",
    "OpenAIProvider",
    "ProviderAdapter",
    "RegistrySnapshot",
    "XAIProvider",
    "default_adapters",
    "load_models",
    "load_router_configs",
    "load_settings",
]
