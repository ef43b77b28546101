"""ModelPilot schema definitions.

All Pydantic v2 models used across routing, providers, and telemetry.
"""

from modelpilot.schemas.config import (
    FallbackConfig,
    HardRequirements,
    ObjectiveWeights,
    RouterConfig,
    RouterMode,
    RouterSettings,
)
from modelpilot.schemas.models import Capability, ModelDescriptor, ProviderFamily
from modelpilot.schemas.outcome import ModelStats, OutcomeRecord, OutcomeStatus
from modelpilot.schemas.provider import ProviderResponse
from modelpilot.schemas.request import (
    ChatMessage,
    ChatRequest,
    RequestContext,
    Role,
    ToolDefinition,
)
from modelpilot.schemas.response import (
    AssistantMessage,
    ChatCompletion,
    Choice,
    Delta,
    RoutedResponse,
    StreamChoice,
    StreamFragment,
    Usage,
)
from modelpilot.schemas.routing import ComponentScores, RoutingMetadata, ScoredCandidate
from modelpilot.schemas.streaming import StreamDelta

__all__ = [
    "AssistantMessage",
    "Capability",
    "ChatCompletion",
    "ChatMessage",
    "ChatRequest",
    "Choice",
    "ComponentScores",
    "Delta",
    "FallbackConfig",
    "HardRequirements",
    "ModelDescriptor",
    "ModelStats",
    "ObjectiveWeights",
    "OutcomeRecord",
    "OutcomeStatus",
    "ProviderFamily",
    "ProviderResponse",
    "RequestContext",
    "Role",
    "RoutedResponse",
    "RouterConfig",
    "RouterMode",
    "RouterSettings",
    "RoutingMetadata",
    "ScoredCandidate",
    "StreamChoice",
    "StreamDelta",
    "StreamFragment",
    "ToolDefinition",
    "Usage",
]
