"""
Tool Gateway - routes agent tool calls to the best available LLM provider,
with multi-turn conversation threads and host/sandbox path translation.
"""

__version__ = "0.1.0"

from .config import GatewayConfig, RetryPolicy
from .dispatcher import Dispatcher, build_dispatcher
from .errors import GatewayError, ProviderError
from .provider import Provider, get_api_key
from .registry import ToolDefinition, ToolRegistry
from .router import ModelRouter
from .tools import build_default_registry
from .types import Capability, ToolRequest, ToolResponse, TransportKind

__all__ = [
    "GatewayConfig",
    "RetryPolicy",
    "Dispatcher",
    "build_dispatcher",
    "GatewayError",
    "ProviderError",
    "Provider",
    "get_api_key",
    "ToolDefinition",
    "ToolRegistry",
    "ModelRouter",
    "build_default_registry",
    "Capability",
    "ToolRequest",
    "ToolResponse",
    "TransportKind",
]
