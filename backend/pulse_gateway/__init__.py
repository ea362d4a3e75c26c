from .client import GatewayReply, LanguageModelGateway
from .errors import (
    ConfigurationError,
    GatewayError,
    MalformedRequest,
    MalformedResponse,
    NetworkError,
    RateLimited,
)
from .prompt import SYSTEM_PROMPT, PromptBuilder, PromptBundle

__all__ = [
    "ConfigurationError",
    "GatewayError",
    "GatewayReply",
    "LanguageModelGateway",
    "MalformedRequest",
    "MalformedResponse",
    "NetworkError",
    "PromptBuilder",
    "PromptBundle",
    "RateLimited",
    "SYSTEM_PROMPT",
]
