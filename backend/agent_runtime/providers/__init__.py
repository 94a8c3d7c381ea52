from agent_runtime.providers.base import (
    Provider,
    ProviderChunk,
    ProviderResponse,
    RetryNotice,
    TokenChunk,
    TokenUsage,
)

__all__ = [
    "Provider",
    "ProviderChunk",
    "ProviderResponse",
    "RetryNotice",
    "TokenChunk",
    "TokenUsage",
]
