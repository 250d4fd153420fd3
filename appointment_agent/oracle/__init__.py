"""LLM oracle: provider clients, the deadline-bounded capability, and NLU helpers."""

from .client import (
    AnthropicOracleClient,
    OllamaOracleClient,
    Oracle,
    OracleClient,
    OracleConfigError,
    OracleError,
    OracleRateLimitError,
    create_oracle_client,
)

__all__ = [
    "AnthropicOracleClient",
    "OllamaOracleClient",
    "Oracle",
    "OracleClient",
    "OracleConfigError",
    "OracleError",
    "OracleRateLimitError",
    "create_oracle_client",
]
