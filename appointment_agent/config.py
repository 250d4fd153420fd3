"""Application configuration via environment variables."""

from __future__ import annotations

import importlib.util
import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings

log = logging.getLogger("appointment_agent.config")


class Settings(BaseSettings):
    # LLM oracle
    llm_provider: str = "claude"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-5-haiku-latest"
    ollama_model: str = "qwen2.5:7b"
    ollama_url: str = "http://localhost:11434"
    oracle_timeout_seconds: float = 8.0

    # Scheduling backend
    backend_base_url: str = "http://localhost:4000"
    backend_api_key: str = ""
    backend_timeout_seconds: float = 15.0

    # Organization
    org_timezone: str = "UTC"
    default_org_id: int = 1

    # Call id resolution (chat completions endpoint)
    call_id_header: str = "x-vapi-call-id"
    call_id_body_path: str = "metadata.vapiCallId"

    # Inbound prompt-injection screen (needs the "security" extra)
    security_filter_enabled: bool = False

    # Server
    host: str = "127.0.0.1"
    port: int = 6000
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"sk-ant-...", ""}

        # LLM key, required for Claude
        if self.llm_provider == "claude":
            if self.anthropic_api_key in _placeholders:
                raise ValueError(
                    "ANTHROPIC_API_KEY is missing or still a placeholder. "
                    "Set it in .env to use Claude."
                )
        elif self.llm_provider != "ollama":
            raise ValueError(
                f"LLM_PROVIDER must be 'claude' or 'ollama', got {self.llm_provider!r}"
            )

        # Organization timezone must be a real IANA zone
        try:
            ZoneInfo(self.org_timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(
                f"ORG_TIMEZONE {self.org_timezone!r} is not a valid IANA timezone"
            ) from exc

        # Backend key, warn if unset
        if not self.backend_api_key:
            warnings.append(
                "BACKEND_API_KEY not set. Requests to the scheduling backend "
                "are sent without an x-api-key header."
            )

        if self.security_filter_enabled and importlib.util.find_spec("resk_llm") is None:
            raise ValueError(
                "SECURITY_FILTER_ENABLED is set but resk-llm is not installed. "
                "Install the 'security' extra."
            )

        if self.oracle_timeout_seconds <= 0:
            warnings.append(
                "ORACLE_TIMEOUT_SECONDS must be positive; every oracle call will fall back."
            )

        return warnings


settings = Settings()
