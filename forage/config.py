"""Forage configuration — loaded from .env via pydantic-settings.

Every path the workspace owns (findings directory, state file, lock file,
daemon log) derives from ``vault_dir`` unless set explicitly.  CLI flags are
passed to :func:`load_settings` as overrides and win over the environment.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field, ValidationError, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings

_STATE_DIRNAME = ".forage"


class ConfigError(ValueError):
    """Configuration problem detected before any side effect."""


class ForageSettings(BaseSettings):
    """All Forage configuration. Reads from .env file and environment variables."""

    # --- Workspace ---
    vault_dir: Path = Field(
        default_factory=lambda: Path.cwd() / "vault",
        description="Root of the markdown note collection",
    )
    findings_dir: Path | None = Field(default=None, description="Defaults to <vault>/Inbox/Findings")
    state_file: Path | None = Field(default=None, description="Defaults to <vault>/.forage/state.json")
    lock_file: Path | None = Field(default=None, description="Defaults to <vault>/.forage/loop.lock")
    daemon_log_file: Path | None = Field(default=None, description="Defaults to <vault>/.forage/loop.log")

    # --- Task policy ---
    max_tasks: int = Field(default=5, description="Tasks extracted per cycle")
    max_sources_per_task: int = Field(default=3, description="Sources kept after scoring")
    max_retries: int = Field(default=4, description="Failures before a task is parked")
    retry_base_minutes: int = Field(default=5, description="First backoff interval; doubles per failure")
    rate_limit_ms: int = Field(default=0, description="Pause between tasks (0 disables)")

    # --- Loop / lock ---
    loop_interval_minutes: int = Field(default=60, description="Sleep between loop cycles")
    loop_max_cycles: int | None = Field(default=None, description="Stop the loop after N cycles")
    lock_stale_minutes: int = Field(default=180, description="Age after which a held lock is reclaimed")

    # --- Network ---
    provider_timeout_seconds: float = Field(default=10.0)
    fetch_timeout_seconds: float = Field(default=12.0)
    content_max_chars: int = Field(default=6_000)

    # --- Search providers ---
    serpapi_api_key: str = Field(default="", description="SerpAPI key (primary provider)")
    tavily_api_key: str = Field(default="", description="Tavily key (secondary provider)")

    # --- Browserbase (interactive browser session) ---
    browserbase_api_key: str = Field(default="")
    browserbase_project_id: str = Field(default="")
    browserbase_context_id: str = Field(default="")

    # --- Generative synthesis (OpenAI-compatible endpoint) ---
    llm_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("llm_api_key", "cerebras_api_key"),
    )
    llm_base_url: str = Field(default="https://api.cerebras.ai/v1")
    llm_model: str = Field(default="gpt-oss-120b")
    llm_timeout_seconds: float = Field(default=60.0)

    # --- Logging ---
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(
        default="console",
        description="Log format: 'console' for dev, 'json' for production",
    )

    # --- Per-invocation flags (set from the CLI) ---
    force: bool = Field(default=False, description="Ignore state policy and run every task")
    dry_run: bool = Field(default=False, description="Extract and filter only")
    since: str | None = Field(default=None, description="Only notes modified within this window")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @field_validator(
        "max_tasks",
        "max_sources_per_task",
        "max_retries",
        "retry_base_minutes",
        "loop_interval_minutes",
        "lock_stale_minutes",
        mode="wrap",
    )
    @classmethod
    def _positive_or_default(cls, value: Any, handler, info: ValidationInfo) -> int:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = handler(value)
        except ValidationError:
            return default
        return parsed if parsed > 0 else default

    @field_validator("rate_limit_ms", mode="wrap")
    @classmethod
    def _non_negative(cls, value: Any, handler) -> int:
        try:
            parsed = handler(value)
        except ValidationError:
            return 0
        return max(parsed, 0)

    @field_validator("loop_max_cycles", mode="wrap")
    @classmethod
    def _optional_positive(cls, value: Any, handler) -> int | None:
        if value in (None, ""):
            return None
        try:
            parsed = handler(value)
        except ValidationError:
            return None
        if parsed is None or parsed <= 0:
            return None
        return parsed

    @model_validator(mode="after")
    def _derive_paths(self) -> "ForageSettings":
        self.vault_dir = self.vault_dir.expanduser().resolve()
        state_dir = self.vault_dir / _STATE_DIRNAME
        self.findings_dir = (self.findings_dir or self.vault_dir / "Inbox" / "Findings").expanduser().resolve()
        self.state_file = (self.state_file or state_dir / "state.json").expanduser().resolve()
        self.lock_file = (self.lock_file or state_dir / "loop.lock").expanduser().resolve()
        self.daemon_log_file = (self.daemon_log_file or state_dir / "loop.log").expanduser().resolve()
        return self

    # ── Convenience properties ──────────────────────────────────────────

    @property
    def browserbase_enabled(self) -> bool:
        return bool(self.browserbase_api_key and self.browserbase_project_id)

    @property
    def llm_enabled(self) -> bool:
        return bool(self.llm_api_key)

    def require_vault(self) -> None:
        """Raise ConfigError unless the vault directory exists."""
        if not self.vault_dir.is_dir():
            raise ConfigError(f"Missing vault directory: {self.vault_dir}. Set VAULT_DIR or --vault-dir.")


def load_settings(**overrides: Any) -> ForageSettings:
    """Build settings from env/.env, applying non-None CLI overrides on top."""
    return ForageSettings(**{k: v for k, v in overrides.items() if v is not None})
