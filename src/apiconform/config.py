"""Environment-based configuration."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode

from apiconform.constants import (
    DEFAULT_BASE_URL,
    DEFAULT_DOCUMENT_PATHS,
    DEFAULT_EXPORT_FORMAT,
    DEFAULT_PAGE_SIZE,
    DEFAULT_RULESET_FILES,
    RETRY_MAX_ATTEMPTS,
    DocumentRole,
)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Reads from .env file and ``APICONFORM_*`` environment variables.

    Built once per run and passed to every component that needs it.
    """

    # Publisher
    token: str = ""
    base_url: str = DEFAULT_BASE_URL
    verify_tls: bool = False
    page_size: int = DEFAULT_PAGE_SIZE
    request_timeout_seconds: float = 30.0
    retry_attempts: int = RETRY_MAX_ATTEMPTS
    export_format: str = DEFAULT_EXPORT_FORMAT

    # Concurrency
    max_concurrency: int = 4
    run_timeout_seconds: float = 0.0  # 0 = no deadline

    # Directories
    export_dir: Path = Path("exports")
    extract_dir: Path = Path("extracted")
    output_dir: Path = Path("reports")
    ruleset_dir: Path = Path(".")
    keep_artifacts: bool = False

    # Documents and rulesets (role -> relative path)
    document_paths: dict[str, str] = dict(DEFAULT_DOCUMENT_PATHS)
    ruleset_files: dict[str, str] = dict(DEFAULT_RULESET_FILES)

    # Rule evaluator
    spectral_command: Annotated[list[str], NoDecode] = ["spectral"]
    evaluator_timeout_seconds: float = 120.0

    # Logging
    log_level: str = "INFO"

    @field_validator("spectral_command", mode="before")
    @classmethod
    def _parse_command(cls, v: Any) -> Any:
        """Accept comma-separated string or JSON array."""
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("spectral_command")
    @classmethod
    def _validate_command(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("spectral_command must not be empty")
        return v

    @field_validator("page_size", "max_concurrency", "retry_attempts")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("document_paths", "ruleset_files")
    @classmethod
    def _known_roles(cls, v: dict[str, str]) -> dict[str, str]:
        known = {r.value for r in DocumentRole}
        unknown = sorted(set(v) - known)
        if unknown:
            logger.warning(
                "Ignoring unknown document roles: %s", ", ".join(unknown)
            )
        return {k: p for k, p in v.items() if k in known}

    @field_validator("base_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level {v!r}")
        return level

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "APICONFORM_",
        "extra": "ignore",
    }
