"""
Runtime configuration for the Lisa core.

Values come from the process environment (optionally seeded from a .env
file by python-dotenv). Settings.from_env() reads the environment at call
time so tests can patch it.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .core.exceptions import ConfigurationError

DEFAULT_MODEL = "gpt-4-1106-preview"

DEFAULT_CORPUS_EXTENSIONS = (".txt", ".md", ".pdf", ".doc", ".docx")

DEFAULT_INSTRUCTIONS = """You are Lisa, an expert AI assistant for train maintenance and technical support. You specialize in:

1. Train component identification and troubleshooting
2. Technical documentation and schematics
3. Maintenance procedures and safety protocols
4. SD60M locomotive systems and components
5. IETMS (Integrated Electronic Train Management System)

When users ask about train parts or request images, you can:
- Show images of specific train components
- Display technical schematics and diagrams
- Provide detailed technical information
- Guide users through maintenance procedures

Be helpful, professional, and safety-conscious in all responses. When showing images or schematics, provide context about what the user is viewing and any relevant technical details.

This is a personalized assistant for user ID: {USER_ID}. Maintain conversation context and provide personalized assistance."""


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}", cause=e)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}", cause=e)


@dataclass
class Settings:
    """Configuration for the orchestrator, the conversation store and the CLI."""

    database_url: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None

    # Assistant defaults
    default_model: str = DEFAULT_MODEL
    default_instructions: str = DEFAULT_INSTRUCTIONS
    default_corpus_dir: Path = field(default_factory=lambda: Path("uploads"))
    corpus_extensions: tuple = DEFAULT_CORPUS_EXTENSIONS
    knowledge_store_expiry_days: int = 90

    # Upload limits
    max_upload_bytes: int = 10 * 1024 * 1024

    # Remote call policy
    remote_timeout: float = 30.0
    remote_max_attempts: int = 3
    remote_initial_backoff: float = 1.0
    bulk_max_concurrency: int = 5
    batch_budget: float = 300.0

    # Reconciliation
    provision_stale_after: float = 900.0

    # Database pool
    db_pool_min: int = 2
    db_pool_max: int = 10

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Build settings from environment variables.

        Args:
            dotenv: Load a .env file from the working directory first

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        if dotenv:
            load_dotenv()

        instructions = DEFAULT_INSTRUCTIONS
        instructions_file = os.getenv("LISA_INSTRUCTIONS_FILE")
        if instructions_file:
            path = Path(instructions_file)
            if not path.is_file():
                raise ConfigurationError(
                    f"Instructions file not found: {instructions_file}",
                    missing_keys=["LISA_INSTRUCTIONS_FILE"],
                )
            instructions = path.read_text(encoding="utf-8")

        return cls(
            database_url=os.getenv("DATABASE_URL"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            default_model=os.getenv("LISA_DEFAULT_MODEL", DEFAULT_MODEL),
            default_instructions=instructions,
            default_corpus_dir=Path(os.getenv("LISA_DEFAULT_CORPUS_DIR", "uploads")),
            knowledge_store_expiry_days=_env_int("LISA_STORE_EXPIRY_DAYS", 90),
            max_upload_bytes=_env_int("LISA_MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
            remote_timeout=_env_float("LISA_REMOTE_TIMEOUT", 30.0),
            remote_max_attempts=_env_int("LISA_REMOTE_MAX_ATTEMPTS", 3),
            remote_initial_backoff=_env_float("LISA_REMOTE_INITIAL_BACKOFF", 1.0),
            bulk_max_concurrency=_env_int("LISA_BULK_MAX_CONCURRENCY", 5),
            batch_budget=_env_float("LISA_BATCH_BUDGET", 300.0),
            provision_stale_after=_env_float("LISA_PROVISION_STALE_AFTER", 900.0),
            db_pool_min=_env_int("DB_POOL_MIN", 2),
            db_pool_max=_env_int("DB_POOL_MAX", 10),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def require(self, *names: str) -> None:
        """Raise ConfigurationError listing every named setting that is unset."""
        missing = [name for name in names if not getattr(self, name, None)]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(n.upper() for n in missing)}",
                missing_keys=[n.upper() for n in missing],
            )
