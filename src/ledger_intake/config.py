"""
Configuration management (SSOT).

This module defines ALL configuration for the ingestion pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Upload limits are enforced before a job row exists
- Model timeouts bound a single HTTP call; retry/backoff is layered on top
- Thresholds are fractions in [0, 1]
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

MIB = 1024 * 1024


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class LLMConfig:
    """Completion service (Ollama) configuration.

    SSOT for model settings:
    - enabled: Master switch; PDF, screenshot and email parsing need it
    - ollama_url: Can be localhost, LAN IP, or remote URL
    - auth_header: Optional auth header for proxied deployments
    - retry and circuit breaker knobs for the shared client
    """

    enabled: bool = True
    ollama_url: str = "http://localhost:11434"
    # Format: "Bearer <token>" or "Header-Name: value"
    auth_header: str | None = None
    text_model: str = "qwen2.5:7b-instruct-q4_K_M"
    vision_model: str = "llama3.2-vision:11b"
    # Per-call timeout (seconds)
    timeout_seconds: int = 120
    # Attempts per generate() call, including the first
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_cap_seconds: float = 10.0
    # Consecutive failed calls before the circuit opens
    circuit_failure_threshold: int = 5
    # Seconds the circuit stays open before a half-open probe
    circuit_reset_seconds: float = 60.0
    max_concurrent: int = 2
    parsing_max_tokens: int = 8192
    vision_max_tokens: int = 4096

    def is_remote(self) -> bool:
        """Check if Ollama URL is remote (not localhost)."""
        url_lower = self.ollama_url.lower()
        return not any(
            local in url_lower
            for local in ["localhost", "127.0.0.1", "::1", "host.docker.internal"]
        )


@dataclass
class ImportConfig:
    """Import pipeline limits and thresholds."""

    max_statement_bytes: int = 10 * MIB
    max_screenshot_bytes: int = 10 * MIB
    max_screenshots: int = 5
    statement_mime_types: list[str] = field(
        default_factory=lambda: [
            "application/pdf",
            "text/csv",
            "application/csv",
            "application/vnd.ms-excel",
            "text/plain",
        ]
    )
    screenshot_mime_types: list[str] = field(
        default_factory=lambda: ["image/png", "image/jpeg", "image/jpg", "image/gif", "image/webp"]
    )
    # PDF text extraction caps
    pdf_max_pages: int = 50
    pdf_max_chars: int = 50_000
    pdf_min_chars: int = 50
    # Vision rows under this confidence are dropped
    vision_confidence_floor: float = 0.3
    # Email auto-confirm minimum confidence
    auto_confirm_threshold: float = 0.7
    # Posting-date drift tolerated when matching ledger entries
    dedupe_variance_days: int = 1
    # PROCESSING jobs older than this are failed by the sweep
    stuck_job_minutes: int = 30
    # COMPLETED/FAILED jobs older than this are deleted
    job_retention_days: int = 30
    worker_threads: int = 4
    default_currency: str = "NGN"
    # Inbound addresses are <prefix>-<hash>@<domain>
    import_email_domain: str = "import.ledger-intake.app"


@dataclass
class StorageConfig:
    """Uploaded file storage."""

    upload_dir: Path = field(default_factory=lambda: Path("data/uploads"))


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    llm: LLMConfig = field(default_factory=LLMConfig)
    imports: ImportConfig = field(default_factory=ImportConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.llm.enabled and not self.llm.ollama_url:
            errors.append("llm.ollama_url is required when LLM is enabled")
        if self.llm.max_retries < 1:
            errors.append("llm.max_retries must be >= 1")
        if self.llm.backoff_cap_seconds < self.llm.backoff_base_seconds:
            errors.append("llm.backoff_cap_seconds must be >= backoff_base_seconds")
        if self.llm.circuit_failure_threshold < 1:
            errors.append("llm.circuit_failure_threshold must be >= 1")

        for name in ("vision_confidence_floor", "auto_confirm_threshold"):
            value = getattr(self.imports, name)
            if not 0.0 <= value <= 1.0:
                errors.append(f"imports.{name} must be between 0 and 1")

        if self.imports.max_screenshots < 1:
            errors.append("imports.max_screenshots must be >= 1")
        if self.imports.dedupe_variance_days < 0:
            errors.append("imports.dedupe_variance_days must be >= 0")
        if self.imports.stuck_job_minutes < 1:
            errors.append("imports.stuck_job_minutes must be >= 1")

        return errors


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return default


def load_config(config_path: Path, strict: bool = False) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - INTAKE_LLM_ENABLED (true/false)
    - OLLAMA_URL
    - OLLAMA_AUTH_HEADER
    - OLLAMA_MODEL (text model name)
    - OLLAMA_VISION_MODEL
    - OLLAMA_TIMEOUT (request timeout in seconds)
    - INTAKE_UPLOAD_DIR
    - INTAKE_STATE_DB

    Raises:
        ConfigValidationError: If strict and the resulting config is invalid
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # LLM config
    llm_data = data.get("llm", {})
    defaults = LLMConfig()
    llm = LLMConfig(
        enabled=_env_bool("INTAKE_LLM_ENABLED", llm_data.get("enabled", defaults.enabled)),
        ollama_url=os.environ.get("OLLAMA_URL", llm_data.get("ollama_url", defaults.ollama_url)),
        auth_header=os.environ.get("OLLAMA_AUTH_HEADER", llm_data.get("auth_header")),
        text_model=os.environ.get("OLLAMA_MODEL", llm_data.get("text_model", defaults.text_model)),
        vision_model=os.environ.get(
            "OLLAMA_VISION_MODEL", llm_data.get("vision_model", defaults.vision_model)
        ),
        timeout_seconds=int(os.environ.get(
            "OLLAMA_TIMEOUT", llm_data.get("timeout_seconds", defaults.timeout_seconds)
        )),
        max_retries=llm_data.get("max_retries", defaults.max_retries),
        backoff_base_seconds=llm_data.get("backoff_base_seconds", defaults.backoff_base_seconds),
        backoff_cap_seconds=llm_data.get("backoff_cap_seconds", defaults.backoff_cap_seconds),
        circuit_failure_threshold=llm_data.get(
            "circuit_failure_threshold", defaults.circuit_failure_threshold
        ),
        circuit_reset_seconds=llm_data.get("circuit_reset_seconds", defaults.circuit_reset_seconds),
        max_concurrent=llm_data.get("max_concurrent", defaults.max_concurrent),
        parsing_max_tokens=llm_data.get("parsing_max_tokens", defaults.parsing_max_tokens),
        vision_max_tokens=llm_data.get("vision_max_tokens", defaults.vision_max_tokens),
    )

    # Import pipeline config
    import_data = data.get("imports", {})
    import_defaults = ImportConfig()
    imports = ImportConfig(
        max_statement_bytes=import_data.get(
            "max_statement_bytes", import_defaults.max_statement_bytes
        ),
        max_screenshot_bytes=import_data.get(
            "max_screenshot_bytes", import_defaults.max_screenshot_bytes
        ),
        max_screenshots=import_data.get("max_screenshots", import_defaults.max_screenshots),
        statement_mime_types=import_data.get(
            "statement_mime_types", import_defaults.statement_mime_types
        ),
        screenshot_mime_types=import_data.get(
            "screenshot_mime_types", import_defaults.screenshot_mime_types
        ),
        pdf_max_pages=import_data.get("pdf_max_pages", import_defaults.pdf_max_pages),
        pdf_max_chars=import_data.get("pdf_max_chars", import_defaults.pdf_max_chars),
        pdf_min_chars=import_data.get("pdf_min_chars", import_defaults.pdf_min_chars),
        vision_confidence_floor=import_data.get(
            "vision_confidence_floor", import_defaults.vision_confidence_floor
        ),
        auto_confirm_threshold=import_data.get(
            "auto_confirm_threshold", import_defaults.auto_confirm_threshold
        ),
        dedupe_variance_days=import_data.get(
            "dedupe_variance_days", import_defaults.dedupe_variance_days
        ),
        stuck_job_minutes=import_data.get("stuck_job_minutes", import_defaults.stuck_job_minutes),
        job_retention_days=import_data.get(
            "job_retention_days", import_defaults.job_retention_days
        ),
        worker_threads=import_data.get("worker_threads", import_defaults.worker_threads),
        default_currency=import_data.get("default_currency", import_defaults.default_currency),
        import_email_domain=import_data.get(
            "import_email_domain", import_defaults.import_email_domain
        ),
    )

    # Storage
    storage_data = data.get("storage", {})
    storage = StorageConfig(
        upload_dir=Path(
            os.environ.get("INTAKE_UPLOAD_DIR", storage_data.get("upload_dir", "data/uploads"))
        ),
    )

    # State DB
    state_db = os.environ.get("INTAKE_STATE_DB", data.get("state_db_path", "data/state.db"))

    config = Config(
        llm=llm,
        imports=imports,
        storage=storage,
        state_db_path=Path(state_db),
    )

    if strict:
        errors = config.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))

    return config


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Ledger Intake Configuration
#
# Environment variables override the values below:
#   OLLAMA_URL, OLLAMA_MODEL, OLLAMA_VISION_MODEL, OLLAMA_TIMEOUT,
#   OLLAMA_AUTH_HEADER, INTAKE_LLM_ENABLED, INTAKE_UPLOAD_DIR, INTAKE_STATE_DB

# Completion service (Ollama)
llm:
  enabled: true                            # PDF, screenshot and email parsing need the model
  ollama_url: "http://localhost:11434"
  auth_header: null                        # Optional auth header for proxied deployments
  text_model: "qwen2.5:7b-instruct-q4_K_M"
  vision_model: "llama3.2-vision:11b"
  timeout_seconds: 120                     # Per call; retries are layered on top
  max_retries: 3
  backoff_base_seconds: 1.0
  backoff_cap_seconds: 10.0
  circuit_failure_threshold: 5             # Consecutive failures before failing fast
  circuit_reset_seconds: 60                # Wait before a half-open probe
  max_concurrent: 2

# Import pipeline
imports:
  max_statement_bytes: 10485760
  max_screenshot_bytes: 10485760
  max_screenshots: 5
  pdf_max_pages: 50
  pdf_max_chars: 50000
  vision_confidence_floor: 0.3             # Drop screenshot rows below this
  auto_confirm_threshold: 0.7              # Email debits at or above this are auto-confirmed
  dedupe_variance_days: 1                  # Posting-date drift tolerated against the ledger
  stuck_job_minutes: 30                    # PROCESSING jobs older than this are failed
  job_retention_days: 30
  worker_threads: 4
  default_currency: "NGN"
  import_email_domain: "import.ledger-intake.app"

storage:
  upload_dir: "data/uploads"

# State database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
