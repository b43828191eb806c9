# File: evidence_vault/core/config/settings.py

import os
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


class Settings:
    # --- Paths ---
    # evidence_vault/core/config/settings.py -> config -> core -> evidence_vault -> ROOT
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent.parent

    # --- Database ---
    POSTGRES_USER: str = os.getenv("POSTGRES_USER", "postgres")
    POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "password")
    POSTGRES_SERVER: str = os.getenv("POSTGRES_SERVER", "localhost")
    POSTGRES_PORT: str = os.getenv("POSTGRES_PORT", "5432")
    POSTGRES_DB: str = os.getenv("POSTGRES_DB", "evidence_vault")

    @property
    def DATABASE_URL(self) -> str:
        explicit = os.getenv("DATABASE_URL")
        if explicit:
            return explicit

        if _env_bool("USE_SQLITE", False):
            return "sqlite:///./test_evidence_vault.db"

        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # --- Ingest ---
    MAX_UPLOAD_BYTES: int = _env_int("MAX_UPLOAD_BYTES", 100 * 1024 * 1024)
    PIN_TIMEOUT_SECONDS: float = _env_float("PIN_TIMEOUT_SECONDS", 30.0)
    # A `pinning` placeholder older than this is treated as abandoned by a crashed ingest.
    PIN_STALE_AFTER_SECONDS: float = _env_float("PIN_STALE_AFTER_SECONDS", 300.0)

    # --- Migration (tier B) ---
    DEAL_TIMEOUT_SECONDS: float = _env_float("DEAL_TIMEOUT_SECONDS", 120.0)
    MIGRATION_MAX_ATTEMPTS: int = _env_int("MIGRATION_MAX_ATTEMPTS", 3)
    BACKOFF_BASE_SECONDS: float = _env_float("BACKOFF_BASE_SECONDS", 5.0)
    BACKOFF_MAX_SECONDS: float = _env_float("BACKOFF_MAX_SECONDS", 300.0)
    BACKOFF_JITTER: float = _env_float("BACKOFF_JITTER", 0.2)
    LEASE_SECONDS: float = _env_float("LEASE_SECONDS", 600.0)
    WORKER_CONCURRENCY: int = _env_int("WORKER_CONCURRENCY", 2)
    WORKER_BATCH_SIZE: int = _env_int("WORKER_BATCH_SIZE", 10)
    POLL_INTERVAL_SECONDS: float = _env_float("POLL_INTERVAL_SECONDS", 2.0)

    # --- Collaborators ---
    # Each collaborator concern gets its own pool so a slow one cannot starve the others.
    PIN_CONCURRENCY: int = _env_int("PIN_CONCURRENCY", 16)
    STATUS_CONCURRENCY: int = _env_int("STATUS_CONCURRENCY", 8)
    # How long a call may wait for a free pool slot before it is rejected unattempted.
    COLLABORATOR_QUEUE_TIMEOUT_SECONDS: float = _env_float("COLLABORATOR_QUEUE_TIMEOUT_SECONDS", 5.0)
    # Extra time the local deadline allows past the HTTP client timeout, which ends the request itself.
    COLLABORATOR_GRACE_SECONDS: float = _env_float("COLLABORATOR_GRACE_SECONDS", 5.0)

    PINATA_JWT: str = os.getenv("PINATA_JWT", "")
    PINATA_API_URL: str = os.getenv("PINATA_API_URL", "https://api.pinata.cloud")
    PINATA_GATEWAY: str = os.getenv("PINATA_GATEWAY", "gateway.pinata.cloud")
    DEAL_STORE_FUNDED: bool = _env_bool("DEAL_STORE_FUNDED", True)

    # --- HTTP ---
    # The auth layer in front of us puts the verified wallet address here.
    OWNER_HEADER: str = os.getenv("OWNER_HEADER", "X-Owner-Address")
    # Comma-separated addresses allowed to read system-wide state.
    ADMIN_OWNERS: list = [a.strip().lower() for a in os.getenv("ADMIN_OWNERS", "").split(",") if a.strip()]

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    def validate(self):
        """Rejects settings the migration pipeline cannot run safely with."""
        if self.MIGRATION_MAX_ATTEMPTS < 1:
            raise ValueError("MIGRATION_MAX_ATTEMPTS must be at least 1.")
        if self.BACKOFF_BASE_SECONDS < 0 or self.BACKOFF_MAX_SECONDS < 0:
            raise ValueError("Backoff delays cannot be negative.")
        if not 0 <= self.BACKOFF_JITTER <= 1:
            raise ValueError("BACKOFF_JITTER must be between 0 and 1.")
        if self.LEASE_SECONDS <= self.DEAL_TIMEOUT_SECONDS:
            raise ValueError(
                f"LEASE_SECONDS ({self.LEASE_SECONDS}) must exceed DEAL_TIMEOUT_SECONDS ({self.DEAL_TIMEOUT_SECONDS})."
            )
        if self.MAX_UPLOAD_BYTES <= 0:
            raise ValueError("MAX_UPLOAD_BYTES must be positive.")
        if min(self.PIN_CONCURRENCY, self.STATUS_CONCURRENCY, self.WORKER_CONCURRENCY) < 1:
            raise ValueError("Pool sizes must be at least 1.")
        if self.COLLABORATOR_QUEUE_TIMEOUT_SECONDS < 0 or self.COLLABORATOR_GRACE_SECONDS < 0:
            raise ValueError("Collaborator queue and grace timeouts cannot be negative.")


settings = Settings()
