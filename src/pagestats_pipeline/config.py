"""Configuration helpers and Settings container.

This module provides a small `Settings` dataclass and `get_settings` which
reads the storage backend, MongoDB location, log path and anomaly threshold
from the environment (after loading the project `.env`).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os

from dotenv import load_dotenv

# Explicitly load .env from project root
PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(PROJECT_ROOT / ".env")

STORAGE_BACKENDS = ("mongo", "memory")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class Settings:
    """Container for pipeline configuration read from the environment.

    Attributes:
        storage_backend: `mongo` or `memory`.
        mongo_uri: MongoDB connection URI.
        mongo_db: Target MongoDB database name.
        mongo_collection: Collection holding monthly snapshots.
        mongo_tls: Whether to connect with TLS (certifi CA bundle).
        log_path: File the CLI writes logs to.
        anomaly_threshold: Default number of standard deviations for anomalies.
    """
    storage_backend: str
    mongo_uri: str
    mongo_db: str
    mongo_collection: str
    mongo_tls: bool
    log_path: Path
    anomaly_threshold: float


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise RuntimeError(f"{name} must be a boolean (true/false), got '{raw}'.")


def get_settings() -> Settings:
    """Read environment variables and return a frozen `Settings` object.

    Raises:
        RuntimeError: if `STORAGE_BACKEND` is unknown, `MONGO_TLS` is not a
            boolean, or `ANOMALY_THRESHOLD` is not a positive number.
    """
    storage_backend = os.getenv("STORAGE_BACKEND", "mongo").strip().lower()
    mongo_uri = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    mongo_db = os.getenv("MONGO_DB", "pagestats")
    mongo_collection = os.getenv("MONGO_COLLECTION", "monthly_snapshots")
    mongo_tls = _env_bool("MONGO_TLS", False)
    log_path = Path(os.getenv("LOG_PATH", "logs/pagestats.log"))
    raw_threshold = os.getenv("ANOMALY_THRESHOLD", "2.0")

    if storage_backend not in STORAGE_BACKENDS:
        raise RuntimeError(
            f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}; "
            f"got '{storage_backend}'. Set it in .env."
        )

    try:
        anomaly_threshold = float(raw_threshold)
    except ValueError:
        raise RuntimeError(
            f"ANOMALY_THRESHOLD must be a number (example: 2.0), got '{raw_threshold}'."
        ) from None
    if not anomaly_threshold > 0:
        raise RuntimeError(f"ANOMALY_THRESHOLD must be positive, got {anomaly_threshold}.")

    return Settings(
        storage_backend=storage_backend,
        mongo_uri=mongo_uri,
        mongo_db=mongo_db,
        mongo_collection=mongo_collection,
        mongo_tls=mongo_tls,
        log_path=log_path,
        anomaly_threshold=anomaly_threshold,
    )
