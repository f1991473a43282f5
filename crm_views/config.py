"""Environment-driven settings for record stores and page views."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

_DEFAULT_TIMEOUT = 10
_DEFAULT_PAGE_SIZE = 20

DEFAULT_PLACEHOLDERS: Mapping[str, str] = {
    "Contact": "Unknown Contact",
    "Deal": "Unknown Deal",
    "Task": "Unknown Task",
    "Activity": "Unknown Activity",
    "Quote": "Unknown Quote",
    "Company": "Unknown Company",
}


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the Postgres record store."""

    host: str
    port: int
    user: str
    password: str
    dbname: str
    sslmode: Optional[str] = None
    connect_timeout: int = _DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Construct configuration from standard environment variables."""
        return cls(
            host=os.getenv("DB_HOST", os.getenv("POSTGRES_HOST", "localhost")),
            port=int(os.getenv("DB_PORT", os.getenv("POSTGRES_PORT", "5432"))),
            user=os.getenv("DB_USER", os.getenv("POSTGRES_USER", "crm_app")),
            password=os.getenv("DB_PASSWORD", os.getenv("POSTGRES_PASSWORD", "crm_password")),
            dbname=os.getenv("DB_NAME", os.getenv("POSTGRES_DB", "crm_views")),
            sslmode=os.getenv("DB_SSLMODE"),
            connect_timeout=int(os.getenv("DB_CONNECT_TIMEOUT", str(_DEFAULT_TIMEOUT))),
        )

    def conninfo(self) -> str:
        """Render a libpq connection string."""
        parts = [
            f"host={self.host}",
            f"port={self.port}",
            f"user={self.user}",
            f"password={self.password}",
            f"dbname={self.dbname}",
            f"connect_timeout={self.connect_timeout}",
        ]
        if self.sslmode:
            parts.append(f"sslmode={self.sslmode}")
        return " ".join(parts)


@dataclass(frozen=True)
class ViewSettings:
    """Runtime knobs shared by every page view."""

    store: str = "memory"
    page_size: int = _DEFAULT_PAGE_SIZE
    latency_ms: int = 0
    placeholders: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_PLACEHOLDERS))

    @classmethod
    def from_env(cls) -> "ViewSettings":
        placeholders = dict(DEFAULT_PLACEHOLDERS)
        for entity in placeholders:
            override = os.getenv(f"CRM_UNKNOWN_{entity.upper()}_LABEL")
            if override:
                placeholders[entity] = override
        store = os.getenv("CRM_STORE", "memory").strip().lower()
        if store not in {"memory", "postgres"}:
            raise ValueError(f"CRM_STORE must be 'memory' or 'postgres', got '{store}'.")
        page_size = int(os.getenv("CRM_PAGE_SIZE", str(_DEFAULT_PAGE_SIZE)))
        if page_size <= 0:
            raise ValueError("CRM_PAGE_SIZE must be a positive integer.")
        return cls(
            store=store,
            page_size=page_size,
            latency_ms=int(os.getenv("CRM_STORE_LATENCY_MS", "0")),
            placeholders=placeholders,
        )

    def placeholder_for(self, entity: str) -> str:
        return self.placeholders.get(entity, f"Unknown {entity}")
