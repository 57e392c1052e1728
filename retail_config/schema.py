"""
RetailKernelConfig schema.

Typed, frozen view of the operator configuration.  YAML documents are
merged by the loader and parsed into these types; every section validates
itself in ``__post_init__`` so a bad value fails at startup, not mid-sale.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

STORE_ACCESS_MODES: frozenset[str] = frozenset({"tenant", "assigned"})

LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _known(section: str, data: dict[str, Any], allowed: frozenset[str]) -> dict[str, Any]:
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown keys in {section} config: {sorted(unknown)}")
    return data


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///:memory:"
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("database.url is required")
        if self.pool_size < 1:
            raise ValueError(f"database.pool_size must be >= 1, got {self.pool_size}")
        if self.max_overflow < 0:
            raise ValueError(f"database.max_overflow must be >= 0, got {self.max_overflow}")
        if self.pool_timeout <= 0:
            raise ValueError(f"database.pool_timeout must be positive, got {self.pool_timeout}")


@dataclass(frozen=True)
class SalesConfig:
    """Sale-time reservation settings."""

    transaction_timeout_seconds: float = 10.0
    apply_margin: bool = False  # price takes at cost_of_item instead of price

    def __post_init__(self) -> None:
        if self.transaction_timeout_seconds <= 0:
            raise ValueError(
                "sales.transaction_timeout_seconds must be positive, "
                f"got {self.transaction_timeout_seconds}"
            )


@dataclass(frozen=True)
class TransferConfig:
    store_access_mode: str = "tenant"
    unknown_store_label: str = "Unknown Store"

    def __post_init__(self) -> None:
        if self.store_access_mode not in STORE_ACCESS_MODES:
            raise ValueError(
                f"transfers.store_access_mode must be one of {sorted(STORE_ACCESS_MODES)}, "
                f"got {self.store_access_mode!r}"
            )


@dataclass(frozen=True)
class MigrationConfig:
    chunk_size: int = 100
    system_actor: str = "SYSTEM_MIGRATION"

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ValueError(f"migration.chunk_size must be >= 1, got {self.chunk_size}")
        if not self.system_actor:
            raise ValueError("migration.system_actor is required")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self) -> None:
        if self.level.upper() not in LOG_LEVELS:
            raise ValueError(f"logging.level must be one of {sorted(LOG_LEVELS)}, got {self.level!r}")


_SECTIONS: dict[str, type] = {
    "database": DatabaseConfig,
    "sales": SalesConfig,
    "transfers": TransferConfig,
    "migration": MigrationConfig,
    "logging": LoggingConfig,
}


@dataclass(frozen=True)
class RetailKernelConfig:
    """
    The runtime configuration artifact.

    Obtained only through ``retail_config.get_active_config()``.  The
    ``checksum`` identifies the merged source document.
    """

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    sales: SalesConfig = field(default_factory=SalesConfig)
    transfers: TransferConfig = field(default_factory=TransferConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""

    @classmethod
    def with_defaults(cls) -> RetailKernelConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any], checksum: str = "") -> RetailKernelConfig:
        """
        Parse a merged configuration document.

        Raises:
            ValueError: unknown section or key, or an invalid value.
        """
        _known("top-level", data, frozenset(_SECTIONS))
        sections: dict[str, Any] = {}
        for name, section_cls in _SECTIONS.items():
            raw = data.get(name) or {}
            if not isinstance(raw, dict):
                raise ValueError(f"{name} config must be a mapping, got {type(raw).__name__}")
            _known(name, raw, frozenset(section_cls.__dataclass_fields__))
            sections[name] = section_cls(**raw)
        return cls(checksum=checksum, **sections)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("checksum")
        return data
