"""
Configuration schema (``bulkops_config.schema``).

Frozen dataclasses describing every tunable of the orchestrator.  Values
come from ``defaults.yaml`` overlaid with an optional deployment file; see
``bulkops_config.loader``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class OrchestratorSettings:
    """Worker pool and shutdown behaviour."""

    max_workers: int = 4
    shutdown_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class ProgressSettings:
    """Progress delivery and ETA smoothing."""

    callback_timeout_seconds: float = 0.5
    eta_smoothing: float = 0.3  # EMA alpha; higher reacts faster


@dataclass(frozen=True)
class HistorySettings:
    """Bounded retention for terminal operations."""

    max_entries: int = 500
    database_url: str | None = None  # None -> in-memory store
    default_page_size: int = 20
    max_page_size: int = 200


@dataclass(frozen=True)
class StatisticsSettings:
    """Freshness policy for system statistics snapshots."""

    max_age_seconds: float = 60.0
    background_refresh: bool = True


@dataclass(frozen=True)
class PollerSettings:
    """Client-side status polling."""

    interval_seconds: float = 5.0


@dataclass(frozen=True)
class ValidationSettings:
    """Submission limits and type-specific parameter vocabularies."""

    max_items_per_operation: int = 10_000
    allowed_roles: tuple[str, ...] = ("Admin", "Pro User", "Regular User")
    export_formats: tuple[str, ...] = ("csv", "json", "xlsx")


@dataclass(frozen=True)
class BulkOpsConfig:
    """Effective configuration for one orchestrator process."""

    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    progress: ProgressSettings = field(default_factory=ProgressSettings)
    history: HistorySettings = field(default_factory=HistorySettings)
    statistics: StatisticsSettings = field(default_factory=StatisticsSettings)
    poller: PollerSettings = field(default_factory=PollerSettings)
    validation: ValidationSettings = field(default_factory=ValidationSettings)
    checksum: str | None = None
