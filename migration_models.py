"""
Data model shared by the migration analyzer, stages and orchestrator.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional

from legacy_config import LegacyConfiguration

if TYPE_CHECKING:
    from legacy_catalog import LegacyModEntry
    from service_contracts import ProfileServices

MAX_WARNINGS = 500

_log = logging.getLogger(__name__)


class MigrationError(Exception):
    """Structural failure: the run cannot continue."""


class MigrationCancelled(Exception):
    """Raised between items when the caller asked the run to stop."""


class ArchiveMode(str, Enum):
    COPY = "copy"
    MOVE = "move"
    LINK = "link"


class StageName(str, Enum):
    ANALYZE = "analyze"
    METADATA = "metadata"
    ARCHIVES = "archives"
    CLASSIFICATIONS = "classifications"
    PREVIEWS = "previews"
    CONFIGURATION = "configuration"


# ── Inputs ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MigrationOptions:
    source_path: Path
    profile_id: str
    archive_mode: ArchiveMode = ArchiveMode.COPY
    migrate_metadata: bool = True
    migrate_archives: bool = True
    migrate_classifications: bool = True
    migrate_previews: bool = True
    migrate_configuration: bool = True
    environment_name: str | None = None  # overrides the detected environment

    def __post_init__(self):
        # frozen: normalise through object.__setattr__
        object.__setattr__(self, "source_path", Path(self.source_path))
        object.__setattr__(self, "archive_mode", ArchiveMode(self.archive_mode))


# ── Analysis ──────────────────────────────────────────────────────────


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 B"
    units = ("B", "KB", "MB", "GB", "TB")
    value = float(size)
    order = 0
    while value >= 1024 and order < len(units) - 1:
        value /= 1024
        order += 1
    return f"{value:.2f}".rstrip("0").rstrip(".") + f" {units[order]}"


@dataclass(frozen=True)
class AnalysisResult:
    source_path: Path
    is_valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    mod_count: int = 0
    preview_count: int = 0
    category_count: int = 0
    archive_bytes: int = 0
    preview_bytes: int = 0
    environments: tuple[str, ...] = ()
    active_environment: str = ""
    configuration: LegacyConfiguration | None = None

    @property
    def archive_size(self) -> str:
        return format_bytes(self.archive_bytes)

    @property
    def preview_size(self) -> str:
        return format_bytes(self.preview_bytes)

    def summary(self) -> str:
        if not self.is_valid:
            return "Invalid source: " + "; ".join(self.errors)
        return (
            f"{self.mod_count} mod(s) ({self.archive_size}), "
            f"{self.preview_count} preview(s) ({self.preview_size}), "
            f"{self.category_count} categorie(s); "
            f"environment '{self.active_environment}' of {len(self.environments)}"
        )


# ── Progress / results ────────────────────────────────────────────────


@dataclass(frozen=True)
class MigrationProgress:
    stage: StageName
    percent: int
    current_item: str = ""


ProgressCallback = Callable[[MigrationProgress], None]


@dataclass
class StageCounts:
    created: int = 0
    copied: int = 0
    skipped: int = 0
    failed: int = 0

    def __str__(self) -> str:
        return (
            f"created={self.created} copied={self.copied} "
            f"skipped={self.skipped} failed={self.failed}"
        )


@dataclass
class MigrationResult:
    success: bool = False
    cancelled: bool = False
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    warning_count: int = 0
    stages: dict[str, StageCounts] = field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    log_file: Path | None = None

    def counts(self, stage: StageName | str) -> StageCounts:
        key = stage.value if isinstance(stage, StageName) else stage
        return self.stages.setdefault(key, StageCounts())

    def add_warning(self, message: str) -> None:
        self.warning_count += 1
        if len(self.warnings) < MAX_WARNINGS:
            self.warnings.append(message)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "cancelled": self.cancelled,
            "error": self.error,
            "warnings": list(self.warnings),
            "warning_count": self.warning_count,
            "stages": {
                name: {
                    "created": c.created,
                    "copied": c.copied,
                    "skipped": c.skipped,
                    "failed": c.failed,
                }
                for name, c in self.stages.items()
            },
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "log_file": str(self.log_file) if self.log_file else None,
        }


@dataclass
class ValidationResult:
    profile_id: str
    is_valid: bool
    expected: dict[str, int] = field(default_factory=dict)
    actual: dict[str, int] = field(default_factory=dict)
    issues: list[str] = field(default_factory=list)


# ── Run log ───────────────────────────────────────────────────────────


class MigrationLog:
    """Per-run text log written to the destination profile's logs directory.

    Lines go through a child logger of this module, so they also reach the
    application log installed by ``main.setup_logging``.
    """

    def __init__(self, log_path: Path, run_id: str):
        self.path = Path(log_path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handler = logging.FileHandler(self.path, mode="a", encoding="utf-8")
        self._handler.setFormatter(
            logging.Formatter("[%(asctime)s] %(levelname)-7s %(message)s", "%Y-%m-%d %H:%M:%S")
        )
        self.logger = logging.getLogger(f"{__name__}.run.{run_id}")
        self.logger.setLevel(logging.INFO)
        self.logger.addHandler(self._handler)

    def info(self, msg: str) -> None:
        self.logger.info(msg)

    def warning(self, msg: str) -> None:
        self.logger.warning(msg)

    def error(self, msg: str) -> None:
        self.logger.error(msg)

    def close(self) -> None:
        self.logger.removeHandler(self._handler)
        self._handler.close()


# ── Context ───────────────────────────────────────────────────────────


@dataclass
class MigrationContext:
    """Scratch space for one ``migrate`` call, shared by every stage."""

    options: MigrationOptions
    services: ProfileServices
    image_extensions: frozenset[str]
    log: MigrationLog
    result: MigrationResult = field(default_factory=MigrationResult)
    progress: Optional[ProgressCallback] = None
    cancel_event: Optional[threading.Event] = None
    analysis: AnalysisResult | None = None
    environment_name: str = ""
    environment_path: Path | None = None
    configuration: LegacyConfiguration | None = None
    mod_entries: list[LegacyModEntry] = field(default_factory=list)

    @property
    def source_path(self) -> Path:
        return self.options.source_path

    def warn(self, message: str) -> None:
        self.result.add_warning(message)
        self.log.warning(message)

    def check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise MigrationCancelled()

    def report(self, stage: StageName, percent: int, current_item: str = "") -> None:
        if self.progress is None:
            return
        try:
            self.progress(MigrationProgress(stage, max(0, min(100, percent)), current_item))
        except Exception:
            _log.exception("Progress callback failed")
