"""
Service contracts the migration pipeline is allowed to talk to.

The migration modules (``source_analyzer``, ``migration_stages``,
``migration_orchestrator``) only import from this module.  Concrete,
file-backed implementations live in ``profile_services`` and are handed in by
the caller (CLI / GUI / tests) through a ``ServiceProvider``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

CATEGORY_PRIORITY = 100
OBJECT_PRIORITY = 50
RULE_PRIORITY = 100


# ── Domain records owned by other services ────────────────────────────


@dataclass
class ModRecord:
    """Persisted mod entity, keyed by the archive content hash."""

    sha: str
    name: str = "Unknown"
    author: str = ""
    description: str = ""
    category: str = "Unknown"
    archive_type: str = "7z"
    grading: str = "G"
    tags: list[str] = field(default_factory=list)
    is_loaded: bool = False


@dataclass
class ClassificationNode:
    id: str
    name: str
    parent_id: str | None = None
    priority: int = 0
    thumbnail: str | None = None
    description: str | None = None


@dataclass
class AutoDetectionRule:
    name: str
    pattern: str  # glob, e.g. "*Short*"
    category: str
    priority: int = RULE_PRIORITY


# ── Contracts ─────────────────────────────────────────────────────────


class ModCatalog(Protocol):
    def get_or_create(self, sha: str, seed: dict[str, Any]) -> tuple[ModRecord, bool]:
        """Return ``(record, created)``; an existing record is never modified."""
        ...


class FileTransfer(Protocol):
    def copy_file(self, src: Path, dst: Path, overwrite: bool = False) -> bool: ...

    def move_file(self, src: Path, dst: Path, overwrite: bool = False) -> bool: ...

    def link_file(self, src: Path, dst: Path, overwrite: bool = False) -> bool: ...

    def copy_directory(
        self,
        src: Path,
        dst: Path,
        extensions: Optional[Iterable[str]] = None,
        overwrite: bool = False,
    ) -> int: ...


class ImageService(Protocol):
    def supported_extensions(self) -> frozenset[str]: ...


class ClassificationService(Protocol):
    def create_node_if_absent(
        self,
        node_id: str,
        name: str,
        parent_id: str | None = None,
        priority: int = CATEGORY_PRIORITY,
        description: str | None = None,
    ) -> ClassificationNode | None:
        """Create the node and return it, or return None if the id exists."""
        ...

    def node_exists(self, node_id: str) -> bool: ...

    def associate_thumbnail(self, node_id: str, thumbnail_path: str) -> bool: ...

    def list_nodes(self) -> list[ClassificationNode]: ...


class AutoDetectionService(Protocol):
    def add_rule(self, rule: AutoDetectionRule) -> None: ...

    def save_rules(self, path: Path) -> bool: ...


class ConfigurationService(Protocol):
    def set_value(self, key: str, value: Any) -> None: ...

    def save(self) -> None: ...


class ArchiveService(Protocol):
    def detect_type(self, path: Path) -> str | None: ...


# ── Per-profile bundle ────────────────────────────────────────────────


@dataclass
class ProfileLayout:
    """Directory layout of one destination profile."""

    root: Path

    @property
    def archives_dir(self) -> Path:
        return self.root / "mods"

    @property
    def previews_dir(self) -> Path:
        return self.root / "previews"

    @property
    def thumbnails_dir(self) -> Path:
        return self.root / "thumbnails"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    @property
    def auto_detection_rules_path(self) -> Path:
        return self.root / "auto_detection_rules.json"

    @property
    def analysis_baseline_path(self) -> Path:
        """Source counts taken before the last migration into this profile."""
        return self.root / "migration_analysis.json"


@dataclass
class ProfileServices:
    profile_id: str
    layout: ProfileLayout
    mod_catalog: ModCatalog
    files: FileTransfer
    classifications: ClassificationService
    auto_detection: AutoDetectionService
    configuration: ConfigurationService
    archives: ArchiveService


class ServiceProvider(Protocol):
    def services_for(self, profile_id: str) -> ProfileServices: ...
