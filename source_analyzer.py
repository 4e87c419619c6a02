"""
Read-only inspection of a legacy installation tree.

Expected layout::

    <root>/resources/mods/<sha>              archives, usually without extension
    <root>/resources/preview/...             preview images
    <root>/home/<env>/modsIndex/index_*.json
    <root>/home/<env>/classification/<category>
    <root>/home/<env>/thumbnail/_redirection.ini
    <root>/local/configuration
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Iterator

from legacy_config import parse_legacy_configuration
from migration_models import AnalysisResult

DEFAULT_ENVIRONMENT = "Default"

_log = logging.getLogger(__name__)


# ── Tree helpers ──────────────────────────────────────────────────────


def resources_dir(root: Path) -> Path:
    return Path(root) / "resources"


def mods_dir(root: Path) -> Path:
    return resources_dir(root) / "mods"


def preview_dir(root: Path) -> Path:
    return resources_dir(root) / "preview"


def environment_dir(root: Path, env_name: str) -> Path:
    return Path(root) / "home" / env_name


def find_environments(root: str | Path) -> list[str]:
    """Names of the environment directories under ``home/``, sorted."""
    home = Path(root) / "home"
    if not home.is_dir():
        return []
    return sorted(p.name for p in home.iterdir() if p.is_dir())


def iter_images(directory: Path, image_extensions: frozenset[str]) -> Iterator[Path]:
    """Every supported image under ``directory``, recursively, in a stable order."""
    if not directory.is_dir():
        return
    for dirpath, dirnames, filenames in os.walk(directory):
        dirnames.sort()
        for name in sorted(filenames):
            if Path(name).suffix.lower() in image_extensions:
                yield Path(dirpath) / name


def _file_sizes(files: Iterable[Path]) -> tuple[int, int]:
    count = total = 0
    for f in files:
        count += 1
        try:
            total += f.stat().st_size
        except OSError as exc:
            _log.warning("Could not stat %s: %s", f, exc)
    return count, total


# ── Analysis ──────────────────────────────────────────────────────────


def analyze_source(source_path: str | Path, image_extensions: Iterable[str]) -> AnalysisResult:
    """Validate a legacy tree and count what a migration would carry over."""
    source_path = Path(source_path)
    extensions = frozenset(e.lower() for e in image_extensions)
    _log.info("Analyzing legacy installation at %s", source_path)

    if not source_path.exists():
        return AnalysisResult(source_path, False, errors=(f"Source path does not exist: {source_path}",))
    if not source_path.is_dir():
        return AnalysisResult(source_path, False, errors=(f"Source path is not a directory: {source_path}",))
    if not resources_dir(source_path).is_dir():
        return AnalysisResult(
            source_path,
            False,
            errors=(f"Not a legacy installation: 'resources' directory missing in {source_path}",),
        )

    warnings: list[str] = []
    environments = find_environments(source_path)
    if not (source_path / "home").is_dir():
        warnings.append("'home' directory not found; using the default environment")
    elif not environments:
        warnings.append("No environments found under 'home'; using the default environment")

    # Global settings name the active environment; read them once without an env.
    global_config = parse_legacy_configuration(source_path, warn=warnings.append)
    active = DEFAULT_ENVIRONMENT
    if environments:
        flagged = global_config.active_environment if global_config else None
        if flagged and flagged in environments:
            active = flagged
        else:
            if flagged:
                warnings.append(f"Active environment '{flagged}' not found; using '{environments[0]}'")
            active = environments[0]

    configuration = global_config
    if environments and global_config is not None:
        configuration = parse_legacy_configuration(source_path, active, warn=warnings.append)

    try:
        archives = []
        if mods_dir(source_path).is_dir():
            archives = [p for p in mods_dir(source_path).iterdir() if p.is_file()]
        mod_count, archive_bytes = _file_sizes(archives)
        preview_count, preview_bytes = _file_sizes(iter_images(preview_dir(source_path), extensions))
        classification = environment_dir(source_path, active) / "classification"
        category_count = (
            sum(1 for p in classification.iterdir() if p.is_file()) if classification.is_dir() else 0
        )
    except OSError as exc:
        return AnalysisResult(source_path, False, errors=(f"Could not read legacy installation: {exc}",))

    for w in warnings:
        _log.warning(w)

    result = AnalysisResult(
        source_path=source_path,
        is_valid=True,
        warnings=tuple(warnings),
        mod_count=mod_count,
        preview_count=preview_count,
        category_count=category_count,
        archive_bytes=archive_bytes,
        preview_bytes=preview_bytes,
        environments=tuple(environments),
        active_environment=active,
        configuration=configuration,
    )
    _log.info("Analysis complete: %s", result.summary())
    return result


# ── Auto-detection ────────────────────────────────────────────────────


def default_candidates() -> list[Path]:
    candidates = [Path(f"{drive}:/Mods/Endfield MOD") for drive in ("E", "D", "C")]
    candidates.append(Path.home() / "Documents" / "Mods" / "Endfield MOD")
    return candidates


def auto_detect_source(
    image_extensions: Iterable[str],
    candidates: Iterable[str | Path] | None = None,
) -> Path | None:
    """First candidate directory that analyses as a valid legacy installation."""
    extensions = frozenset(image_extensions)
    for candidate in candidates if candidates is not None else default_candidates():
        candidate = Path(candidate)
        if not candidate.is_dir():
            continue
        if analyze_source(candidate, extensions).is_valid:
            _log.info("Auto-detected legacy installation at %s", candidate)
            return candidate
    return None
