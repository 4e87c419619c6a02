"""
Legacy classification and thumbnail redirection parsers.

Classification directory (``home/<env>/classification``): one plain text file
per category, named after the category, one object name per line.

Redirection map (``home/<env>/thumbnail/_redirection.ini``), line oriented:

    ; comment
    [*] Endfield\\Operators-Heat\\*         every image in that folder, keyed
                                            by file stem
    Administrator = Endfield\\Operators\\Administrator.png

Explicit ``name = path`` lines always win over folder wildcards, regardless of
their order in the file.  Returned paths are relative to the directory that
holds the redirection file and use forward slashes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

REDIRECTION_FILENAME = "_redirection.ini"
COMMENT_PREFIXES = (";", "/", "\\")
WILDCARD_PREFIX = "[*]"
WILDCARD_SUFFIXES = ("\\*", "/*")

_log = logging.getLogger(__name__)


@dataclass
class RedirectionStatistics:
    total_lines: int = 0
    empty_lines: int = 0
    folder_declarations: int = 0
    explicit_mappings: int = 0

    def __str__(self) -> str:
        return (
            f"Total: {self.total_lines}, Folders: {self.folder_declarations}, "
            f"Mappings: {self.explicit_mappings}, Empty: {self.empty_lines}"
        )


def _normalize_rel(path: str) -> str:
    return path.strip().replace("\\", "/").strip("/")


def _read_lines(path: Path) -> list[str]:
    # utf-8-sig: files written by Notepad carry a BOM
    return path.read_text(encoding="utf-8-sig").splitlines()


# ── Category files ────────────────────────────────────────────────────


def parse_categories(
    classification_dir: str | Path,
    warn: Optional[Callable[[str], None]] = None,
) -> dict[str, list[str]]:
    """Return ``{category: [object, ...]}`` from a legacy classification dir."""
    classification_dir = Path(classification_dir)
    result: dict[str, list[str]] = {}

    if not classification_dir.is_dir():
        msg = f"Classification directory not found: {classification_dir}"
        _log.warning(msg)
        if warn:
            warn(msg)
        return result

    files = sorted(p for p in classification_dir.iterdir() if p.is_file())
    _log.info("Found %d classification file(s)", len(files))

    for f in files:
        try:
            lines = _read_lines(f)
        except (OSError, UnicodeDecodeError) as exc:
            msg = f"Failed to parse classification file {f.name}: {exc}"
            _log.warning(msg)
            if warn:
                warn(msg)
            continue

        objects: list[str] = []
        for line in lines:
            name = line.strip()
            if name and name not in objects:
                objects.append(name)
        result[f.name] = objects
        _log.debug("Category '%s': %d object(s)", f.name, len(objects))

    return result


# ── Redirection map ───────────────────────────────────────────────────


def _is_comment(line: str) -> bool:
    return line.startswith(COMMENT_PREFIXES)


def _is_wildcard(line: str) -> bool:
    return line.startswith(WILDCARD_PREFIX) and line.endswith(WILDCARD_SUFFIXES)


def _wildcard_folder(line: str) -> str:
    return _normalize_rel(line[len(WILDCARD_PREFIX):-2])


def _expand_wildcard(
    base_dir: Path,
    folder: str,
    image_extensions: frozenset[str],
    warn: Optional[Callable[[str], None]],
) -> dict[str, str]:
    full = base_dir / folder
    if not full.is_dir():
        msg = f"Redirection folder not found: {folder}"
        _log.warning(msg)
        if warn:
            warn(msg)
        return {}

    found: dict[str, str] = {}
    for image in sorted(full.iterdir()):
        if image.is_file() and image.suffix.lower() in image_extensions:
            found.setdefault(image.stem, f"{folder}/{image.name}" if folder else image.name)
    _log.info("Loaded %d thumbnail(s) from %s", len(found), folder or ".")
    return found


def parse_redirections(
    redirection_file: str | Path,
    image_extensions: Iterable[str],
    warn: Optional[Callable[[str], None]] = None,
) -> dict[str, str]:
    """Return ``{object_or_category_name: relative_thumbnail_path}``."""
    redirection_file = Path(redirection_file)
    extensions = frozenset(ext.lower() for ext in image_extensions)

    try:
        lines = _read_lines(redirection_file)
    except (OSError, UnicodeDecodeError) as exc:
        msg = f"Could not read {redirection_file.name}: {exc}"
        _log.warning(msg)
        if warn:
            warn(msg)
        return {}

    base_dir = redirection_file.parent
    explicit: dict[str, str] = {}
    from_folders: dict[str, str] = {}

    for raw in lines:
        line = raw.strip()
        if not line or _is_comment(line):
            continue
        if _is_wildcard(line):
            for name, rel in _expand_wildcard(base_dir, _wildcard_folder(line), extensions, warn).items():
                from_folders.setdefault(name, rel)
        elif "=" in line:
            name, _, rel = line.partition("=")
            name = name.strip()
            if name and rel.strip():
                explicit[name] = _normalize_rel(rel)

    return {**from_folders, **explicit}


def redirection_statistics(redirection_file: str | Path) -> RedirectionStatistics:
    stats = RedirectionStatistics()
    try:
        lines = _read_lines(Path(redirection_file))
    except (OSError, UnicodeDecodeError) as exc:
        _log.warning("Could not read %s for statistics: %s", redirection_file, exc)
        return stats

    stats.total_lines = len(lines)
    for raw in lines:
        line = raw.strip()
        if not line:
            stats.empty_lines += 1
        elif _is_comment(line):
            continue
        elif line.startswith(WILDCARD_PREFIX):
            stats.folder_declarations += 1
        elif "=" in line:
            stats.explicit_mappings += 1
    return stats
