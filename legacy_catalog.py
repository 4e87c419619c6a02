"""
Legacy mod index parser.

Each environment keeps its catalog in ``home/<env>/modsIndex/index_*.json``:

{
    "mods": {
        "<sha>": {
            "object": "Short",
            "type": "7z",
            "name": "Short Hair Recolor",
            "author": "SomeAuthor",
            "grading": "G",
            "explain": "free-form description",
            "tags": ["hair", "recolor"]
        }
    }
}

The same sha may appear in several index files; the first occurrence wins.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Callable, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

INDEX_GLOB = "index_*.json"

_log = logging.getLogger(__name__)


class LegacyModEntry(BaseModel):
    """One row of a legacy mod index file."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    sha: str
    object: str = "Unknown"
    archive_type: str = Field(default="7z", alias="type")
    name: str = "Unknown"
    author: str = ""
    grading: str = "G"
    description: str = Field(default="", alias="explain")
    tags: list[str] = Field(default_factory=list)

    @field_validator("sha")
    @classmethod
    def _check_sha(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("empty content hash")
        if any(sep in v for sep in ("/", "\\")) or v in (".", ".."):
            raise ValueError(f"content hash {v!r} is not a valid file name")
        return v

    @field_validator("object", "name", "archive_type", "author", "grading", "description", mode="before")
    @classmethod
    def _none_to_default(cls, v, info):
        if v is None:
            return cls.model_fields[info.field_name].default
        return str(v)

    @field_validator("archive_type")
    @classmethod
    def _normalize_type(cls, v: str) -> str:
        # Becomes a file extension; anything else is left for header probing
        v = v.strip().lstrip(".").lower()
        return v if re.fullmatch(r"[a-z0-9]+", v) else ""

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [t.strip() for t in v.split(",") if t.strip()]
        return v

    def seed_fields(self) -> dict:
        """Fields used to seed a new mod record."""
        return {
            "name": self.name,
            "author": self.author,
            "description": self.description,
            "category": self.object,
            "archive_type": self.archive_type,
            "grading": self.grading,
            "tags": list(self.tags),
        }


def iter_index_files(index_dir: Path) -> list[Path]:
    return sorted(p for p in Path(index_dir).glob(INDEX_GLOB) if p.is_file())


def _iter_raw_entries(index_file: Path) -> Iterator[tuple[str, object]]:
    doc = json.loads(index_file.read_text(encoding="utf-8"))
    mods = doc.get("mods") if isinstance(doc, dict) else None
    if not isinstance(mods, dict):
        raise ValueError("no 'mods' object")
    yield from mods.items()


def parse_catalog(
    index_dir: str | Path,
    warn: Optional[Callable[[str], None]] = None,
) -> list[LegacyModEntry]:
    """Parse every index file under ``index_dir`` into deduplicated entries.

    Missing directories, unreadable files and invalid entries are reported
    through ``warn`` (and the module logger) and skipped.
    """

    def _warn(msg: str) -> None:
        _log.warning(msg)
        if warn:
            warn(msg)

    index_dir = Path(index_dir)
    entries: list[LegacyModEntry] = []
    if not index_dir.is_dir():
        _warn(f"Mod index directory not found: {index_dir}")
        return entries

    seen: set[str] = set()
    index_files = iter_index_files(index_dir)
    _log.info("Found %d mod index file(s) in %s", len(index_files), index_dir)

    for index_file in index_files:
        try:
            raw_entries = list(_iter_raw_entries(index_file))
        except (OSError, ValueError) as exc:
            _warn(f"Failed to parse {index_file.name}: {exc}")
            continue

        for sha, data in raw_entries:
            if not isinstance(data, dict):
                _warn(f"{index_file.name}: entry {sha!r} is not an object, skipping")
                continue
            try:
                entry = LegacyModEntry.model_validate({**data, "sha": sha})
            except ValidationError as exc:
                _warn(f"{index_file.name}: invalid entry {sha!r}: {exc.errors()[0]['msg']}")
                continue
            if entry.sha in seen:
                continue
            seen.add(entry.sha)
            entries.append(entry)

        _log.info("Parsed %s: %d mod(s)", index_file.name, len(raw_entries))

    _log.info("Parsed total: %d unique mod(s)", len(entries))
    return entries
