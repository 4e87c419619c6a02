"""
File-backed profile services.

Each profile is a directory under the profiles root:

    <profiles>/<profile_id>/
        mods.json                    mod records keyed by sha
        classifications.json         classification tree nodes
        auto_detection_rules.json    auto-detection rules
        config.json                  nested settings, written through dotted keys
        mods/ previews/ thumbnails/ logs/

These are the concrete implementations of the contracts in
``service_contracts``; the migration modules never import this module.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Any, Iterable, Optional

from archive_probe import detect_archive_type
from service_contracts import (
    CATEGORY_PRIORITY,
    AutoDetectionRule,
    ClassificationNode,
    ModRecord,
    ProfileLayout,
    ProfileServices,
)

IMAGE_EXTENSIONS = frozenset({
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".svg", ".ico",
    ".avif", ".jxl", ".apng", ".tif", ".tiff",
})

MODS_FILENAME = "mods.json"
CLASSIFICATIONS_FILENAME = "classifications.json"
CONFIG_FILENAME = "config.json"

_log = logging.getLogger(__name__)


def _load_json(path: Path, default):
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        _log.warning("Could not load %s, starting empty: %s", path, e)
        return default


def _save_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")


# ── Mod catalog ───────────────────────────────────────────────────────


class JsonModCatalog:
    def __init__(self, path: Path):
        self.path = Path(path)
        self.records: dict[str, ModRecord] = {}
        for sha, rec in _load_json(self.path, {}).items():
            self.records[sha] = ModRecord(**rec)

    def _save(self):
        _save_json(self.path, {sha: asdict(rec) for sha, rec in self.records.items()})

    def get(self, sha: str) -> ModRecord | None:
        return self.records.get(sha)

    def get_or_create(self, sha: str, seed: dict[str, Any]) -> tuple[ModRecord, bool]:
        existing = self.records.get(sha)
        if existing is not None:
            return existing, False
        known = ModRecord.__dataclass_fields__
        record = ModRecord(sha=sha, **{k: v for k, v in seed.items() if k in known and k != "sha"})
        self.records[sha] = record
        self._save()
        return record, True

    def __len__(self) -> int:
        return len(self.records)


# ── Files ─────────────────────────────────────────────────────────────


class FileTransferService:
    """Copy-if-absent file operations. Returns False when the destination exists."""

    @staticmethod
    def _prepare(dst: Path, overwrite: bool) -> bool:
        if dst.exists() or dst.is_symlink():
            if not overwrite:
                return False
            dst.unlink()
        dst.parent.mkdir(parents=True, exist_ok=True)
        return True

    def copy_file(self, src: Path, dst: Path, overwrite: bool = False) -> bool:
        if not self._prepare(Path(dst), overwrite):
            return False
        shutil.copy2(src, dst)
        return True

    def move_file(self, src: Path, dst: Path, overwrite: bool = False) -> bool:
        if not self._prepare(Path(dst), overwrite):
            return False
        shutil.move(str(src), str(dst))
        return True

    def link_file(self, src: Path, dst: Path, overwrite: bool = False) -> bool:
        """Symlink ``dst`` to ``src``. Raises OSError where symlinks are refused."""
        if not self._prepare(Path(dst), overwrite):
            return False
        os.symlink(Path(src).resolve(), dst)
        return True

    def copy_directory(
        self,
        src: Path,
        dst: Path,
        extensions: Optional[Iterable[str]] = None,
        overwrite: bool = False,
    ) -> int:
        src, dst = Path(src), Path(dst)
        exts = frozenset(e.lower() for e in extensions) if extensions is not None else None
        copied = 0
        for f in sorted(src.rglob("*")):
            if not f.is_file():
                continue
            if exts is not None and f.suffix.lower() not in exts:
                continue
            if self.copy_file(f, dst / f.relative_to(src), overwrite=overwrite):
                copied += 1
        return copied


class ImageService:
    def supported_extensions(self) -> frozenset[str]:
        return IMAGE_EXTENSIONS


class ArchiveProbeService:
    def detect_type(self, path: Path) -> str | None:
        return detect_archive_type(path)


# ── Classification tree ───────────────────────────────────────────────


class JsonClassificationService:
    """Classification nodes persisted to one JSON file.

    ``create_node_if_absent`` checks and inserts under one lock, so two
    callers racing on the same id get exactly one node.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self.nodes: dict[str, ClassificationNode] = {}
        for rec in _load_json(self.path, []):
            node = ClassificationNode(**rec)
            self.nodes[node.id] = node

    def _save(self):
        _save_json(self.path, [asdict(n) for n in self.nodes.values()])

    def create_node_if_absent(
        self,
        node_id: str,
        name: str,
        parent_id: str | None = None,
        priority: int = CATEGORY_PRIORITY,
        description: str | None = None,
    ) -> ClassificationNode | None:
        with self._lock:
            if node_id in self.nodes:
                return None
            if parent_id is not None and parent_id not in self.nodes:
                raise ValueError(f"Parent node '{parent_id}' does not exist")
            node = ClassificationNode(
                id=node_id, name=name, parent_id=parent_id,
                priority=priority, description=description,
            )
            self.nodes[node_id] = node
            self._save()
            return node

    def node_exists(self, node_id: str) -> bool:
        return node_id in self.nodes

    def associate_thumbnail(self, node_id: str, thumbnail_path: str) -> bool:
        with self._lock:
            node = self.nodes.get(node_id)
            if node is None:
                return False
            node.thumbnail = thumbnail_path
            self._save()
            return True

    def list_nodes(self) -> list[ClassificationNode]:
        return list(self.nodes.values())

    def get_node_by_name(self, name: str) -> ClassificationNode | None:
        for node in self.nodes.values():
            if node.name == name:
                return node
        return None

    def children_of(self, node_id: str | None) -> list[ClassificationNode]:
        children = [n for n in self.nodes.values() if n.parent_id == node_id]
        return sorted(children, key=lambda n: (n.priority, n.name))

    def roots(self) -> list[ClassificationNode]:
        return self.children_of(None)


# ── Auto-detection rules ──────────────────────────────────────────────


class JsonAutoDetectionService:
    """Rules are keyed by name; adding a rule with a known name replaces it."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._rules: dict[str, AutoDetectionRule] = {}
        for rec in _load_json(self.path, []):
            rule = AutoDetectionRule(**rec)
            self._rules[rule.name] = rule

    @property
    def rules(self) -> list[AutoDetectionRule]:
        return list(self._rules.values())

    def add_rule(self, rule: AutoDetectionRule) -> None:
        self._rules[rule.name] = rule

    def save_rules(self, path: Path) -> bool:
        try:
            _save_json(Path(path), [asdict(r) for r in self._rules.values()])
        except OSError as e:
            _log.error("Could not save auto-detection rules to %s: %s", path, e)
            return False
        return True


# ── Configuration ─────────────────────────────────────────────────────


class JsonConfigurationService:
    """Nested settings addressed by dotted keys (``window.width``)."""

    def __init__(self, path: Path):
        self.path = Path(path)
        data = _load_json(self.path, {})
        self.data: dict[str, Any] = data if isinstance(data, dict) else {}

    def set_value(self, key: str, value: Any) -> None:
        *parents, leaf = key.split(".")
        node = self.data
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = value

    def get_value(self, key: str, default: Any = None) -> Any:
        node: Any = self.data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def save(self) -> None:
        _save_json(self.path, self.data)


# ── Provider ──────────────────────────────────────────────────────────


class ProfileServiceProvider:
    """Hands out one service bundle per profile directory under ``profiles_root``."""

    def __init__(self, profiles_root: str | Path):
        self.profiles_root = Path(profiles_root)
        self._bundles: dict[str, ProfileServices] = {}

    def profile_path(self, profile_id: str) -> Path:
        if not profile_id or profile_id in (".", "..") or any(c in profile_id for c in "/\\"):
            raise ValueError(f"Invalid profile id: {profile_id!r}")
        return self.profiles_root / profile_id

    def services_for(self, profile_id: str) -> ProfileServices:
        if profile_id in self._bundles:
            return self._bundles[profile_id]
        layout = ProfileLayout(self.profile_path(profile_id))
        bundle = ProfileServices(
            profile_id=profile_id,
            layout=layout,
            mod_catalog=JsonModCatalog(layout.root / MODS_FILENAME),
            files=FileTransferService(),
            classifications=JsonClassificationService(layout.root / CLASSIFICATIONS_FILENAME),
            auto_detection=JsonAutoDetectionService(layout.auto_detection_rules_path),
            configuration=JsonConfigurationService(layout.root / CONFIG_FILENAME),
            archives=ArchiveProbeService(),
        )
        self._bundles[profile_id] = bundle
        return bundle

    def list_profiles(self) -> list[str]:
        if not self.profiles_root.is_dir():
            return []
        return sorted(p.name for p in self.profiles_root.iterdir() if p.is_dir())
