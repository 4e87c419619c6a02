"""
Migration pipeline stages.

Each stage is a small object with a ``name``, an ``enabled(ctx)`` check and an
``execute(ctx)`` method.  The orchestrator runs them in a fixed order; later
stages read what earlier ones put on the ``MigrationContext``:

    Analyze          -> ctx.analysis, ctx.environment_name/path, ctx.configuration
    Metadata         -> ctx.mod_entries (+ mod records)
    Archives         -> <profile>/mods/<sha>.<ext>
    Classifications  -> classification nodes + auto-detection rules
    Previews         -> <profile>/previews, <profile>/thumbnails, node thumbnails
    Configuration    -> profile settings

Item-level failures become warnings on the context; a stage only raises for
structural problems (``MigrationError``) or cancellation.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Protocol

from legacy_catalog import LegacyModEntry, parse_catalog
from legacy_classification import (
    REDIRECTION_FILENAME,
    parse_categories,
    parse_redirections,
    redirection_statistics,
)
from legacy_config import parse_legacy_configuration
from migration_models import ArchiveMode, MigrationContext, MigrationError, StageName
from service_contracts import (
    CATEGORY_PRIORITY,
    OBJECT_PRIORITY,
    RULE_PRIORITY,
    AutoDetectionRule,
)
from source_analyzer import analyze_source, environment_dir, iter_images, mods_dir, preview_dir

DEFAULT_ARCHIVE_EXTENSION = "zip"
MIGRATED_FROM = "legacy"
THUMBNAILS_KEY = "thumbnails"

_log = logging.getLogger(__name__)


class Stage(Protocol):
    name: StageName
    start: int
    end: int

    def enabled(self, ctx: MigrationContext) -> bool: ...

    def execute(self, ctx: MigrationContext) -> None: ...


def _percent(start: int, end: int, done: int, total: int) -> int:
    if total <= 0:
        return end
    return start + (end - start) * done // total


# ── Analyze ───────────────────────────────────────────────────────────


class AnalyzeStage:
    name = StageName.ANALYZE
    start, end = 0, 5

    def enabled(self, ctx: MigrationContext) -> bool:
        return True

    def execute(self, ctx: MigrationContext) -> None:
        analysis = analyze_source(ctx.source_path, ctx.image_extensions)
        ctx.analysis = analysis
        if not analysis.is_valid:
            raise MigrationError("; ".join(analysis.errors) or "Invalid legacy installation")
        for w in analysis.warnings:
            ctx.warn(w)

        env = ctx.options.environment_name or analysis.active_environment
        if ctx.options.environment_name and analysis.environments and env not in analysis.environments:
            raise MigrationError(
                f"Environment '{env}' not found; available: {', '.join(analysis.environments)}"
            )
        ctx.environment_name = env
        ctx.environment_path = environment_dir(ctx.source_path, env)

        if env == analysis.active_environment:
            ctx.configuration = analysis.configuration
        else:
            ctx.configuration = parse_legacy_configuration(ctx.source_path, env, warn=ctx.warn)

        ctx.log.info(f"Source: {ctx.source_path}")
        ctx.log.info(f"Environment: {env}")
        ctx.log.info(f"Analysis: {analysis.summary()}")


# ── Metadata ──────────────────────────────────────────────────────────


class MetadataStage:
    """Load catalog entries; create mod records for hashes not yet known."""

    name = StageName.METADATA
    start, end = 5, 25

    def enabled(self, ctx: MigrationContext) -> bool:
        # entries are needed by the archive stage even when records are not written
        return ctx.options.migrate_metadata or ctx.options.migrate_archives

    def execute(self, ctx: MigrationContext) -> None:
        index_dir = ctx.environment_path / "modsIndex"
        ctx.mod_entries = parse_catalog(index_dir, warn=ctx.warn)
        ctx.log.info(f"Loaded {len(ctx.mod_entries)} catalog entr(ies) from {index_dir}")
        if not ctx.options.migrate_metadata:
            return

        counts = ctx.result.counts(self.name)
        catalog = ctx.services.mod_catalog
        total = len(ctx.mod_entries)
        for i, entry in enumerate(ctx.mod_entries, 1):
            ctx.check_cancelled()
            try:
                _, created = catalog.get_or_create(entry.sha, entry.seed_fields())
            except (OSError, ValueError, TypeError) as exc:
                counts.failed += 1
                ctx.warn(f"Mod {entry.sha}: could not create record: {exc}")
            else:
                if created:
                    counts.created += 1
                else:
                    counts.skipped += 1
            ctx.report(self.name, _percent(self.start, self.end, i, total), entry.sha)


# ── Archives ──────────────────────────────────────────────────────────


def find_source_archive(source_mods: Path, sha: str) -> Path | None:
    """Legacy ``<sha>`` first, then any ``<sha>.<ext>``."""
    bare = source_mods / sha
    if bare.is_file():
        return bare
    for candidate in sorted(source_mods.glob(f"{sha}.*")):
        if candidate.is_file():
            return candidate
    return None


class ArchiveStage:
    name = StageName.ARCHIVES
    start, end = 25, 60

    def enabled(self, ctx: MigrationContext) -> bool:
        return ctx.options.migrate_archives

    def _extension(self, ctx: MigrationContext, entry: LegacyModEntry, source: Path) -> str:
        if source.suffix:
            return source.suffix.lstrip(".").lower()
        if entry.archive_type:
            return entry.archive_type
        return ctx.services.archives.detect_type(source) or DEFAULT_ARCHIVE_EXTENSION

    def _transfer(self, ctx: MigrationContext, source: Path, dest: Path) -> bool:
        files = ctx.services.files
        mode = ctx.options.archive_mode
        if mode is ArchiveMode.MOVE:
            return files.move_file(source, dest)
        if mode is ArchiveMode.LINK:
            try:
                return files.link_file(source, dest)
            except OSError as exc:
                ctx.warn(f"Could not link {source.name} ({exc}); copying instead")
        return files.copy_file(source, dest)

    def execute(self, ctx: MigrationContext) -> None:
        counts = ctx.result.counts(self.name)
        source_mods = mods_dir(ctx.source_path)
        dest_dir = ctx.services.layout.archives_dir
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise MigrationError(f"Cannot create archive directory {dest_dir}: {exc}") from exc

        total = len(ctx.mod_entries)
        for i, entry in enumerate(ctx.mod_entries, 1):
            ctx.check_cancelled()
            self._migrate_one(ctx, entry, source_mods, dest_dir, counts)
            ctx.report(self.name, _percent(self.start, self.end, i, total), entry.sha)

    def _migrate_one(self, ctx, entry, source_mods, dest_dir, counts) -> None:
        # already migrated, possibly moved away from the source on an earlier run
        if any(p.is_file() for p in dest_dir.glob(f"{entry.sha}.*")):
            counts.skipped += 1
            return

        source = find_source_archive(source_mods, entry.sha)
        if source is None:
            counts.failed += 1
            ctx.warn(f"Archive not found for mod {entry.sha} ({entry.name})")
            return

        try:
            dest = dest_dir / f"{entry.sha}.{self._extension(ctx, entry, source)}"
            if self._transfer(ctx, source, dest):
                counts.copied += 1
            else:
                counts.skipped += 1
        except OSError as exc:
            counts.failed += 1
            ctx.warn(f"Failed to transfer archive {entry.sha}: {exc}")


# ── Classifications ───────────────────────────────────────────────────


class ClassificationStage:
    """Category nodes, their object children and one rule per object.

    Nodes are created through ``create_node_if_absent`` so a rerun finds the
    existing ids and creates nothing.  Rules are collected on the
    auto-detection service and written once at the end.
    """

    name = StageName.CLASSIFICATIONS
    start, end = 60, 70

    def enabled(self, ctx: MigrationContext) -> bool:
        return ctx.options.migrate_classifications

    def _create(self, ctx, counts, node_id, parent_id, priority, description) -> bool:
        try:
            node = ctx.services.classifications.create_node_if_absent(
                node_id, node_id, parent_id=parent_id, priority=priority, description=description,
            )
        except (OSError, ValueError) as exc:
            counts.failed += 1
            ctx.warn(f"Could not create classification node '{node_id}': {exc}")
            return False
        if node is None:
            counts.skipped += 1
        else:
            counts.created += 1
        return True

    def execute(self, ctx: MigrationContext) -> None:
        counts = ctx.result.counts(self.name)
        groupings = parse_categories(ctx.environment_path / "classification", warn=ctx.warn)
        auto_detection = ctx.services.auto_detection
        rule_count = 0

        total = len(groupings)
        for i, (category, objects) in enumerate(groupings.items(), 1):
            ctx.check_cancelled()
            if self._create(ctx, counts, category, None, CATEGORY_PRIORITY, f"Category: {category}"):
                for obj in objects:
                    if not self._create(ctx, counts, obj, category, OBJECT_PRIORITY, f"Object: {obj}"):
                        continue
                    auto_detection.add_rule(AutoDetectionRule(
                        name=f"{obj} ({category})",
                        pattern=f"*{obj}*",
                        category=obj,
                        priority=RULE_PRIORITY,
                    ))
                    rule_count += 1
            ctx.report(self.name, _percent(self.start, self.end, i, total), category)

        if rule_count:
            path = ctx.services.layout.auto_detection_rules_path
            if auto_detection.save_rules(path):
                ctx.log.info(f"Saved {rule_count} auto-detection rule(s) to {path.name}")
            else:
                ctx.warn(f"Failed to save auto-detection rules to {path}")


# ── Previews ──────────────────────────────────────────────────────────


class PreviewStage:
    """Preview images, the environment's thumbnail tree and thumbnail links.

    Preview files count under this stage.  Thumbnail files and node
    associations count under ``"thumbnails"``: ``copied``/``skipped`` are
    files, ``created``/``failed`` are associations.
    """

    name = StageName.PREVIEWS
    start, end = 70, 90

    def enabled(self, ctx: MigrationContext) -> bool:
        return ctx.options.migrate_previews

    def _copy_images(self, ctx, src_root: Path, dst_root: Path, counts, start: int, end: int) -> None:
        images = list(iter_images(src_root, ctx.image_extensions))
        for i, image in enumerate(images, 1):
            ctx.check_cancelled()
            rel = image.relative_to(src_root)
            try:
                if ctx.services.files.copy_file(image, dst_root / rel):
                    counts.copied += 1
                else:
                    counts.skipped += 1
            except OSError as exc:
                counts.failed += 1
                ctx.warn(f"Failed to copy image {rel.as_posix()}: {exc}")
            ctx.report(self.name, _percent(start, end, i, len(images)), rel.as_posix())

    def execute(self, ctx: MigrationContext) -> None:
        layout = ctx.services.layout
        thumb_counts = ctx.result.counts(THUMBNAILS_KEY)

        self._copy_images(
            ctx, preview_dir(ctx.source_path), layout.previews_dir,
            ctx.result.counts(self.name), self.start, 82,
        )

        thumbnail_src = ctx.environment_path / "thumbnail"
        self._copy_images(ctx, thumbnail_src, layout.thumbnails_dir, thumb_counts, 82, 86)

        redirection_file = thumbnail_src / REDIRECTION_FILENAME
        if not redirection_file.is_file():
            ctx.log.info("No thumbnail redirection file; skipping associations")
            return

        ctx.log.info(f"Redirection file: {redirection_statistics(redirection_file)}")
        mapping = parse_redirections(redirection_file, ctx.image_extensions, warn=ctx.warn)
        classifications = ctx.services.classifications
        for i, (node_id, rel) in enumerate(sorted(mapping.items()), 1):
            ctx.check_cancelled()
            if not classifications.node_exists(node_id):
                thumb_counts.failed += 1
                ctx.warn(f"Thumbnail for '{node_id}' skipped: no classification node with that name")
            elif not (layout.thumbnails_dir / rel).is_file():
                thumb_counts.failed += 1
                ctx.warn(f"Thumbnail for '{node_id}' skipped: {rel} was not migrated")
            elif classifications.associate_thumbnail(node_id, f"{THUMBNAILS_KEY}/{rel}"):
                thumb_counts.created += 1
            else:
                thumb_counts.failed += 1
                ctx.warn(f"Could not associate thumbnail {rel} with '{node_id}'")
            ctx.report(self.name, _percent(86, self.end, i, len(mapping)), node_id)


# ── Configuration ─────────────────────────────────────────────────────


def game_work_directory(game_path: str) -> str:
    pure = PureWindowsPath(game_path) if "\\" in game_path else PurePosixPath(game_path)
    return str(pure.parent)


class ConfigurationStage:
    name = StageName.CONFIGURATION
    start, end = 90, 100

    def enabled(self, ctx: MigrationContext) -> bool:
        return ctx.options.migrate_configuration

    def _values(self, ctx: MigrationContext) -> dict:
        values = {
            "migration.migrated_from": MIGRATED_FROM,
            "migration.migrated_at": datetime.now().isoformat(timespec="seconds"),
        }
        cfg = ctx.configuration
        if cfg is None:
            ctx.log.info("No legacy configuration; writing provenance only")
            return values

        if cfg.style_theme:
            values["appearance.style_theme"] = cfg.style_theme
        if cfg.uuid:
            values["install.uuid"] = cfg.uuid
        if cfg.window is not None:
            for key in ("x", "y", "width", "height"):
                values[f"window.{key}"] = getattr(cfg.window, key)
        if cfg.ocd is not None:
            values["ocd.window_name"] = cfg.ocd.window_name
            values["ocd.width"] = cfg.ocd.width
            values["ocd.height"] = cfg.ocd.height
        env = ctx.environment_name
        if cfg.game_path:
            values["game.work_directory"] = game_work_directory(cfg.game_path)
            values[f"environments.{env}.game_path"] = cfg.game_path
        if cfg.game_launch_argument:
            values[f"environments.{env}.launch_arguments"] = cfg.game_launch_argument
        return values

    def execute(self, ctx: MigrationContext) -> None:
        counts = ctx.result.counts(self.name)
        config = ctx.services.configuration
        values = self._values(ctx)
        for key, value in values.items():
            try:
                config.set_value(key, value)
            except (ValueError, TypeError) as exc:
                counts.failed += 1
                ctx.warn(f"Could not set {key}: {exc}")
            else:
                counts.copied += 1
        try:
            config.save()
        except OSError as exc:
            ctx.warn(f"Could not save migrated configuration: {exc}")
        ctx.report(self.name, self.end, "")


def default_stages() -> list[Stage]:
    return [
        AnalyzeStage(),
        MetadataStage(),
        ArchiveStage(),
        ClassificationStage(),
        PreviewStage(),
        ConfigurationStage(),
    ]
