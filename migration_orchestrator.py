"""
Migration orchestrator - runs the stage pipeline against one profile.

Workflow:
    1. analyze(source) to check the legacy tree and show the user what is there
    2. migrate(options) to run Analyze -> Metadata -> Archives ->
       Classifications -> Previews -> Configuration
    3. validate(profile_id) to compare what landed in the profile with the
       source counts recorded when it was migrated
"""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

from migration_models import (
    AnalysisResult,
    MigrationCancelled,
    MigrationContext,
    MigrationError,
    MigrationLog,
    MigrationOptions,
    MigrationResult,
    ProgressCallback,
    ValidationResult,
)
from migration_stages import Stage, default_stages
from service_contracts import ImageService, ProfileLayout, ServiceProvider
from source_analyzer import analyze_source, iter_images

_log = logging.getLogger(__name__)


class MigrationOrchestrator:
    def __init__(
        self,
        provider: ServiceProvider,
        image_service: ImageService,
        stages: Optional[Sequence[Stage]] = None,
    ):
        self.provider = provider
        self.image_service = image_service
        self.stages: list[Stage] = list(stages) if stages is not None else default_stages()
        self.last_analysis: AnalysisResult | None = None

    # ── Analyze ───────────────────────────────────────────────────────

    def analyze(self, source_path: str | Path) -> AnalysisResult:
        self.last_analysis = analyze_source(source_path, self.image_service.supported_extensions())
        return self.last_analysis

    # ── Migrate ───────────────────────────────────────────────────────

    def _open_log(self, options: MigrationOptions, started: datetime):
        services = self.provider.services_for(options.profile_id)
        stamp = started.strftime("%Y%m%d_%H%M%S")
        log_path = services.layout.logs_dir / f"migration_{stamp}.log"
        return services, MigrationLog(log_path, f"{options.profile_id}.{stamp}")

    def migrate(
        self,
        options: MigrationOptions,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> MigrationResult:
        started = datetime.now()
        try:
            services, log = self._open_log(options, started)
        except (OSError, ValueError) as e:
            _log.error("Cannot open profile '%s' for migration: %s", options.profile_id, e)
            return MigrationResult(
                success=False,
                error=f"Destination profile is not writable: {e}",
                started_at=started,
                finished_at=datetime.now(),
            )

        ctx = MigrationContext(
            options=options,
            services=services,
            image_extensions=self.image_service.supported_extensions(),
            log=log,
            progress=progress,
            cancel_event=cancel_event,
        )
        result = ctx.result
        result.started_at = started
        result.log_file = log.path

        log.info(f"=== Migration started: {options.source_path} -> profile '{options.profile_id}' ===")
        log.info(f"Archive mode: {options.archive_mode.value}")
        try:
            for stage in self.stages:
                if not stage.enabled(ctx):
                    log.info(f"--- {stage.name.value}: skipped ---")
                    continue
                ctx.check_cancelled()
                ctx.report(stage.name, stage.start, "")
                log.info(f"--- {stage.name.value}: started ---")
                t0 = time.monotonic()
                stage.execute(ctx)
                counts = result.stages.get(stage.name.value)
                log.info(
                    f"--- {stage.name.value}: done in {time.monotonic() - t0:.2f}s"
                    + (f" ({counts}) ---" if counts else " ---")
                )
            result.success = True
        except MigrationCancelled:
            result.cancelled = True
            log.warning("Migration cancelled by user")
        except MigrationError as e:
            result.error = str(e)
            log.error(f"Migration failed: {e}")
        except Exception as e:
            result.error = f"Unexpected error: {e}"
            log.error(f"Migration failed: {e}")
            _log.exception("Unexpected error during migration")
        finally:
            result.finished_at = datetime.now()
            if ctx.analysis is not None and ctx.analysis.is_valid:
                self.last_analysis = ctx.analysis
                self._save_baseline(services.layout, ctx.analysis, log)
            log.info(
                f"=== Migration finished: success={result.success} cancelled={result.cancelled} "
                f"warnings={result.warning_count} duration={result.duration_seconds:.2f}s ==="
            )
            log.close()

        return result

    # ── Validate ──────────────────────────────────────────────────────

    @staticmethod
    def _baseline_counts(analysis: AnalysisResult) -> dict[str, int]:
        return {
            "archives": analysis.mod_count,
            "previews": analysis.preview_count,
            "categories": analysis.category_count,
        }

    def _save_baseline(self, layout: ProfileLayout, analysis: AnalysisResult, log: MigrationLog) -> None:
        data = {
            "source_path": str(analysis.source_path),
            "environment": analysis.active_environment,
            "recorded_at": datetime.now().isoformat(timespec="seconds"),
            "expected": self._baseline_counts(analysis),
        }
        try:
            layout.analysis_baseline_path.write_text(
                json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8"
            )
        except OSError as e:
            log.warning(f"Could not record analysis baseline: {e}")

    @staticmethod
    def _load_baseline(layout: ProfileLayout) -> dict[str, int] | None:
        path = layout.analysis_baseline_path
        if not path.exists():
            return None
        try:
            expected = json.loads(path.read_text(encoding="utf-8"))["expected"]
            return {key: int(expected[key]) for key in ("archives", "previews", "categories")}
        except (OSError, ValueError, KeyError, TypeError) as e:
            _log.warning("Ignoring unreadable analysis baseline %s: %s", path, e)
            return None

    def validate(self, profile_id: str) -> ValidationResult:
        """Compare the profile against the counts recorded when it was migrated.

        Falls back to the last in-memory analysis for profiles migrated
        before baselines were recorded.
        """
        services = self.provider.services_for(profile_id)
        layout = services.layout
        extensions = self.image_service.supported_extensions()

        expected = self._load_baseline(layout)
        if expected is None:
            analysis = self.last_analysis
            if analysis is None or not analysis.is_valid:
                return ValidationResult(
                    profile_id, False, issues=["No valid analysis to compare against; analyze the source first"]
                )
            expected = self._baseline_counts(analysis)

        archives = layout.archives_dir
        actual = {
            "archives": sum(1 for p in archives.iterdir() if p.is_file()) if archives.is_dir() else 0,
            "previews": sum(1 for _ in iter_images(layout.previews_dir, extensions)),
            "categories": sum(1 for n in services.classifications.list_nodes() if n.parent_id is None),
        }
        issues = [
            f"Expected {expected[key]} {key}, found {actual[key]}"
            for key in expected
            if actual[key] < expected[key]
        ]
        for issue in issues:
            _log.warning("Validation of profile '%s': %s", profile_id, issue)
        return ValidationResult(profile_id, not issues, expected, actual, issues)
