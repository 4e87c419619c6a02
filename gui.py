"""
Skin Mod Manager - Legacy Migration GUI (PySide6)
"""

import logging
import os
import sys
import threading
from pathlib import Path
from typing import Optional

from PySide6.QtCore import QThread, Signal, QSettings
from PySide6.QtGui import QFont
from PySide6.QtWidgets import (
    QApplication,
    QCheckBox,
    QComboBox,
    QFileDialog,
    QFormLayout,
    QGroupBox,
    QHBoxLayout,
    QLabel,
    QMainWindow,
    QMessageBox,
    QPlainTextEdit,
    QProgressBar,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from migration_models import ArchiveMode, MigrationOptions, MigrationProgress, MigrationResult
from migration_orchestrator import MigrationOrchestrator
from profile_services import ImageService, ProfileServiceProvider
from source_analyzer import auto_detect_source

DEFAULT_PROFILE = "Default"


# ── Worker Thread ─────────────────────────────────────────────────────

class WorkerThread(QThread):
    """Run a blocking operation off the main thread."""

    progress_signal = Signal(int, str)  # percent, label
    finished_signal = Signal(object)  # return value
    failed_signal = Signal(str)

    def __init__(self, func, *args, **kwargs):
        super().__init__()
        self.func = func
        self.args = args
        self.kwargs = kwargs

    def emit_progress(self, p: MigrationProgress):
        label = p.stage.value + (f": {p.current_item}" if p.current_item else "")
        self.progress_signal.emit(p.percent, label)

    def run(self):
        try:
            result = self.func(*self.args, **self.kwargs)
        except Exception as e:
            logging.getLogger(__name__).exception("Background operation failed")
            self.failed_signal.emit(str(e))
            return
        self.finished_signal.emit(result)


# ── Main Window ───────────────────────────────────────────────────────

class MigrationWindow(QMainWindow):
    # Signal used to safely append log messages from background threads.
    # Qt automatically queues cross-thread signal emissions to the main thread.
    _log_message = Signal(str)

    def __init__(
        self,
        logger: logging.Logger | None = None,
        *,
        profiles_dir: str | Path,
        settings_org: str = "SkinModManager",
        settings_app: str = "LegacyMigration",
        persist_settings: bool = True,
    ):
        super().__init__()
        self._logger = logger or logging.getLogger("skinmodmanager")
        self.setWindowTitle("Skin Mod Manager - Legacy Migration")
        self.setMinimumSize(760, 560)

        self.provider = ProfileServiceProvider(profiles_dir)
        self.image_service = ImageService()
        self.orchestrator = MigrationOrchestrator(self.provider, self.image_service)

        # Settings persistence
        self._persist_settings = persist_settings
        self.settings = QSettings(settings_org, settings_app)
        self.source_dir = self.settings.value("source_dir", "", type=str)
        self.profile_id = self.settings.value("profile_id", DEFAULT_PROFILE, type=str)

        self.worker: Optional[WorkerThread] = None
        self.cancel_event: Optional[threading.Event] = None

        self._build_ui()
        self._log_message.connect(self.log_text.appendPlainText)
        self._set_busy(False)
        if self.source_dir:
            self._analyze()

    def _build_ui(self):
        central = QWidget()
        self.setCentralWidget(central)
        main_layout = QVBoxLayout(central)

        # ── Source row ────────────────────────────────────────────────
        source_group = QGroupBox("Legacy Installation")
        source_layout = QHBoxLayout(source_group)
        self.source_label = QLabel(self.source_dir or "(not set)")
        self.source_label.setWordWrap(True)
        source_layout.addWidget(self.source_label, 1)

        self.browse_btn = QPushButton("Browse...")
        self.browse_btn.clicked.connect(self._browse_source)
        source_layout.addWidget(self.browse_btn)

        self.detect_btn = QPushButton("Auto-detect")
        self.detect_btn.clicked.connect(self._auto_detect)
        source_layout.addWidget(self.detect_btn)

        self.analyze_btn = QPushButton("Analyze")
        self.analyze_btn.clicked.connect(self._analyze)
        source_layout.addWidget(self.analyze_btn)
        main_layout.addWidget(source_group)

        # ── Analysis summary ──────────────────────────────────────────
        self.info_box = QGroupBox("Analysis")
        info_form = QFormLayout(self.info_box)
        self._info_status = QLabel("Not analyzed")
        self._info_mods = QLabel()
        self._info_previews = QLabel()
        self._info_categories = QLabel()
        info_form.addRow("Status:", self._info_status)
        info_form.addRow("Mods:", self._info_mods)
        info_form.addRow("Previews:", self._info_previews)
        info_form.addRow("Categories:", self._info_categories)
        main_layout.addWidget(self.info_box)

        # ── Options ───────────────────────────────────────────────────
        options_group = QGroupBox("Options")
        options_form = QFormLayout(options_group)

        self.profile_combo = QComboBox()
        self.profile_combo.setEditable(True)
        self.profile_combo.addItems(self.provider.list_profiles() or [DEFAULT_PROFILE])
        self.profile_combo.setCurrentText(self.profile_id)
        options_form.addRow("Target profile:", self.profile_combo)

        self.env_combo = QComboBox()
        options_form.addRow("Environment:", self.env_combo)

        self.mode_combo = QComboBox()
        for mode in ArchiveMode:
            self.mode_combo.addItem(mode.value.capitalize(), userData=mode)
        options_form.addRow("Archives:", self.mode_combo)

        checks = QHBoxLayout()
        self.stage_checks: dict[str, QCheckBox] = {}
        for key in ("metadata", "archives", "classifications", "previews", "configuration"):
            box = QCheckBox(key.capitalize())
            box.setChecked(True)
            self.stage_checks[key] = box
            checks.addWidget(box)
        checks.addStretch()
        options_form.addRow("Migrate:", checks)
        main_layout.addWidget(options_group)

        # ── Actions ───────────────────────────────────────────────────
        action_row = QHBoxLayout()
        self.migrate_btn = QPushButton("Start Migration")
        self.migrate_btn.clicked.connect(self._start_migration)
        action_row.addWidget(self.migrate_btn)

        self.cancel_btn = QPushButton("Cancel")
        self.cancel_btn.clicked.connect(self._cancel)
        action_row.addWidget(self.cancel_btn)

        self.validate_btn = QPushButton("Validate Profile")
        self.validate_btn.clicked.connect(self._validate)
        action_row.addWidget(self.validate_btn)

        action_row.addStretch()
        self.status_label = QLabel()
        action_row.addWidget(self.status_label)
        main_layout.addLayout(action_row)

        self.progress = QProgressBar()
        self.progress.setRange(0, 100)
        main_layout.addWidget(self.progress)

        # ── Log ───────────────────────────────────────────────────────
        main_layout.addWidget(QLabel("<b>Log</b>"))
        self.log_text = QPlainTextEdit()
        self.log_text.setReadOnly(True)
        self.log_text.setFont(QFont("Consolas", 9))
        self.log_text.setMaximumBlockCount(5000)
        main_layout.addWidget(self.log_text, 1)

    # ── Logging ───────────────────────────────────────────────────────

    def _append_log(self, msg: str):
        self._logger.info(msg)
        self._log_message.emit(msg)

    # ── Source ────────────────────────────────────────────────────────

    def _set_source(self, path: str):
        self.source_dir = path
        self.source_label.setText(path or "(not set)")
        if self._persist_settings:
            self.settings.setValue("source_dir", path)

    def _browse_source(self):
        d = QFileDialog.getExistingDirectory(self, "Select Legacy Installation", self.source_dir)
        if d:
            self._set_source(d)
            self._analyze()

    def _auto_detect(self):
        found = auto_detect_source(self.image_service.supported_extensions())
        if found is None:
            QMessageBox.information(self, "Not Found", "No legacy installation found in the usual places.")
            return
        self._append_log(f"Found legacy installation at {found}")
        self._set_source(str(found))
        self._analyze()

    def _analyze(self):
        if not self.source_dir:
            return
        analysis = self.orchestrator.analyze(self.source_dir)
        self.env_combo.clear()
        if not analysis.is_valid:
            self._info_status.setText("Invalid")
            for label in (self._info_mods, self._info_previews, self._info_categories):
                label.clear()
            for err in analysis.errors:
                self._append_log(f"Error: {err}")
            self._set_busy(False)
            return

        self._info_status.setText(f"Valid, environment '{analysis.active_environment}'")
        self._info_mods.setText(f"{analysis.mod_count}  ({analysis.archive_size})")
        self._info_previews.setText(f"{analysis.preview_count}  ({analysis.preview_size})")
        self._info_categories.setText(str(analysis.category_count))
        self.env_combo.addItems(list(analysis.environments) or [analysis.active_environment])
        self.env_combo.setCurrentText(analysis.active_environment)
        for w in analysis.warnings:
            self._append_log(f"Warning: {w}")
        self._append_log(f"Analysis: {analysis.summary()}")
        self._set_busy(False)

    # ── Migration ─────────────────────────────────────────────────────

    def _options(self) -> MigrationOptions:
        checked = {key: box.isChecked() for key, box in self.stage_checks.items()}
        return MigrationOptions(
            source_path=Path(self.source_dir),
            profile_id=self.profile_combo.currentText().strip(),
            archive_mode=self.mode_combo.currentData(),
            migrate_metadata=checked["metadata"],
            migrate_archives=checked["archives"],
            migrate_classifications=checked["classifications"],
            migrate_previews=checked["previews"],
            migrate_configuration=checked["configuration"],
            environment_name=self.env_combo.currentText() or None,
        )

    def _start_migration(self):
        analysis = self.orchestrator.last_analysis
        if analysis is None or not analysis.is_valid:
            QMessageBox.warning(self, "Cannot Migrate", "Analyze a valid legacy installation first.")
            return
        options = self._options()
        if not options.profile_id:
            QMessageBox.warning(self, "Cannot Migrate", "Enter a target profile name.")
            return

        if options.archive_mode is ArchiveMode.MOVE:
            reply = QMessageBox.question(
                self,
                "Move Archives",
                "Move mode removes each archive from the legacy installation once it is transferred.\n\nContinue?",
                QMessageBox.Yes | QMessageBox.No,
            )
            if reply != QMessageBox.Yes:
                return

        if self._persist_settings:
            self.settings.setValue("profile_id", options.profile_id)

        self._append_log(f"Migrating into profile '{options.profile_id}' ({options.archive_mode.value})")
        self.cancel_event = threading.Event()
        self.worker = WorkerThread(self.orchestrator.migrate, options)
        self.worker.kwargs.update(progress=self.worker.emit_progress, cancel_event=self.cancel_event)
        self.worker.progress_signal.connect(self._on_progress)
        self.worker.finished_signal.connect(self._on_migration_finished)
        self.worker.failed_signal.connect(self._on_worker_failed)
        self._set_busy(True)
        self.worker.start()

    def _cancel(self):
        if self.cancel_event is not None:
            self._append_log("Cancelling after the current item...")
            self.cancel_event.set()

    def _on_progress(self, percent: int, label: str):
        self.progress.setValue(percent)
        self.status_label.setText(label)

    def _on_migration_finished(self, result: MigrationResult):
        self._set_busy(False)
        for name, counts in result.stages.items():
            self._append_log(f"{name}: {counts}")
        for w in result.warnings:
            self._append_log(f"Warning: {w}")
        if result.warning_count > len(result.warnings):
            self._append_log(f"... {result.warning_count - len(result.warnings)} more warning(s) in {result.log_file}")

        if result.success:
            self._append_log(f"✅ Migration complete in {result.duration_seconds:.1f}s")
            self.progress.setValue(100)
        elif result.cancelled:
            self._append_log("Migration cancelled; rerun to pick up where it stopped")
        else:
            self._append_log(f"❌ {result.error}")
            QMessageBox.warning(self, "Migration Failed", result.error or "Unknown error")

    def _on_worker_failed(self, message: str):
        self._set_busy(False)
        self._append_log(f"❌ {message}")
        QMessageBox.warning(self, "Operation Failed", message)

    def _validate(self):
        profile_id = self.profile_combo.currentText().strip()
        if not profile_id:
            return
        validation = self.orchestrator.validate(profile_id)
        for key in validation.expected:
            self._append_log(f"{key}: expected {validation.expected[key]}, found {validation.actual[key]}")
        if validation.is_valid:
            self._append_log(f"✅ Profile '{profile_id}' matches the legacy installation")
        else:
            for issue in validation.issues:
                self._append_log(f"Issue: {issue}")
            QMessageBox.information(self, "Validation", "\n".join(validation.issues))

    def _set_busy(self, busy: bool):
        has_analysis = bool(self.orchestrator.last_analysis and self.orchestrator.last_analysis.is_valid)
        self.migrate_btn.setEnabled(not busy and has_analysis)
        self.validate_btn.setEnabled(not busy and has_analysis)
        self.cancel_btn.setEnabled(busy)
        for w in (self.browse_btn, self.detect_btn, self.analyze_btn, self.profile_combo,
                  self.env_combo, self.mode_combo, *self.stage_checks.values()):
            w.setEnabled(not busy)
        if not busy:
            self.status_label.setText("Ready")

    # ── Close ─────────────────────────────────────────────────────────

    def closeEvent(self, event):
        if self.worker and self.worker.isRunning():
            reply = QMessageBox.question(
                self,
                "Migration in Progress",
                "A migration is still running. Cancel it and quit?",
                QMessageBox.Yes | QMessageBox.No,
            )
            if reply != QMessageBox.Yes:
                event.ignore()
                return
            self._cancel()
            self.worker.wait()
        event.accept()


# ── Entry Point ───────────────────────────────────────────────────────

def main(
    logger: logging.Logger | None = None,
    *,
    profiles_dir: str | Path | None = None,
    settings_org: str = "SkinModManager",
    settings_app: str = "LegacyMigration",
    persist_settings: bool = True,
):
    app = QApplication(sys.argv)
    app.setStyle("Fusion")

    if profiles_dir is None:
        profiles_dir = Path(os.environ.get("APPDATA", "~")).expanduser() / "SkinModManager" / "profiles"

    window = MigrationWindow(
        logger=logger,
        profiles_dir=profiles_dir,
        settings_org=settings_org,
        settings_app=settings_app,
        persist_settings=persist_settings,
    )
    window.show()

    sys.exit(app.exec())


if __name__ == "__main__":
    main()
