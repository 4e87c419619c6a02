#!/usr/bin/env python3
"""Skin Mod Manager legacy migration - Entry Point"""

import argparse
import faulthandler
import json
import logging
import os
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path

APP_NAME = "SkinModManager"
PROFILES_DIR_ENV = "SKINMM_PROFILES_DIR"


def default_data_dir() -> Path:
    return Path(os.environ.get("APPDATA", "~")).expanduser() / APP_NAME


def setup_logging(log_dir: Path | None = None) -> tuple[logging.Logger, Path]:
    log_dir = log_dir or default_data_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "skinmodmanager.log"

    handler = RotatingFileHandler(
        log_file,
        maxBytes=1 * 1024 * 1024,  # 1 MB
        backupCount=2,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(asctime)s  %(levelname)-8s  %(message)s"))

    # module loggers (migration_stages, profile_services, ...) propagate here
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    root.addHandler(handler)

    logger = logging.getLogger("skinmodmanager")
    logger.setLevel(logging.DEBUG)
    return logger, log_dir


def install_crash_handler(logger: logging.Logger, log_dir: Path):
    # Python-level unhandled exceptions
    def handle_exception(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.critical(
            "Unhandled exception:\n%s",
            "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
        )

    sys.excepthook = handle_exception

    # C-level crashes (segfault, abort): faulthandler writes to its own file,
    # logging is unusable after a crash
    crash_file = log_dir / "crash.log"
    faulthandler.enable(open(crash_file, "w"), all_threads=True)


def resolve_profiles_dir(value: str | None) -> Path:
    if value:
        return Path(value)
    if os.environ.get(PROFILES_DIR_ENV):
        return Path(os.environ[PROFILES_DIR_ENV])
    return default_data_dir() / "profiles"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Skin Mod Manager - legacy installation migration")
    parser.add_argument(
        "--profiles-dir",
        help=f"Profiles root (default: ${PROFILES_DIR_ENV} or %%APPDATA%%/{APP_NAME}/profiles)",
    )
    parser.add_argument("--settings-org", default=APP_NAME)
    parser.add_argument("--settings-app", default="LegacyMigration")
    parser.add_argument("--no-persist-settings", action="store_true")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("gui", help="Open the migration window (default)")

    p = sub.add_parser("analyze", help="Inspect a legacy installation")
    p.add_argument("source")

    p = sub.add_parser("migrate", help="Migrate a legacy installation into a profile")
    p.add_argument("source")
    p.add_argument("profile")
    p.add_argument("--mode", choices=["copy", "move", "link"], default="copy")
    p.add_argument("--environment", help="Legacy environment to migrate (default: the active one)")
    for flag in ("metadata", "archives", "classifications", "previews", "configuration"):
        p.add_argument(f"--skip-{flag}", action="store_true")
    p.add_argument("--json", action="store_true", help="Print the result as JSON")

    p = sub.add_parser("validate", help="Check a migrated profile against the counts recorded at migration")
    p.add_argument("source", nargs="?", help="Legacy installation to check against if the profile has no record")
    p.add_argument("profile")

    p = sub.add_parser("detect", help="Look for a legacy installation in the usual places")
    p.add_argument("candidates", nargs="*")

    return parser


def _make_orchestrator(profiles_dir: Path):
    from migration_orchestrator import MigrationOrchestrator
    from profile_services import ImageService, ProfileServiceProvider

    return MigrationOrchestrator(ProfileServiceProvider(profiles_dir), ImageService())


def _print_analysis(analysis) -> None:
    print(analysis.summary())
    for w in analysis.warnings:
        print(f"  warning: {w}")


def cmd_analyze(args, profiles_dir: Path) -> int:
    analysis = _make_orchestrator(profiles_dir).analyze(args.source)
    _print_analysis(analysis)
    return 0 if analysis.is_valid else 1


def cmd_migrate(args, profiles_dir: Path) -> int:
    from migration_models import ArchiveMode, MigrationOptions

    orchestrator = _make_orchestrator(profiles_dir)
    analysis = orchestrator.analyze(args.source)
    if not analysis.is_valid:
        _print_analysis(analysis)
        return 1

    options = MigrationOptions(
        source_path=Path(args.source),
        profile_id=args.profile,
        archive_mode=ArchiveMode(args.mode),
        migrate_metadata=not args.skip_metadata,
        migrate_archives=not args.skip_archives,
        migrate_classifications=not args.skip_classifications,
        migrate_previews=not args.skip_previews,
        migrate_configuration=not args.skip_configuration,
        environment_name=args.environment,
    )

    def on_progress(p):
        print(f"[{p.percent:3d}%] {p.stage.value:<16} {p.current_item}", file=sys.stderr)

    result = orchestrator.migrate(options, progress=on_progress)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    else:
        for name, counts in result.stages.items():
            print(f"{name:<16} {counts}")
        print(f"warnings: {result.warning_count}")
        if result.error:
            print(f"error: {result.error}")
        print(f"log: {result.log_file}")
    return 0 if result.success else 1


def cmd_validate(args, profiles_dir: Path) -> int:
    orchestrator = _make_orchestrator(profiles_dir)
    if args.source:
        analysis = orchestrator.analyze(args.source)
        if not analysis.is_valid:
            _print_analysis(analysis)
            return 1
    validation = orchestrator.validate(args.profile)
    for key in validation.expected:
        print(f"{key:<12} expected {validation.expected[key]:>6}  found {validation.actual[key]:>6}")
    for issue in validation.issues:
        print(f"  issue: {issue}")
    return 0 if validation.is_valid else 1


def cmd_detect(args, profiles_dir: Path) -> int:
    from profile_services import ImageService
    from source_analyzer import auto_detect_source

    found = auto_detect_source(ImageService().supported_extensions(), args.candidates or None)
    if found is None:
        print("No legacy installation found")
        return 1
    print(found)
    return 0


if __name__ == "__main__":
    args = build_parser().parse_args()

    logger, log_dir = setup_logging()
    install_crash_handler(logger, log_dir)
    profiles_dir = resolve_profiles_dir(args.profiles_dir)
    logger.info("Starting Skin Mod Manager (%s), profiles at %s", args.command or "gui", profiles_dir)

    commands = {
        "analyze": cmd_analyze,
        "migrate": cmd_migrate,
        "validate": cmd_validate,
        "detect": cmd_detect,
    }
    if args.command in commands:
        sys.exit(commands[args.command](args, profiles_dir))

    from gui import main
    main(
        logger,
        profiles_dir=profiles_dir,
        settings_org=args.settings_org,
        settings_app=args.settings_app,
        persist_settings=not args.no_persist_settings,
    )
