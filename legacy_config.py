"""
Legacy settings parser.

The legacy application keeps two flat JSON settings files:

    <root>/local/configuration          global: theme, uuid, window geometry,
                                        OCD window, active environment
    <root>/home/<env>/configuration     per environment: game path and
                                        launch arguments

Neither file is required.  Anything unreadable yields ``None``: migrating the
settings is optional enrichment and must never fail an analysis.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

GLOBAL_CONFIG_RELPATH = Path("local") / "configuration"
ENV_CONFIG_FILENAME = "configuration"

_log = logging.getLogger(__name__)


class WindowGeometry(BaseModel):
    x: int = 0
    y: int = 0
    width: int = 1200
    height: int = 1080


class OcdSettings(BaseModel):
    """On-screen display window the legacy tool attached to."""

    window_name: str | None = None
    width: int = 1920
    height: int = 1080


class LegacyGlobalSettings(BaseModel):
    """Shape of ``local/configuration``; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    style_theme: str | None = None
    uuid: str | None = None
    environment: str | None = None
    main_window_position_x: int | None = None
    main_window_position_y: int | None = None
    main_window_position_width: int | None = None
    main_window_position_height: int | None = None
    ocd_window_name: str | None = None
    ocd_window_width: int | None = None
    ocd_window_height: int | None = None

    @field_validator("style_theme", "uuid", "environment", "ocd_window_name", mode="before")
    @classmethod
    def _stringify(cls, v):
        if v is None:
            return None
        return str(v)


class LegacyEnvironmentSettings(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    game_path: str | None = Field(default=None, alias="GamePath")
    game_launch_argument: str | None = None


class LegacyConfiguration(BaseModel):
    """Everything the configuration stage knows how to carry over."""

    style_theme: str | None = None
    uuid: str | None = None
    active_environment: str | None = None
    window: WindowGeometry | None = None
    ocd: OcdSettings | None = None
    environment_name: str | None = None
    game_path: str | None = None
    game_launch_argument: str | None = None


def _read_json_object(path: Path) -> dict:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: expected a JSON object, got {type(data).__name__}")
    return data


def _build_configuration(
    global_settings: LegacyGlobalSettings | None,
    env_name: str | None,
    env_settings: LegacyEnvironmentSettings | None,
) -> LegacyConfiguration:
    config = LegacyConfiguration(environment_name=env_name)

    if global_settings is not None:
        g = global_settings
        config.style_theme = g.style_theme
        config.uuid = g.uuid
        config.active_environment = g.environment
        if g.main_window_position_x is not None:
            config.window = WindowGeometry(
                x=g.main_window_position_x,
                y=g.main_window_position_y or 0,
                width=g.main_window_position_width or 1200,
                height=g.main_window_position_height or 1080,
            )
        if g.ocd_window_name is not None:
            config.ocd = OcdSettings(
                window_name=g.ocd_window_name,
                width=g.ocd_window_width or 1920,
                height=g.ocd_window_height or 1080,
            )

    if env_settings is not None:
        config.game_path = env_settings.game_path
        config.game_launch_argument = env_settings.game_launch_argument

    return config


def parse_legacy_configuration(
    source_root: str | Path,
    env_name: str | None = None,
    warn: Optional[Callable[[str], None]] = None,
) -> LegacyConfiguration | None:
    """Parse the global and (optionally) per-environment legacy settings.

    Returns ``None`` when a settings file exists but cannot be parsed.  When
    neither file exists an empty ``LegacyConfiguration`` is returned.
    """
    source_root = Path(source_root)
    global_path = source_root / GLOBAL_CONFIG_RELPATH
    env_path = source_root / "home" / env_name / ENV_CONFIG_FILENAME if env_name else None

    try:
        global_settings = None
        if global_path.is_file():
            global_settings = LegacyGlobalSettings.model_validate(_read_json_object(global_path))

        env_settings = None
        if env_path is not None and env_path.is_file():
            env_settings = LegacyEnvironmentSettings.model_validate(_read_json_object(env_path))
    except (OSError, ValueError, ValidationError) as exc:
        # json.JSONDecodeError is a ValueError
        msg = f"Legacy configuration could not be parsed: {exc}"
        _log.warning(msg)
        if warn:
            warn(msg)
        return None

    return _build_configuration(global_settings, env_name, env_settings)
