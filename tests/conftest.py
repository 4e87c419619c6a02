"""
Shared fixtures and helpers for the legacy migration test suite.

``legacy_tree`` builds a small legacy installation:

    resources/mods/aaa111          zip archive, declared "zip"
    resources/mods/bbb222          declared "7z"
    (ccc333 is cataloged but its archive is missing)
    resources/preview/aaa111.png, sub/bbb222.jpg, notes.txt
    home/Main/modsIndex/index_1.json, index_2.json
    home/Main/classification/Hair (Short, Long), Outfit (Dress)
    home/Main/thumbnail/Hair.png, Parts/Short.png, Parts/Long.png, _redirection.ini
    home/Main/configuration
    home/Other/
    local/configuration            active environment "Main"
"""

import json
import zipfile
from pathlib import Path

import pytest

from migration_orchestrator import MigrationOrchestrator
from profile_services import ImageService, ProfileServiceProvider

PNG = b"\x89PNG\r\n\x1a\nfake"
JPG = b"\xff\xd8\xff\xe0fake"


def write_json(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def write_bytes(path: Path, data: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def write_text(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def make_zip(path: Path, members: dict[str, bytes]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for member, data in members.items():
            zf.writestr(member, data)
    return path


def build_legacy_tree(root: Path) -> Path:
    mods = root / "resources" / "mods"
    make_zip(mods / "aaa111", {"Short/hair.ini": b"[hair]"})
    write_bytes(mods / "bbb222", b"pretend 7z payload")

    preview = root / "resources" / "preview"
    write_bytes(preview / "aaa111.png", PNG)
    write_bytes(preview / "sub" / "bbb222.jpg", JPG)
    write_text(preview / "notes.txt", "not an image")

    env = root / "home" / "Main"
    write_json(env / "modsIndex" / "index_1.json", {"mods": {
        "aaa111": {"object": "Short", "type": "zip", "name": "Short Hair Recolor",
                   "author": "Kit", "explain": "pink", "tags": ["hair"]},
        "bbb222": {"object": "Dress", "type": "7z", "name": "Red Dress"},
    }})
    write_json(env / "modsIndex" / "index_2.json", {"mods": {
        "bbb222": {"object": "Dress", "name": "Duplicate Dress"},
        "ccc333": {"object": "Long", "type": "rar", "name": "Long Hair"},
    }})

    write_text(env / "classification" / "Hair", "Short\nLong\n")
    write_text(env / "classification" / "Outfit", "Dress\n")

    thumbs = env / "thumbnail"
    write_bytes(thumbs / "Hair.png", PNG)
    write_bytes(thumbs / "Parts" / "Short.png", PNG)
    write_bytes(thumbs / "Parts" / "Long.png", PNG)
    write_text(thumbs / "_redirection.ini", (
        "; legacy thumbnails\n"
        "[*] Parts\\*\n"
        "Hair = Hair.png\n"
        "Ghost = Parts\\Short.png\n"
    ))

    write_json(env / "configuration", {
        "GamePath": "C:\\Games\\Endfield\\Endfield.exe",
        "game_launch_argument": "-dx11",
    })
    (root / "home" / "Other").mkdir(parents=True)

    write_json(root / "local" / "configuration", {
        "environment": "Main",
        "style_theme": "Dark",
        "uuid": "install-1",
        "main_window_position_x": 10,
        "main_window_position_y": 20,
        "main_window_position_width": 1280,
        "main_window_position_height": 900,
        "ocd_window_name": "Endfield",
    })
    return root


@pytest.fixture
def legacy_tree(tmp_path):
    return build_legacy_tree(tmp_path / "legacy")


@pytest.fixture
def image_extensions():
    return ImageService().supported_extensions()


@pytest.fixture
def profiles_dir(tmp_path):
    return tmp_path / "profiles"


@pytest.fixture
def provider(profiles_dir):
    return ProfileServiceProvider(profiles_dir)


@pytest.fixture
def orchestrator(provider):
    return MigrationOrchestrator(provider, ImageService())
