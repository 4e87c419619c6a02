"""
Tests for the file-backed profile services and archive probing.
"""

import ast
import threading
from pathlib import Path

import py7zr
import pytest

from archive_probe import detect_archive_type
from profile_services import (
    FileTransferService,
    JsonAutoDetectionService,
    JsonClassificationService,
    JsonConfigurationService,
    JsonModCatalog,
    ProfileServiceProvider,
)
from service_contracts import AutoDetectionRule
from tests.conftest import make_zip, write_text

ROOT = Path(__file__).resolve().parent.parent


# ── mod catalog ──────────────────────────────────────────────────────────────

def test_get_or_create_keeps_existing_records(tmp_path):
    catalog = JsonModCatalog(tmp_path / "mods.json")

    record, created = catalog.get_or_create("abc", {"name": "First", "unknown_key": 1})
    again, created_again = catalog.get_or_create("abc", {"name": "Second"})

    assert created and not created_again
    assert again is record
    assert record.name == "First"


def test_mod_catalog_persists(tmp_path):
    JsonModCatalog(tmp_path / "mods.json").get_or_create("abc", {"tags": ["x"]})

    reloaded = JsonModCatalog(tmp_path / "mods.json")

    assert reloaded.get("abc").tags == ["x"]
    assert len(reloaded) == 1


# ── file transfer ────────────────────────────────────────────────────────────

def test_copy_file_is_copy_if_absent(tmp_path):
    files = FileTransferService()
    src = write_text(tmp_path / "a.txt", "new")
    dst = write_text(tmp_path / "out" / "a.txt", "old")

    assert files.copy_file(src, dst) is False
    assert dst.read_text(encoding="utf-8") == "old"
    assert files.copy_file(src, dst, overwrite=True) is True
    assert dst.read_text(encoding="utf-8") == "new"


def test_move_file_creates_parent_dirs(tmp_path):
    src = write_text(tmp_path / "a.txt", "x")
    dst = tmp_path / "deep" / "er" / "a.txt"

    assert FileTransferService().move_file(src, dst)
    assert not src.exists()
    assert dst.read_text(encoding="utf-8") == "x"


def test_copy_directory_filters_extensions(tmp_path):
    src = tmp_path / "src"
    write_text(src / "a.png", "a")
    write_text(src / "nested" / "b.PNG", "b")
    write_text(src / "c.txt", "c")
    dst = tmp_path / "dst"
    files = FileTransferService()

    assert files.copy_directory(src, dst, extensions={".png"}) == 2
    assert (dst / "nested" / "b.PNG").is_file()
    assert not (dst / "c.txt").exists()
    assert files.copy_directory(src, dst, extensions={".png"}) == 0
    assert files.copy_directory(src, dst) == 1


# ── classification tree ──────────────────────────────────────────────────────

def test_create_node_if_absent(tmp_path):
    tree = JsonClassificationService(tmp_path / "classifications.json")

    assert tree.create_node_if_absent("Hair", "Hair") is not None
    assert tree.create_node_if_absent("Hair", "Hair") is None
    assert tree.create_node_if_absent("Short", "Short", parent_id="Hair", priority=50).parent_id == "Hair"
    assert JsonClassificationService(tmp_path / "classifications.json").node_exists("Short")


def test_child_requires_existing_parent(tmp_path):
    tree = JsonClassificationService(tmp_path / "c.json")

    with pytest.raises(ValueError):
        tree.create_node_if_absent("Short", "Short", parent_id="Hair")


def test_concurrent_creates_yield_one_node(tmp_path):
    tree = JsonClassificationService(tmp_path / "c.json")
    created = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        created.append(tree.create_node_if_absent("Hair", "Hair"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(node is not None for node in created) == 1
    assert len(tree.list_nodes()) == 1


def test_children_sorted_by_priority_then_name(tmp_path):
    tree = JsonClassificationService(tmp_path / "c.json")
    tree.create_node_if_absent("Root", "Root")
    tree.create_node_if_absent("b", "b", parent_id="Root", priority=50)
    tree.create_node_if_absent("a", "a", parent_id="Root", priority=50)
    tree.create_node_if_absent("z", "z", parent_id="Root", priority=10)

    assert [n.name for n in tree.children_of("Root")] == ["z", "a", "b"]
    assert [n.name for n in tree.roots()] == ["Root"]


def test_associate_thumbnail(tmp_path):
    tree = JsonClassificationService(tmp_path / "c.json")
    tree.create_node_if_absent("Hair", "Hair")

    assert tree.associate_thumbnail("Hair", "thumbnails/Hair.png")
    assert not tree.associate_thumbnail("Ghost", "thumbnails/Ghost.png")
    assert JsonClassificationService(tmp_path / "c.json").get_node_by_name("Hair").thumbnail == "thumbnails/Hair.png"


# ── auto-detection rules ─────────────────────────────────────────────────────

def test_rules_replace_by_name_and_persist(tmp_path):
    path = tmp_path / "rules.json"
    rules = JsonAutoDetectionService(path)
    rules.add_rule(AutoDetectionRule("Short (Hair)", "*Short*", "Short"))
    rules.add_rule(AutoDetectionRule("Short (Hair)", "*Short*", "Short", priority=90))

    assert rules.save_rules(path)
    reloaded = JsonAutoDetectionService(path)

    assert len(reloaded.rules) == 1
    assert reloaded.rules[0].priority == 90


def test_save_rules_reports_failure(tmp_path):
    blocker = write_text(tmp_path / "blocker", "file")
    rules = JsonAutoDetectionService(tmp_path / "rules.json")

    assert rules.save_rules(blocker / "rules.json") is False


# ── configuration ────────────────────────────────────────────────────────────

def test_configuration_dotted_keys(tmp_path):
    config = JsonConfigurationService(tmp_path / "config.json")
    config.set_value("window.width", 1200)
    config.set_value("window.height", 1080)
    config.set_value("install.uuid", "u")
    config.save()

    reloaded = JsonConfigurationService(tmp_path / "config.json")

    assert reloaded.get_value("window.width") == 1200
    assert reloaded.data["window"] == {"width": 1200, "height": 1080}
    assert reloaded.get_value("missing.key", "dflt") == "dflt"


def test_configuration_replaces_scalar_with_section(tmp_path):
    config = JsonConfigurationService(tmp_path / "config.json")
    config.set_value("game", "old")
    config.set_value("game.work_directory", "C:/Games")

    assert config.data == {"game": {"work_directory": "C:/Games"}}


# ── provider ─────────────────────────────────────────────────────────────────

def test_provider_reuses_bundle_and_lists_profiles(tmp_path):
    provider = ProfileServiceProvider(tmp_path)

    bundle = provider.services_for("Main")
    bundle.layout.root.mkdir()

    assert provider.services_for("Main") is bundle
    assert bundle.layout.archives_dir == tmp_path / "Main" / "mods"
    assert provider.list_profiles() == ["Main"]


@pytest.mark.parametrize("bad", ["", "..", "a/b", "a\\b"])
def test_provider_rejects_path_like_ids(tmp_path, bad):
    with pytest.raises(ValueError):
        ProfileServiceProvider(tmp_path).services_for(bad)


# ── archive probing ──────────────────────────────────────────────────────────

def test_detect_zip_and_7z_without_extension(tmp_path):
    zipped = make_zip(tmp_path / "abc", {"a.txt": b"a"})
    payload = write_text(tmp_path / "payload.txt", "hello")
    seven = tmp_path / "def"
    with py7zr.SevenZipFile(seven, "w") as archive:
        archive.write(payload, "payload.txt")

    assert detect_archive_type(zipped) == "zip"
    assert detect_archive_type(seven) == "7z"


def test_detect_unknown_and_missing(tmp_path):
    assert detect_archive_type(write_text(tmp_path / "plain", "just text")) is None
    assert detect_archive_type(tmp_path / "missing") is None


# ── module boundary ──────────────────────────────────────────────────────────

@pytest.mark.parametrize("module", [
    "source_analyzer.py",
    "migration_models.py",
    "migration_stages.py",
    "migration_orchestrator.py",
    "legacy_catalog.py",
    "legacy_classification.py",
    "legacy_config.py",
])
def test_migration_core_never_imports_concrete_services(module):
    tree = ast.parse((ROOT / module).read_text(encoding="utf-8"))
    imported = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            imported.update(alias.name.split(".")[0] for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            imported.add(node.module.split(".")[0])

    assert not imported & {"profile_services", "archive_probe", "gui", "main"}
