"""
Tests for legacy installation analysis and auto-detection.
"""

import shutil

from migration_models import format_bytes
from source_analyzer import analyze_source, auto_detect_source, find_environments
from tests.conftest import build_legacy_tree, write_json, write_text


def test_valid_tree_counts(legacy_tree, image_extensions):
    result = analyze_source(legacy_tree, image_extensions)

    assert result.is_valid
    assert result.errors == ()
    assert result.mod_count == 2
    assert result.preview_count == 2
    assert result.category_count == 2
    assert result.environments == ("Main", "Other")
    assert result.active_environment == "Main"
    assert result.configuration.game_path.endswith("Endfield.exe")
    assert result.archive_bytes > 0
    assert result.preview_bytes == len(b"\x89PNG\r\n\x1a\nfake") + len(b"\xff\xd8\xff\xe0fake")


def test_missing_resources_is_invalid(tmp_path, image_extensions):
    (tmp_path / "home" / "Main").mkdir(parents=True)

    result = analyze_source(tmp_path, image_extensions)

    assert not result.is_valid
    assert "resources" in result.errors[0]


def test_missing_path_is_invalid(tmp_path, image_extensions):
    result = analyze_source(tmp_path / "nowhere", image_extensions)

    assert not result.is_valid
    assert "does not exist" in result.errors[0]


def test_file_path_is_invalid(tmp_path, image_extensions):
    f = write_text(tmp_path / "file.txt", "x")

    assert not analyze_source(f, image_extensions).is_valid


def test_missing_home_falls_back_to_default(tmp_path, image_extensions):
    (tmp_path / "resources" / "mods").mkdir(parents=True)

    result = analyze_source(tmp_path, image_extensions)

    assert result.is_valid
    assert result.active_environment == "Default"
    assert any("home" in w for w in result.warnings)


def test_active_environment_falls_back_to_first(legacy_tree, image_extensions):
    (legacy_tree / "local" / "configuration").unlink()

    result = analyze_source(legacy_tree, image_extensions)

    assert result.active_environment == "Main"
    assert result.configuration.style_theme is None
    assert result.configuration.game_path is not None


def test_active_environment_from_settings(legacy_tree, image_extensions):
    write_json(legacy_tree / "local" / "configuration", {"environment": "Other"})

    result = analyze_source(legacy_tree, image_extensions)

    assert result.active_environment == "Other"
    assert result.category_count == 0


def test_unknown_active_environment_warns(legacy_tree, image_extensions):
    write_json(legacy_tree / "local" / "configuration", {"environment": "Gone"})

    result = analyze_source(legacy_tree, image_extensions)

    assert result.active_environment == "Main"
    assert any("Gone" in w for w in result.warnings)


def test_broken_configuration_is_only_a_warning(legacy_tree, image_extensions):
    write_text(legacy_tree / "local" / "configuration", "{broken")

    result = analyze_source(legacy_tree, image_extensions)

    assert result.is_valid
    assert result.configuration is None
    assert len(result.warnings) == 1


def test_analysis_is_read_only(legacy_tree, image_extensions):
    before = sorted(p.relative_to(legacy_tree) for p in legacy_tree.rglob("*"))

    analyze_source(legacy_tree, image_extensions)

    assert sorted(p.relative_to(legacy_tree) for p in legacy_tree.rglob("*")) == before


def test_find_environments(legacy_tree, tmp_path):
    assert find_environments(legacy_tree) == ["Main", "Other"]
    assert find_environments(tmp_path / "nothing") == []


def test_auto_detect_picks_first_valid_candidate(tmp_path, image_extensions):
    invalid = tmp_path / "invalid"
    invalid.mkdir()
    valid = build_legacy_tree(tmp_path / "valid")
    second = build_legacy_tree(tmp_path / "second")

    found = auto_detect_source(image_extensions, [tmp_path / "missing", invalid, valid, second])

    assert found == valid


def test_auto_detect_none(tmp_path, image_extensions):
    assert auto_detect_source(image_extensions, [tmp_path / "missing"]) is None


def test_summary_mentions_counts(legacy_tree, image_extensions):
    shutil.rmtree(legacy_tree / "resources" / "preview")

    summary = analyze_source(legacy_tree, image_extensions).summary()

    assert "2 mod(s)" in summary
    assert "0 preview(s) (0 B)" in summary


def test_format_bytes():
    assert format_bytes(0) == "0 B"
    assert format_bytes(512) == "512 B"
    assert format_bytes(1024) == "1 KB"
    assert format_bytes(1536) == "1.5 KB"
    assert format_bytes(5 * 1024 ** 3) == "5 GB"
