import json
import pathlib
import sys

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from settings import (
    MAX_RECENT_PROJECTS,
    Settings,
    add_recent_project,
    get_project_setting,
    load_settings,
    save_settings,
    set_project_setting,
)


def test_missing_file_gives_defaults(tmp_path):
    settings = load_settings(tmp_path / "nope.json")
    assert settings == Settings()
    assert settings.debounce_ms == 500
    assert settings.max_attempts == 100


def test_round_trip(tmp_path):
    path = tmp_path / "sub" / "settings.json"
    settings = Settings(debounce_ms=250, strict_tags=True)
    set_project_setting(settings, "/p/main.ink", "repair_tag_spacing", True)
    save_settings(settings, path)
    loaded = load_settings(path)
    assert loaded.debounce_ms == 250
    assert loaded.strict_tags is True
    assert get_project_setting(loaded, "/p/main.ink", "repair_tag_spacing") is True


def test_corrupt_file_falls_back(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    assert load_settings(path) == Settings()


def test_values_are_clamped_and_coerced():
    settings = Settings.from_dict({"debounce_ms": -5, "max_attempts": "abc", "recent_projects": "x"})
    assert settings.debounce_ms == 0
    assert settings.max_attempts == 100
    assert settings.recent_projects == []


def test_recent_projects_are_deduplicated_and_capped():
    settings = Settings()
    for i in range(MAX_RECENT_PROJECTS + 3):
        add_recent_project(settings, f"/p/{i}.ink")
    add_recent_project(settings, "/p/5.ink")
    assert settings.recent_projects[0] == "/p/5.ink"
    assert len(settings.recent_projects) == MAX_RECENT_PROJECTS
    assert settings.recent_projects.count("/p/5.ink") == 1


def test_project_overrides(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps({"max_attempts": 50, "project_settings": {"/p/main.ink": {"max_attempts": 7}}}),
        encoding="utf-8",
    )
    settings = load_settings(path)
    assert settings.for_project("/p/main.ink").max_attempts == 7
    assert settings.for_project("/q/main.ink").max_attempts == 50
    assert settings.for_project(None).max_attempts == 50
