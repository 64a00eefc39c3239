"""Settings persistence for the line-id tools."""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from i18n import get_app_data_dir

logger = logging.getLogger(__name__)

MAX_RECENT_PROJECTS = 10


def settings_path() -> Path:
    return get_app_data_dir() / "settings.json"


def _clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))


@dataclass
class Settings:
    debounce_ms: int = 500
    max_attempts: int = 100
    repair_tag_spacing: bool = False
    strict_tags: bool = False
    recent_projects: List[str] = field(default_factory=list)
    project_settings: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def clamp(self) -> "Settings":
        self.debounce_ms = int(_clamp(int(self.debounce_ms), 0, 10000))
        self.max_attempts = int(_clamp(int(self.max_attempts), 1, 10000))
        self.repair_tag_spacing = bool(self.repair_tag_spacing)
        self.strict_tags = bool(self.strict_tags)
        self.recent_projects = [str(p) for p in self.recent_projects][:MAX_RECENT_PROJECTS]
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Settings":
        if not isinstance(data, dict):
            return cls()
        defaults = cls()
        settings = cls()
        for key in ("debounce_ms", "max_attempts"):
            try:
                setattr(settings, key, int(data.get(key, getattr(defaults, key))))
            except (TypeError, ValueError):
                setattr(settings, key, getattr(defaults, key))
        settings.repair_tag_spacing = bool(data.get("repair_tag_spacing", False))
        settings.strict_tags = bool(data.get("strict_tags", False))
        recent = data.get("recent_projects")
        settings.recent_projects = list(recent) if isinstance(recent, list) else []
        projects = data.get("project_settings")
        settings.project_settings = (
            {str(k): dict(v) for k, v in projects.items() if isinstance(v, dict)}
            if isinstance(projects, dict)
            else {}
        )
        return settings.clamp()

    def for_project(self, project_path: Optional[str]) -> "Settings":
        """Copy with the per-project overrides applied."""
        merged = self.to_dict()
        if project_path:
            merged.update(self.project_settings.get(project_path, {}))
        return Settings.from_dict(merged)


def load_settings(path: Optional[Path] = None) -> Settings:
    path = Path(path) if path else settings_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            return Settings.from_dict(json.load(f))
    except FileNotFoundError:
        return Settings()
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable settings file %s: %s", path, e)
        return Settings()


def save_settings(settings: Settings, path: Optional[Path] = None) -> None:
    path = Path(path) if path else settings_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(settings.clamp().to_dict(), f, ensure_ascii=False, indent=2)


def add_recent_project(settings: Settings, project_path: str) -> Settings:
    recent = [p for p in settings.recent_projects if p != project_path]
    recent.insert(0, project_path)
    settings.recent_projects = recent[:MAX_RECENT_PROJECTS]
    return settings


def get_project_setting(settings: Settings, project_path: str, key: str) -> Any:
    return settings.project_settings.get(project_path, {}).get(key)


def set_project_setting(settings: Settings, project_path: str, key: str, value: Any) -> Settings:
    settings.project_settings.setdefault(project_path, {})[key] = value
    return settings
