import logging
import os
import posixpath
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Tuple

from tag_codec import split_comment

logger = logging.getLogger(__name__)

INCLUDE_LINE = re.compile(r"^\s*INCLUDE\s+(.+)")


def load_text_from_file(path: str) -> str:
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read().lstrip("\ufeff")


@dataclass
class Project:
    root_path: str
    files: Dict[str, str] = field(default_factory=dict)

    @property
    def root_dir(self) -> str:
        return os.path.dirname(os.path.abspath(self.root_path))

    @property
    def root_name(self) -> str:
        return os.path.basename(self.root_path)

    def path_of(self, name: str) -> str:
        return os.path.join(self.root_dir, *name.split("/"))

    def save(self, pairs: Iterable[Tuple[str, str]]) -> None:
        save_files(self.root_dir, pairs)


def load_project(root_path: str) -> Project:
    """Read the root script and every file it INCLUDEs, each once.

    Keys are paths relative to the root's folder, with forward slashes. The
    root itself must be readable; an unreadable include is logged and skipped.
    """
    project = Project(root_path)
    project.files[project.root_name] = load_text_from_file(root_path)
    pending = [project.root_name]
    while pending:
        name = pending.pop(0)
        for line in project.files[name].splitlines():
            m = INCLUDE_LINE.match(split_comment(line)[0])
            if not m:
                continue
            inc = posixpath.normpath(posixpath.join(posixpath.dirname(name), m.group(1).strip()))
            if inc in project.files:
                continue
            try:
                project.files[inc] = load_text_from_file(project.path_of(inc))
            except OSError as e:
                logger.error("Failed to load included file %s: %s", inc, e)
                continue
            pending.append(inc)
    return project


def save_files(root_dir: str, pairs: Iterable[Tuple[str, str]]) -> None:
    for name, content in pairs:
        path = os.path.join(root_dir, *name.split("/"))
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
