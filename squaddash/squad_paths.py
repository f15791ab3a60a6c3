"""Squad folder detection.

Workspaces keep their team files either in the current ``.squad/`` folder or
in the legacy ``.ai-team/`` folder. Both are supported; ``.squad/`` wins when
both exist.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from squaddash import config


def detect_squad_folder(workspace_root: Path) -> Optional[str]:
    """Return the name of the existing squad folder, or None if neither exists."""
    for name in config.SQUAD_FOLDER_NAMES:
        if (workspace_root / name).is_dir():
            return name
    return None


def squad_folder_name(workspace_root: Path) -> str:
    return detect_squad_folder(workspace_root) or config.DEFAULT_SQUAD_FOLDER


def squad_dir(workspace_root: Path, folder: Optional[str] = None) -> Path:
    return workspace_root / (folder or squad_folder_name(workspace_root))


def squad_path(workspace_root: Path, *parts: str) -> Path:
    """Build a path inside whichever squad folder the workspace uses."""
    return squad_dir(workspace_root).joinpath(*parts)


def has_squad_team(workspace_root: Path) -> bool:
    return squad_path(workspace_root, config.ROSTER_FILENAME).is_file()


def watch_roots(workspace_root: Path) -> list[Path]:
    """Every squad folder that currently exists (both during a migration)."""
    return [
        workspace_root / name
        for name in config.SQUAD_FOLDER_NAMES
        if (workspace_root / name).is_dir()
    ]
