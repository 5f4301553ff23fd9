"""
gitフックのインストール

post-commit で完了検出、pre-push で進捗表示を実行する。
フックは失敗してもgit操作を止めない。
"""

from __future__ import annotations

import logging
import stat
from pathlib import Path
from typing import Dict, List

from .exceptions import HookInstallError

logger = logging.getLogger(__name__)

HOOK_SCRIPTS: Dict[str, str] = {
    "post-commit": """#!/bin/sh
# smart-todo: check recent commits for completed todos
python -m smart_todo detect --auto-complete >/dev/null 2>&1 || true
exit 0
""",
    "pre-push": """#!/bin/sh
# smart-todo: show progress before pushing
python -m smart_todo progress || true
exit 0
""",
}


def install_git_hooks(project_root: Path) -> List[Path]:
    """
    .git/hooks に post-commit / pre-push フックを書き込む

    Args:
        project_root: gitリポジトリのルート

    Returns:
        書き込んだフックのパス

    Raises:
        HookInstallError: .gitディレクトリがない、または書き込みに失敗した場合
    """
    git_dir = Path(project_root) / ".git"
    if not git_dir.is_dir():
        raise HookInstallError(f"Not a git repository (no .git directory): {project_root}")

    hooks_dir = git_dir / "hooks"
    written: List[Path] = []
    try:
        hooks_dir.mkdir(parents=True, exist_ok=True)
        for name, script in HOOK_SCRIPTS.items():
            hook_path = hooks_dir / name
            hook_path.write_text(script, encoding="utf-8")
            mode = hook_path.stat().st_mode
            hook_path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            written.append(hook_path)
            logger.info(f"Installed git hook: {hook_path}")
    except OSError as exc:
        raise HookInstallError(f"Failed to install git hooks: {exc}") from exc
    return written
