"""gitリポジトリの読み取り専用クエリ

コミット履歴・ブランチ・作業ツリーを参照する。リポジトリの状態は変更しない。
外部gitコマンドの呼び出しはGitCommandReaderに閉じ込め、検出器や
オーケストレーターはVersionControlReaderプロトコルのみに依存する。

Design Reference: DESIGN.md (Version Control Reader)
"""

from __future__ import annotations

import glob
import logging
import subprocess
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Protocol, runtime_checkable

from .exceptions import VCSUnavailableError
from .models import CommitInfo

logger = logging.getLogger(__name__)

# コミットヘッダー行のフィールド区切り（コミットメッセージに現れない制御文字）
FIELD_SEP = "\x1f"
LOG_FORMAT = f"%H{FIELD_SEP}%s{FIELD_SEP}%an{FIELD_SEP}%aI"

GLOB_CHARS = ("*", "?", "[")


@runtime_checkable
class VersionControlReader(Protocol):
    """バージョン管理への読み取り専用インターフェース"""

    def recent_commits(self, since: Optional[datetime], max_count: int = 50) -> List[CommitInfo]:
        ...

    def current_branch(self) -> str:
        ...

    def uncommitted_paths(self) -> List[str]:
        ...

    def path_exists(self, path: str) -> bool:
        ...

    def read_file(self, path: str) -> Optional[str]:
        ...


class GitCommandReader:
    """gitコマンドをsubprocess経由で実行するVersionControlReader実装"""

    def __init__(
        self,
        project_root: Path,
        timeout: float = 10.0,
        strict: bool = False,
        git_binary: str = "git",
    ) -> None:
        """
        初期化

        Args:
            project_root: リポジトリのルートディレクトリ
            timeout: 1コマンドあたりのタイムアウト（秒）
            strict: Trueの場合、失敗時にVCSUnavailableErrorを送出
            git_binary: gitコマンド名
        """
        self.project_root = Path(project_root).resolve()
        self.timeout = timeout
        self.strict = strict
        self.git_binary = git_binary

    def recent_commits(self, since: Optional[datetime], max_count: int = 50) -> List[CommitInfo]:
        """指定時刻以降のコミットを変更ファイル付きで取得"""
        args = ["log", f"--pretty=format:{LOG_FORMAT}", "--name-only", f"-n{max_count}"]
        if since is not None:
            args.insert(1, f"--since={since.isoformat()}")

        output = self._git(args)
        if not output.strip():
            return []
        return parse_log_output(output)

    def current_branch(self) -> str:
        return self._git(["branch", "--show-current"]).strip()

    def uncommitted_paths(self) -> List[str]:
        output = self._git(["status", "--porcelain"])
        # "XY path" 形式の先頭3文字を除去
        return [line[3:] for line in output.splitlines() if line.strip()]

    def path_exists(self, path: str) -> bool:
        """プロジェクトルート基準でパス（globパターン可）の存在を確認"""
        if not path:
            return False
        if any(ch in path for ch in GLOB_CHARS):
            pattern = str(self.project_root / path)
            return next(glob.iglob(pattern, recursive=True), None) is not None
        return (self.project_root / path).exists()

    def read_file(self, path: str) -> Optional[str]:
        try:
            return (self.project_root / path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug(f"Failed to read {path}: {exc}")
            return None

    def _git(self, args: List[str]) -> str:
        """
        gitコマンドを実行して標準出力を返す

        失敗時は空文字列を返す（strictモードでは例外）。

        Raises:
            VCSUnavailableError: strictモードでコマンドが失敗した場合
        """
        cmd = [self.git_binary, *args]
        try:
            result = subprocess.run(
                cmd,
                cwd=str(self.project_root),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return self._unavailable(f"git {args[0]} timed out after {self.timeout}s")
        except OSError as exc:
            return self._unavailable(f"git {args[0]} could not be executed: {exc}")

        if result.returncode != 0:
            return self._unavailable(f"git {args[0]} failed ({result.returncode}): {result.stderr.strip()}")
        return result.stdout

    def _unavailable(self, message: str) -> str:
        if self.strict:
            raise VCSUnavailableError(message)
        logger.debug(message)
        return ""


def parse_log_output(output: str) -> List[CommitInfo]:
    """
    `git log --name-only` の出力をCommitInfoのリストに変換

    区切り文字を含む行がコミットヘッダー、それ以外の空でない行が変更ファイル。

    Args:
        output: gitの標準出力

    Returns:
        コミット情報のリスト（新しい順）
    """
    commits: List[CommitInfo] = []
    current: Optional[CommitInfo] = None

    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if FIELD_SEP in line:
            parts = line.split(FIELD_SEP)
            if len(parts) < 4:
                logger.debug(f"Skipping malformed commit header: {line!r}")
                current = None
                continue
            commit_hash, message, author, date_str = parts[:4]
            try:
                timestamp = datetime.fromisoformat(date_str)
            except ValueError:
                logger.debug(f"Skipping commit with unparsable date: {date_str!r}")
                current = None
                continue
            current = CommitInfo(
                hash=commit_hash,
                message=message,
                author=author,
                timestamp=timestamp,
            )
            commits.append(current)
        elif current is not None:
            current.changed_files.append(line)

    return commits
