"""GitCommandReaderのテスト"""

import os
import shutil
import subprocess
import time
from pathlib import Path

import pytest

from smart_todo.exceptions import VCSUnavailableError
from smart_todo.vcs import FIELD_SEP, GitCommandReader, VersionControlReader, parse_log_output

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def git(repo: Path, *args: str) -> None:
    subprocess.run(
        ["git", "-c", "user.name=Tester", "-c", "user.email=tester@example.com",
         "-c", "commit.gpgsign=false", *args],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    )


@pytest.fixture
def repo(tmp_path):
    """コミット1件のgitリポジトリ"""
    git(tmp_path, "init", "-q")
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "login.py").write_text("def login():\n    pass\n", encoding="utf-8")
    git(tmp_path, "add", ".")
    git(tmp_path, "commit", "-q", "-m", "implement login form")
    return tmp_path


def test_parse_log_output():
    """ヘッダー行と変更ファイル行を解析"""
    output = (
        f"abc123{FIELD_SEP}add pricing page{FIELD_SEP}Alice{FIELD_SEP}2024-06-10T10:00:00+09:00\n"
        "src/pricing.tsx\n"
        "src/pricing.css\n"
        "\n"
        f"def456{FIELD_SEP}fix typo{FIELD_SEP}Bob{FIELD_SEP}2024-06-09T08:00:00+00:00\n"
        "README.md\n"
    )
    commits = parse_log_output(output)

    assert [c.hash for c in commits] == ["abc123", "def456"]
    assert commits[0].message == "add pricing page"
    assert commits[0].changed_files == ["src/pricing.tsx", "src/pricing.css"]
    assert commits[1].author == "Bob"
    assert commits[0].timestamp.utcoffset().total_seconds() == 9 * 3600


def test_parse_log_output_skips_malformed_header():
    """フィールド不足のヘッダーとその変更ファイルは無視"""
    output = f"abc{FIELD_SEP}broken\nsrc/a.py\n"
    assert parse_log_output(output) == []


def test_reader_satisfies_protocol(tmp_path):
    assert isinstance(GitCommandReader(tmp_path), VersionControlReader)


@requires_git
def test_recent_commits(repo):
    """コミットを変更ファイル付きで取得"""
    reader = GitCommandReader(repo)
    commits = reader.recent_commits(None)

    assert len(commits) == 1
    assert commits[0].message == "implement login form"
    assert commits[0].author == "Tester"
    assert commits[0].changed_files == ["src/login.py"]


@requires_git
def test_uncommitted_paths_and_branch(repo):
    (repo / "notes.md").write_text("memo", encoding="utf-8")
    reader = GitCommandReader(repo)

    assert "notes.md" in reader.uncommitted_paths()
    assert reader.current_branch() != ""


@requires_git
def test_non_repository_returns_empty(tmp_path):
    """リポジトリ外では空結果（非strict）"""
    reader = GitCommandReader(tmp_path)
    assert reader.recent_commits(None) == []
    assert reader.uncommitted_paths() == []


@requires_git
def test_non_repository_strict_raises(tmp_path):
    reader = GitCommandReader(tmp_path, strict=True)
    with pytest.raises(VCSUnavailableError):
        reader.recent_commits(None)


def test_missing_git_binary(tmp_path):
    """gitコマンドが見つからない場合"""
    reader = GitCommandReader(tmp_path, git_binary="git-binary-that-does-not-exist")
    assert reader.current_branch() == ""

    strict_reader = GitCommandReader(tmp_path, strict=True, git_binary="git-binary-that-does-not-exist")
    with pytest.raises(VCSUnavailableError):
        strict_reader.current_branch()


@pytest.fixture
def slow_git(tmp_path):
    """応答しないgitの代わりに5秒待つスクリプト"""
    script = tmp_path / "slow-git"
    script.write_text("#!/bin/sh\nexec sleep 5\n", encoding="utf-8")
    script.chmod(0o755)
    return str(script)


@pytest.mark.skipif(os.name == "nt", reason="requires a POSIX shell")
def test_git_timeout_returns_empty(tmp_path, slow_git):
    """タイムアウトしたgitコマンドは待たずに空結果を返す"""
    reader = GitCommandReader(tmp_path, timeout=0.1, git_binary=slow_git)

    started = time.monotonic()
    assert reader.recent_commits(None) == []
    assert time.monotonic() - started < 3


@pytest.mark.skipif(os.name == "nt", reason="requires a POSIX shell")
def test_git_timeout_strict_raises(tmp_path, slow_git):
    reader = GitCommandReader(tmp_path, timeout=0.1, strict=True, git_binary=slow_git)

    with pytest.raises(VCSUnavailableError, match="timed out"):
        reader.recent_commits(None)


def test_path_exists_with_glob(tmp_path):
    """globパターンでのファイル存在確認"""
    target = tmp_path / "src" / "components" / "PricingCalculator.tsx"
    target.parent.mkdir(parents=True)
    target.write_text("export {}", encoding="utf-8")
    reader = GitCommandReader(tmp_path)

    assert reader.path_exists("src/**/*PricingCalculator*.tsx")
    assert reader.path_exists("src/components/PricingCalculator.tsx")
    assert not reader.path_exists("src/**/*Checkout*.tsx")
    assert not reader.path_exists("")
    assert reader.read_file("src/components/PricingCalculator.tsx") == "export {}"
    assert reader.read_file("missing.txt") is None
