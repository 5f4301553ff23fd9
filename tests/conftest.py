"""smart-todoテスト共通フィクスチャ"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from smart_todo.models import Todo

NOW = datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)  # 月曜日


def make_todo(todo_id: str, content: str = "", **kwargs) -> Todo:
    """テスト用Todoを作成（日時は固定時刻基準）"""
    kwargs.setdefault("created_at", NOW - timedelta(days=3))
    kwargs.setdefault("updated_at", NOW - timedelta(days=3))
    return Todo(id=todo_id, content=content or f"todo {todo_id}", **kwargs)


@pytest.fixture
def clock():
    """固定時刻を返すクロック"""
    return lambda: NOW


@pytest.fixture
def fake_reader():
    """コミットなし・ファイルなしのモックVersionControlReader"""
    reader = MagicMock()
    reader.recent_commits.return_value = []
    reader.path_exists.return_value = False
    reader.read_file.return_value = None
    return reader
