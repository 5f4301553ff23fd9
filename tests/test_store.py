"""TodoStoreのテスト"""

import json
from datetime import timedelta
from itertools import count

import pytest
from conftest import NOW, make_todo

from smart_todo.exceptions import StorePersistenceError, TodoNotFoundError
from smart_todo.models import Partition, SessionTodoUpdate, TodoPriority, TodoStatus
from smart_todo.serialization import session_update_from_dict
from smart_todo.store import TodoStore


@pytest.fixture
def store(tmp_path, clock):
    return TodoStore(tmp_path / ".todo-data" / "todos.json", clock=clock)


def test_sync_adds_unknown_todos(store):
    """未知IDはプロジェクトTodoとして追加し、パターンを生成"""
    result = store.sync([make_todo("s1", "create Sidebar component")])

    assert [t.id for t in result.added] == ["s1"]
    todo = store.get("s1")
    assert store.find_partition("s1") is Partition.PROJECT
    assert todo.category == "development"
    assert todo.completion_patterns
    assert todo.updated_at == NOW


def test_completed_todo_lives_only_in_archived(store):
    """完了したTodoはarchivedにのみ存在"""
    store.sync([make_todo("a", status=TodoStatus.COMPLETED), make_todo("b")])
    store.complete("b")

    for todo_id in ("a", "b"):
        locations = [p for p, todos in store.partitions.items() if any(t.id == todo_id for t in todos)]
        assert locations == [Partition.ARCHIVED]
        assert store.get(todo_id).status is TodoStatus.COMPLETED
        assert store.get(todo_id).completed_at is not None


def test_sync_merge_only_touches_status_and_actual_hours(store):
    """既存Todoの同期はstatusとactual_hours以外を変更しない"""
    existing = make_todo(
        "m1",
        "Write onboarding guide",
        priority=TodoPriority.HIGH,
        category="docs",
        tags=["docs"],
        file_paths=["docs/onboarding.md"],
        estimated_hours=3.0,
    )
    store.partitions.project.append(existing)

    incoming = make_todo(
        "m1",
        "Write onboarding guide v2",
        status=TodoStatus.IN_PROGRESS,
        priority=TodoPriority.LOW,
        actual_hours=1.5,
    )
    result = store.sync([incoming])

    todo = store.get("m1")
    assert todo.status is TodoStatus.IN_PROGRESS
    assert todo.actual_hours == 1.5
    assert todo.content == "Write onboarding guide"
    assert todo.priority is TodoPriority.HIGH
    assert todo.category == "docs"
    assert todo.tags == ["docs"]
    assert todo.file_paths == ["docs/onboarding.md"]
    assert todo.estimated_hours == 3.0
    assert [(c.kind, c.recommendation) for c in result.conflicts] == [("content_changed", "use_project")]


def test_sync_completion_of_known_todo_archives_it(store):
    store.partitions.project.append(make_todo("m2", "Ship it"))
    result = store.sync([make_todo("m2", "Ship it", status=TodoStatus.COMPLETED)])

    assert store.find_partition("m2") is Partition.ARCHIVED
    assert [t.id for t in result.completed] == ["m2"]
    assert "completed: session sync" in store.get("m2").tags


def test_sync_status_mismatch_on_archived(store):
    """archived済みTodoを未完了で受け取った場合は競合（自動解決しない）"""
    store.partitions.archived.append(make_todo("z", "Done thing", status=TodoStatus.COMPLETED))
    result = store.sync([make_todo("z", "Done thing", status=TodoStatus.PENDING)])

    assert store.get("z").status is TodoStatus.COMPLETED
    assert [(c.kind, c.recommendation) for c in result.conflicts] == [("status_mismatch", "manual_review")]


def test_sync_duplicate_ids_in_batch(store):
    result = store.sync([make_todo("d", "first"), make_todo("d", "second")])

    assert len(store.partitions.project) == 1
    assert store.get("d").content == "first"
    assert [c.kind for c in result.conflicts] == ["duplicate"]


def test_sync_graduates_staged_session_todo(store):
    """session登録済みのIDは同期でprojectへ移動"""
    assert store.add_session_todo(make_todo("st", "staged work"))
    assert not store.add_session_todo(make_todo("st", "staged work"))

    store.sync([make_todo("st", "staged work")])

    assert store.partitions.session == []
    assert store.find_partition("st") is Partition.PROJECT


def test_sync_record_without_status_keeps_blocked_state(store):
    """statusを含まないレコードは既存のstatusを変更しない"""
    store.partitions.project.extend(
        [
            make_todo("a", "provision database"),
            make_todo("b", "deploy api", status=TodoStatus.BLOCKED, dependencies=["a"]),
        ]
    )

    result = store.sync([session_update_from_dict({"id": "b", "content": "deploy api", "actual_hours": 2})])

    todo = store.get("b")
    assert todo.status is TodoStatus.BLOCKED
    assert todo.actual_hours == 2
    assert [t.id for t in result.updated] == ["b"]
    assert result.conflicts == []


def test_sync_record_without_content_updates_status(store):
    """contentのないレコードでも既知IDのstatusは同期される"""
    store.partitions.project.extend(
        [
            make_todo("a", "provision database"),
            make_todo("b", "deploy api", status=TodoStatus.BLOCKED, dependencies=["a"]),
        ]
    )

    result = store.sync([session_update_from_dict({"id": "a", "status": "completed"})])

    assert store.find_partition("a") is Partition.ARCHIVED
    assert store.get("a").content == "provision database"
    assert [t.id for t in result.completed] == ["a"]
    assert store.get("b").status is TodoStatus.PENDING


def test_sync_unknown_id_without_content_is_skipped(store):
    result = store.sync(
        [SessionTodoUpdate("ghost", status=TodoStatus.IN_PROGRESS), make_todo("real", "real work")]
    )

    assert result.skipped == ["ghost"]
    assert [t.id for t in result.added] == ["real"]
    assert store.find_partition("ghost") is None


def test_sync_status_only_update_graduates_staged_todo(store):
    store.add_session_todo(make_todo("st", "staged work"))

    result = store.sync([SessionTodoUpdate("st", status=TodoStatus.IN_PROGRESS)])

    assert [t.id for t in result.added] == ["st"]
    todo = store.get("st")
    assert store.find_partition("st") is Partition.PROJECT
    assert todo.content == "staged work"
    assert todo.status is TodoStatus.IN_PROGRESS


def test_promote_session_todo(store):
    store.add_session_todo(make_todo("p1", "Add search endpoint"))
    promoted = store.promote("p1", category="backend")

    assert promoted.category == "backend"
    assert store.find_partition("p1") is Partition.PROJECT
    assert store.partitions.session == []


def test_promote_unknown_id_raises(store):
    """sessionにないIDの昇格はTodoNotFoundError"""
    store.partitions.project.append(make_todo("proj"))

    with pytest.raises(TodoNotFoundError) as excinfo:
        store.promote("proj")
    assert "session todo with ID proj not found" in str(excinfo.value)

    with pytest.raises(KeyError):
        store.promote("missing")


def test_complete_unblocks_dependents(store):
    """依存Todoがすべて完了したときだけblocked→pending"""
    store.partitions.project.extend(
        [
            make_todo("A"),
            make_todo("X"),
            make_todo("B", status=TodoStatus.BLOCKED, dependencies=["A"]),
            make_todo("C", status=TodoStatus.BLOCKED, dependencies=["A", "X"]),
        ]
    )
    store.partitions.future.append(make_todo("F", status=TodoStatus.BLOCKED, dependencies=["A"]))

    store.complete("A", reason="manual")

    assert store.get("B").status is TodoStatus.PENDING
    assert store.get("F").status is TodoStatus.PENDING
    assert store.get("C").status is TodoStatus.BLOCKED

    store.complete("X")
    assert store.get("C").status is TodoStatus.PENDING


def test_complete_unknown_id_raises(store):
    with pytest.raises(TodoNotFoundError):
        store.complete("nope")


def test_complete_is_idempotent_for_archived(store):
    store.partitions.project.append(make_todo("i"))
    first = store.complete("i")
    completed_at = first.completed_at

    again = store.complete("i")

    assert again.completed_at == completed_at
    assert again.tags == ["completed: manual"]


def test_replace_future_skips_known_ids(store):
    store.partitions.project.append(make_todo("known"))
    imported = store.replace_future(
        [make_todo("known"), make_todo("new"), make_todo("done", status=TodoStatus.COMPLETED)]
    )

    assert imported == 2
    assert [t.id for t in store.partitions.future] == ["new"]
    assert [t.id for t in store.partitions.archived] == ["done"]


def test_save_and_load_round_trip(tmp_path, clock):
    path = tmp_path / "todos.json"
    store = TodoStore(path, backup_enabled=False, clock=clock)
    store.partitions.project.append(make_todo("r1", "Persist me", tags=["x"], estimated_hours=2.0))
    store.partitions.archived.append(
        make_todo("r2", status=TodoStatus.COMPLETED, completed_at=NOW - timedelta(days=1))
    )
    store.watermark = NOW
    store.save()

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["format_version"] == 2

    reloaded = TodoStore(path, clock=clock)
    assert reloaded.load()
    assert reloaded.watermark == NOW
    assert reloaded.get("r1").tags == ["x"]
    assert reloaded.get("r1").created_at == NOW - timedelta(days=3)
    assert reloaded.find_partition("r2") is Partition.ARCHIVED
    assert reloaded.get("r2").completed_at == NOW - timedelta(days=1)


def test_backups_are_rotated(tmp_path):
    """保存ごとにバックアップを作成し、max_backups件に制限"""
    ticks = count()
    store = TodoStore(
        tmp_path / "todos.json",
        max_backups=2,
        clock=lambda: NOW + timedelta(seconds=next(ticks)),
    )
    for _ in range(4):
        store.save()

    backups = sorted(tmp_path.glob("todos.json.backup.*"))
    assert len(backups) == 2
    assert not (tmp_path / "todos.json.tmp").exists()


def test_load_corrupt_file_starts_empty(tmp_path, clock):
    path = tmp_path / "todos.json"
    path.write_text("{not json", encoding="utf-8")
    store = TodoStore(path, clock=clock)

    assert store.load() is False
    assert store.all_todos() == []


def test_load_legacy_document(tmp_path, clock):
    """旧形式（camelCaseキー・日付オブジェクト）の読み込み"""
    path = tmp_path / "todos.json"
    legacy = {
        "projectTodos": [
            {
                "id": "old1",
                "content": "Legacy task",
                "status": "in_progress",
                "priority": "high",
                "createdAt": {"__type": "Date", "value": "2024-05-01T09:00:00.000Z"},
                "updatedAt": {"__type": "Date", "value": "2024-05-02T09:00:00.000Z"},
                "completionPatterns": [{"type": "file_exists", "pattern": "src/a.ts", "confidence": 0.8}],
            }
        ],
        "archivedTodos": [],
    }
    path.write_text(json.dumps(legacy), encoding="utf-8")
    store = TodoStore(path, clock=clock)

    assert store.load()
    todo = store.get("old1")
    assert todo.status is TodoStatus.IN_PROGRESS
    assert todo.created_at.year == 2024 and todo.created_at.month == 5
    assert todo.completion_patterns[0].pattern == "src/a.ts"


def test_save_failure_raises(tmp_path, clock):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    store = TodoStore(blocker / "todos.json", clock=clock)

    with pytest.raises(StorePersistenceError):
        store.save()
