"""Todoドメインモデル

Design Reference: DESIGN.md (データモデル)
Related Classes:
  - store.TodoStore: パーティション管理と永続化
  - detection.CompletionDetector: 完了判定
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


def utcnow() -> datetime:
    """タイムゾーン付きの現在時刻（UTC）"""
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class TodoStatus(str, Enum):
    """Todoステータス"""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class TodoPriority(str, Enum):
    """Todo優先度"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]


PRIORITY_RANK = {
    TodoPriority.CRITICAL: 4,
    TodoPriority.HIGH: 3,
    TodoPriority.MEDIUM: 2,
    TodoPriority.LOW: 1,
}


class PatternKind(str, Enum):
    """完了パターンの種類"""

    FILE_EXISTS = "file_exists"
    FILE_CONTAINS = "file_contains"
    COMMIT_MESSAGE = "commit_message"
    BUILD_SUCCESS = "build_success"
    TEST_PASS = "test_pass"


class SuggestedAction(str, Enum):
    """検出結果に対する推奨アクション"""

    MARK_COMPLETED = "mark_completed"
    UPDATE_PROGRESS = "update_progress"
    ADD_METADATA = "add_metadata"


class Partition(str, Enum):
    """Todoの所属パーティション"""

    SESSION = "session"
    PROJECT = "project"
    FUTURE = "future"
    ARCHIVED = "archived"


@dataclass(slots=True)
class CompletionPattern:
    """Todoの完了を判定する宣言的ルール"""

    kind: PatternKind
    pattern: str
    confidence: float

    def __post_init__(self) -> None:
        self.kind = PatternKind(self.kind)
        if not 0 < self.confidence <= 1:
            raise ValueError(f"confidence must be in (0, 1], got {self.confidence}")

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "pattern": self.pattern, "confidence": self.confidence}


@dataclass(slots=True)
class Todo:
    """バックログの作業単位"""

    id: str
    content: str
    status: TodoStatus = TodoStatus.PENDING
    priority: TodoPriority = TodoPriority.MEDIUM
    category: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    dependencies: List[str] = field(default_factory=list)
    file_paths: List[str] = field(default_factory=list)
    completion_patterns: List[CompletionPattern] = field(default_factory=list)
    session_id: Optional[str] = None
    commit_hashes: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.status = TodoStatus(self.status)
        self.priority = TodoPriority(self.priority)

    @property
    def is_active(self) -> bool:
        """pending / in_progress のTodoのみ検出対象"""
        return self.status in (TodoStatus.PENDING, TodoStatus.IN_PROGRESS)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "status": self.status.value,
            "priority": self.priority.value,
            "category": self.category,
            "tags": list(self.tags),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "dependencies": list(self.dependencies),
            "file_paths": list(self.file_paths),
            "completion_patterns": [p.to_dict() for p in self.completion_patterns],
            "session_id": self.session_id,
            "commit_hashes": list(self.commit_hashes),
        }


@dataclass(slots=True)
class CommitInfo:
    """gitコミット情報（毎サイクル再取得、永続化しない）"""

    hash: str
    message: str
    author: str
    timestamp: datetime
    changed_files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "message": self.message,
            "author": self.author,
            "timestamp": _iso(self.timestamp),
            "changed_files": list(self.changed_files),
        }


@dataclass(slots=True)
class DetectionResult:
    """1サイクル分の完了検出結果"""

    todo_id: str
    detection_type: str
    confidence: float
    evidence: str
    suggested_action: SuggestedAction
    commit_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "todo_id": self.todo_id,
            "detection_type": self.detection_type,
            "confidence": self.confidence,
            "evidence": self.evidence,
            "suggested_action": self.suggested_action.value,
            "commit_hash": self.commit_hash,
        }


@dataclass(slots=True)
class SessionTodoUpdate:
    """
    セッションから届いたTodoレコード

    レコードに含まれなかったフィールドはNoneのまま保持し、既存Todoへのマージでは上書きしない。
    record は未知IDをプロジェクトTodoとして追加するときに使う完全なTodo（contentがある場合のみ）。
    """

    id: str
    content: Optional[str] = None
    status: Optional[TodoStatus] = None
    actual_hours: Optional[float] = None
    record: Optional[Todo] = None

    @classmethod
    def from_todo(cls, todo: Todo) -> "SessionTodoUpdate":
        return cls(todo.id, todo.content, todo.status, todo.actual_hours, todo)


@dataclass(slots=True)
class TodoConflict:
    """同期時に検出した自動解決しない競合"""

    todo_id: str
    kind: str  # status_mismatch | content_changed | duplicate
    session_value: Any
    project_value: Any
    recommendation: str  # use_session | use_project | merge | manual_review

    def to_dict(self) -> Dict[str, Any]:
        return {
            "todo_id": self.todo_id,
            "kind": self.kind,
            "session_value": self.session_value,
            "project_value": self.project_value,
            "recommendation": self.recommendation,
        }


@dataclass(slots=True)
class SyncResult:
    """セッションTodo同期の結果"""

    added: List[Todo] = field(default_factory=list)
    updated: List[Todo] = field(default_factory=list)
    completed: List[Todo] = field(default_factory=list)
    conflicts: List[TodoConflict] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)  # contentがなく追加できなかった未知ID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": [t.to_dict() for t in self.added],
            "updated": [t.to_dict() for t in self.updated],
            "completed": [t.to_dict() for t in self.completed],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "skipped": list(self.skipped),
        }


@dataclass(slots=True)
class ProgressReport:
    """進捗レポート"""

    total_todos: int
    completed_todos: int
    completion_rate: float
    average_completion_time: float  # 時間
    velocity: int  # 直近7日間の完了数（最低1）
    estimated_completion: datetime
    blocked_todos: List[Todo] = field(default_factory=list)
    upcoming_todos: List[Todo] = field(default_factory=list)
    recently_completed: List[Todo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_todos": self.total_todos,
            "completed_todos": self.completed_todos,
            "completion_rate": self.completion_rate,
            "average_completion_time": self.average_completion_time,
            "velocity": self.velocity,
            "estimated_completion": _iso(self.estimated_completion),
            "blocked_todos": [t.to_dict() for t in self.blocked_todos],
            "upcoming_todos": [t.to_dict() for t in self.upcoming_todos],
            "recently_completed": [t.to_dict() for t in self.recently_completed],
        }


@dataclass(slots=True)
class PartitionSet:
    """4つの互いに素なTodoコレクション"""

    session: List[Todo] = field(default_factory=list)
    project: List[Todo] = field(default_factory=list)
    future: List[Todo] = field(default_factory=list)
    archived: List[Todo] = field(default_factory=list)

    def bucket(self, partition: Partition) -> List[Todo]:
        return getattr(self, Partition(partition).value)

    def items(self) -> Iterator[tuple[Partition, List[Todo]]]:
        for partition in Partition:
            yield partition, self.bucket(partition)

    def all_todos(self) -> List[Todo]:
        return [*self.session, *self.project, *self.future, *self.archived]
