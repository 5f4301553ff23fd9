"""
Todoストア

session / project / future / archived の4パーティションを管理し、
セッションTodoの同期・昇格・完了遷移と永続化を提供する。

Design Reference: DESIGN.md (Todo Store)
Related Classes:
  - serialization: 保存文書の変換
  - detection.generate_completion_patterns: 昇格時のパターン生成
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple, Union

from .detection import generate_completion_patterns
from .exceptions import StorePersistenceError, TodoNotFoundError
from .models import (
    Partition,
    PartitionSet,
    SessionTodoUpdate,
    SyncResult,
    Todo,
    TodoConflict,
    TodoStatus,
    utcnow,
)
from .serialization import decode_document, encode_document

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "development"


class TodoStore:
    """JSON文書ベースのTodoパーティション管理"""

    def __init__(
        self,
        data_path: Path,
        backup_enabled: bool = True,
        max_backups: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        初期化

        Args:
            data_path: 保存先JSONファイル
            backup_enabled: 保存ごとにタイムスタンプ付きバックアップを作成
            max_backups: 保持するバックアップ数
            clock: 現在時刻の取得関数
        """
        self.data_path = Path(data_path)
        self.backup_enabled = backup_enabled
        self.max_backups = max_backups
        self.clock = clock
        self.partitions = PartitionSet()
        self.watermark: Optional[datetime] = None

    # ------------------------------------------------------------------
    # 参照
    # ------------------------------------------------------------------

    def locate(self, todo_id: str) -> Optional[Tuple[Partition, Todo]]:
        for partition, todos in self.partitions.items():
            for todo in todos:
                if todo.id == todo_id:
                    return partition, todo
        return None

    def get(self, todo_id: str) -> Todo:
        """
        IDでTodoを取得

        Raises:
            TodoNotFoundError: 該当IDが存在しない場合
        """
        found = self.locate(todo_id)
        if not found:
            raise TodoNotFoundError(todo_id)
        return found[1]

    def find_partition(self, todo_id: str) -> Optional[Partition]:
        found = self.locate(todo_id)
        return found[0] if found else None

    def all_todos(self) -> List[Todo]:
        return self.partitions.all_todos()

    def is_unblocked(self, todo: Todo) -> bool:
        """依存Todoがすべて完了しているか"""
        for dep_id in todo.dependencies:
            found = self.locate(dep_id)
            if not found or found[1].status is not TodoStatus.COMPLETED:
                return False
        return True

    # ------------------------------------------------------------------
    # 同期・昇格・完了
    # ------------------------------------------------------------------

    def add_session_todo(self, todo: Todo) -> bool:
        """未知のTodoをsessionパーティションに追加（既知IDは無視してFalse）"""
        if self.locate(todo.id):
            return False
        self.partitions.session.append(todo)
        return True

    def sync(self, session_todos: Iterable[Union[Todo, SessionTodoUpdate]]) -> SyncResult:
        """
        セッションTodoをプロジェクトTodoに統合

        未知IDはプロジェクトTodoとして追加し、既知IDはレコードに含まれる
        statusとactual_hoursのみ上書きする。競合は収集するが自動解決しない。
        contentのない未知IDは追加できないためskippedに記録する。

        Args:
            session_todos: セッションから受け取ったTodo、または部分更新

        Returns:
            同期結果
        """
        result = SyncResult()
        seen: set[str] = set()

        for item in session_todos:
            incoming = item if isinstance(item, SessionTodoUpdate) else SessionTodoUpdate.from_todo(item)
            if incoming.id in seen:
                result.conflicts.append(
                    TodoConflict(incoming.id, "duplicate", incoming.content, None, "use_session")
                )
                continue
            seen.add(incoming.id)

            found = self.locate(incoming.id)
            if found is None or found[0] is Partition.SESSION:
                record = incoming.record
                if record is None and found is not None:
                    staged = found[1]
                    record = replace(
                        staged,
                        status=incoming.status or staged.status,
                        actual_hours=(
                            incoming.actual_hours if incoming.actual_hours is not None else staged.actual_hours
                        ),
                    )
                if record is None:
                    logger.warning(f"Session todo {incoming.id} has no content, skipping")
                    result.skipped.append(incoming.id)
                    continue
                if found is not None:
                    self.partitions.session.remove(found[1])
                project_todo = self._graduate(record)
                self.partitions.project.append(project_todo)
                if project_todo.status is TodoStatus.COMPLETED:
                    self._archive(Partition.PROJECT, project_todo, reason=None)
                result.added.append(project_todo)
                continue

            partition, existing = found
            conflicts = self._merge(partition, existing, incoming)
            result.conflicts.extend(conflicts)
            result.updated.append(existing)
            if existing.status is TodoStatus.COMPLETED and incoming.status is TodoStatus.COMPLETED:
                result.completed.append(existing)

        return result

    def promote(self, todo_id: str, category: Optional[str] = None) -> Todo:
        """
        sessionパーティションのTodoをprojectへ移動

        Raises:
            TodoNotFoundError: sessionパーティションに該当IDがない場合
        """
        session_todo = next((t for t in self.partitions.session if t.id == todo_id), None)
        if session_todo is None:
            raise TodoNotFoundError(todo_id, Partition.SESSION.value)

        project_todo = self._graduate(session_todo, category)
        self.partitions.session.remove(session_todo)
        self.partitions.project.append(project_todo)
        return project_todo

    def complete(self, todo_id: str, reason: Optional[str] = None) -> Todo:
        """
        Todoを完了にしてarchivedへ移動し、依存Todoのブロックを解除

        Raises:
            TodoNotFoundError: 該当IDが存在しない場合
        """
        found = self.locate(todo_id)
        if not found:
            raise TodoNotFoundError(todo_id)
        partition, todo = found
        if partition is Partition.ARCHIVED and todo.status is TodoStatus.COMPLETED:
            return todo
        self._archive(partition, todo, reason or "manual")
        return todo

    def replace_future(self, todos: Iterable[Todo]) -> int:
        """
        バックログ文書から読んだTodoでfutureパーティションを置き換える

        他パーティションに既に存在するIDは取り込まない。完了済みはarchivedへ入れる。

        Returns:
            取り込んだ件数
        """
        self.partitions.future = []
        imported = 0
        for todo in todos:
            if self.locate(todo.id):
                continue
            if todo.status is TodoStatus.COMPLETED:
                self.partitions.archived.append(todo)
            else:
                self.partitions.future.append(todo)
            imported += 1
        return imported

    def _graduate(self, todo: Todo, category: Optional[str] = None) -> Todo:
        now = self.clock()
        return replace(
            todo,
            category=category or todo.category or DEFAULT_CATEGORY,
            created_at=todo.created_at or now,
            updated_at=now,
            tags=list(todo.tags),
            dependencies=list(todo.dependencies),
            file_paths=list(todo.file_paths),
            completion_patterns=list(todo.completion_patterns) or generate_completion_patterns(todo),
        )

    def _merge(
        self, partition: Partition, existing: Todo, incoming: SessionTodoUpdate
    ) -> List[TodoConflict]:
        conflicts: List[TodoConflict] = []

        if incoming.content and incoming.content != existing.content:
            conflicts.append(
                TodoConflict(existing.id, "content_changed", incoming.content, existing.content, "use_project")
            )

        if (
            partition is Partition.ARCHIVED
            and incoming.status is not None
            and incoming.status is not TodoStatus.COMPLETED
        ):
            conflicts.append(
                TodoConflict(
                    existing.id,
                    "status_mismatch",
                    incoming.status.value,
                    existing.status.value,
                    "manual_review",
                )
            )
            return conflicts

        if incoming.actual_hours is not None:
            existing.actual_hours = incoming.actual_hours
        existing.updated_at = self.clock()

        if incoming.status is not None and incoming.status is not existing.status:
            if incoming.status is TodoStatus.COMPLETED:
                self._archive(partition, existing, reason="session sync")
            else:
                existing.status = incoming.status
        return conflicts

    def _archive(self, partition: Partition, todo: Todo, reason: Optional[str]) -> None:
        now = self.clock()
        todo.status = TodoStatus.COMPLETED
        todo.completed_at = todo.completed_at or now
        todo.updated_at = now
        if reason:
            todo.tags.append(f"completed: {reason}")

        if partition is not Partition.ARCHIVED:
            self.partitions.bucket(partition).remove(todo)
            self.partitions.archived.append(todo)

        self._unblock_dependents(todo.id)

    def _unblock_dependents(self, completed_id: str) -> None:
        for todo in [*self.partitions.project, *self.partitions.future]:
            if completed_id not in todo.dependencies or todo.status is not TodoStatus.BLOCKED:
                continue
            if self.is_unblocked(todo):
                todo.status = TodoStatus.PENDING
                todo.updated_at = self.clock()
                logger.info(f"Todo {todo.id} unblocked by completion of {completed_id}")

    # ------------------------------------------------------------------
    # 永続化
    # ------------------------------------------------------------------

    def load(self) -> bool:
        """
        保存ファイルを読み込む

        ファイルがない・壊れている場合は空の状態で開始する（例外にしない）。

        Returns:
            読み込みに成功した場合True
        """
        if not self.data_path.exists():
            logger.info(f"No existing todo data at {self.data_path}, starting fresh")
            return False
        try:
            data = json.loads(self.data_path.read_text(encoding="utf-8"))
            self.partitions, self.watermark = decode_document(data)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning(f"Could not load todo data from {self.data_path}, starting fresh: {exc}")
            self.partitions = PartitionSet()
            self.watermark = None
            return False
        logger.debug(f"Loaded {len(self.all_todos())} todos from {self.data_path}")
        return True

    def save(self) -> None:
        """
        全パーティションを1文書として保存

        Raises:
            StorePersistenceError: 書き込みに失敗した場合
        """
        payload = json.dumps(
            encode_document(self.partitions, self.watermark), ensure_ascii=False, indent=2
        )
        try:
            self.data_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.data_path.with_name(self.data_path.name + ".tmp")
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self.data_path)
            if self.backup_enabled:
                self._write_backup(payload)
        except OSError as exc:
            raise StorePersistenceError(f"Failed to save todo data to {self.data_path}: {exc}") from exc

    def _write_backup(self, payload: str) -> None:
        stamp = self.clock().strftime("%Y%m%dT%H%M%S%f")
        backup_path = self.data_path.with_name(f"{self.data_path.name}.backup.{stamp}")
        backup_path.write_text(payload, encoding="utf-8")

        backups = sorted(self.data_path.parent.glob(f"{self.data_path.name}.backup.*"))
        for stale in backups[: max(len(backups) - self.max_backups, 0)]:
            stale.unlink(missing_ok=True)
