"""
Todoオーケストレーター

ストア・バックログ文書・完了検出・分析をまとめる呼び出し側所有のハンドル。
CLI・スケジューラー・HTTPサーフェスはすべてこのクラスの操作を呼び出す。

Design Reference: DESIGN.md (Orchestrator)
関連クラス:
  - store.TodoStore: パーティション管理と永続化
  - backlog.BacklogDocument: FUTURE_TODO.md の読み書き
  - detection.CompletionDetector: 完了判定
  - analytics.AnalyticsEngine: 分析
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .analytics import AnalyticsEngine
from .backlog import BacklogDocument
from .config import Config
from .detection import CompletionDetector
from .models import (
    DetectionResult,
    ProgressReport,
    SessionTodoUpdate,
    SuggestedAction,
    SyncResult,
    Todo,
    TodoPriority,
    TodoStatus,
    utcnow,
)
from .store import TodoStore
from .vcs import GitCommandReader, VersionControlReader

logger = logging.getLogger(__name__)

# run_completion_detection が呼び出し元に返す最低信頼度
REPORT_MIN_CONFIDENCE = 0.7
DEFAULT_AUTO_APPLY_THRESHOLD = 0.9
MAX_CONTEXTUAL_SUGGESTIONS = 3
SUGGESTION_PRIORITIES = (TodoPriority.CRITICAL, TodoPriority.HIGH)


class TodoOrchestrator:
    """Todoライフサイクル全体を調整するクラス"""

    def __init__(
        self,
        config: Optional[Config] = None,
        reader: Optional[VersionControlReader] = None,
        store: Optional[TodoStore] = None,
        backlog: Optional[BacklogDocument] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        初期化

        Args:
            config: 設定（省略時はデフォルト設定）
            reader: バージョン管理リーダー（省略時はGitCommandReader）
            store: Todoストア（省略時は設定のdata_pathから生成）
            backlog: バックログ文書（省略時は設定のbacklog_pathから生成）
            clock: 現在時刻の取得関数
        """
        self.config = config or Config()
        self.clock = clock
        self.reader = reader or GitCommandReader(
            self.config.root,
            timeout=self.config.vcs.timeout_seconds,
            strict=self.config.vcs.strict,
        )
        self.store = store or TodoStore(
            self.config.data_path,
            backup_enabled=self.config.store.backup_enabled,
            max_backups=self.config.store.max_backups,
            clock=clock,
        )
        self.backlog = backlog or BacklogDocument(self.config.backlog_path, clock=clock)
        self.detector = CompletionDetector(self.reader, clock=clock)
        self.analytics = AnalyticsEngine()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # ライフサイクル
    # ------------------------------------------------------------------

    def initialize(self, run_detection: Optional[bool] = None) -> None:
        """
        永続化状態とバックログ文書を読み込む

        Args:
            run_detection: 初期化直後に検出を1回実行するか（省略時はauto_detection_enabled）
        """
        self.store.load()
        imported = self.store.replace_future(self.backlog.parse())
        logger.info(
            f"Loaded {len(self.store.all_todos())} todos ({imported} from {self.backlog.path.name})"
        )
        self.store.save()
        self._initialized = True

        if run_detection is None:
            run_detection = self.config.auto_detection_enabled
        if run_detection:
            self.run_completion_detection()

    def shutdown(self) -> None:
        """状態を保存して終了"""
        if not self._initialized:
            return
        self.store.save()
        self._initialized = False
        logger.info("Todo orchestrator shut down")

    # ------------------------------------------------------------------
    # セッション連携
    # ------------------------------------------------------------------

    def sync_session_todos(self, todos: Iterable[Union[Todo, SessionTodoUpdate]]) -> SyncResult:
        """セッションTodoをプロジェクトTodoへ同期"""
        result = self.store.sync(todos)
        self.store.watermark = self.clock()
        self.store.save()
        self.export_backlog()

        for conflict in result.conflicts:
            logger.warning(
                f"Sync conflict on {conflict.todo_id}: {conflict.kind} "
                f"(recommendation: {conflict.recommendation})"
            )
        logger.info(
            f"Synced session todos: {len(result.added)} added, {len(result.updated)} updated, "
            f"{len(result.conflicts)} conflicts, {len(result.skipped)} skipped"
        )
        return result

    def stage_session_todos(self, todos: Iterable[Todo]) -> int:
        """
        セッションTodoをsessionパーティションに登録（昇格は行わない）

        Returns:
            新規に登録した件数
        """
        staged = sum(1 for todo in todos if self.store.add_session_todo(todo))
        self.store.save()
        return staged

    def promote_session_todo(self, todo_id: str, category: Optional[str] = None) -> Todo:
        """
        sessionパーティションのTodoをprojectへ昇格

        Raises:
            TodoNotFoundError: sessionパーティションに該当IDがない場合
        """
        todo = self.store.promote(todo_id, category)
        self.store.save()
        logger.info(f"Promoted session todo {todo_id} to project ({todo.category})")
        return todo

    # ------------------------------------------------------------------
    # 完了検出
    # ------------------------------------------------------------------

    def run_completion_detection(
        self, auto_apply_threshold: float = DEFAULT_AUTO_APPLY_THRESHOLD
    ) -> List[DetectionResult]:
        """
        プロジェクトTodoの完了検出を1サイクル実行

        auto_apply_thresholdを超えるmark_completed結果は自動で完了にする。

        Returns:
            信頼度0.7超の検出結果
        """
        if not self.config.auto_detection_enabled:
            logger.debug("Auto detection disabled, skipping detection cycle")
            return []

        commits = []
        if self.config.vcs.enabled:
            commits = self.reader.recent_commits(
                self.store.watermark, max_count=self.config.vcs.max_commits
            )

        results: List[DetectionResult] = []
        for todo in [t for t in self.store.partitions.project if t.is_active]:
            result = self.detector.check(todo, commits)
            if result is None:
                continue
            results.append(result)

        applied = 0
        for result in results:
            if (
                result.confidence > auto_apply_threshold
                and result.suggested_action is SuggestedAction.MARK_COMPLETED
            ):
                todo = self.store.complete(result.todo_id, reason=f"auto-detected ({result.detection_type})")
                if result.commit_hash and result.commit_hash not in todo.commit_hashes:
                    todo.commit_hashes.append(result.commit_hash)
                logger.info(f"Auto-completed todo {todo.id}: {result.evidence}")
                applied += 1

        if applied:
            self.store.save()
            self.export_backlog()

        reported = [r for r in results if r.confidence > REPORT_MIN_CONFIDENCE]
        logger.debug(
            f"Detection cycle: {len(commits)} commits, {len(reported)} detections, {applied} auto-completed"
        )
        return reported

    def mark_todo_completed(self, todo_id: str, reason: Optional[str] = None) -> Todo:
        """
        Todoを手動で完了にする

        Raises:
            TodoNotFoundError: 該当IDが存在しない場合
        """
        todo = self.store.complete(todo_id, reason)
        self.store.save()
        self.export_backlog()
        logger.info(f"Marked todo {todo_id} as completed")
        return todo

    # ------------------------------------------------------------------
    # レポート・分析
    # ------------------------------------------------------------------

    def generate_progress_report(self, now: Optional[datetime] = None) -> ProgressReport:
        """project + archived を対象に進捗レポートを生成"""
        now = now or self.clock()
        partitions = self.store.partitions
        tracked = [*partitions.project, *partitions.archived]
        completed = [t for t in tracked if t.status is TodoStatus.COMPLETED]

        week_ago = now - timedelta(days=7)
        recent = sorted(
            (t for t in completed if t.completed_at and t.completed_at > week_ago),
            key=lambda t: t.completed_at,
            reverse=True,
        )
        velocity = max(len(recent), 1)

        hours = [t.actual_hours for t in completed if t.actual_hours]
        average_hours = sum(hours) / len(hours) if hours else 0.0

        remaining = sum(1 for t in tracked if t.is_active)
        estimated_completion = now + timedelta(weeks=remaining / velocity)

        upcoming = sorted(
            (
                t
                for t in partitions.project
                if t.status is TodoStatus.PENDING and self.store.is_unblocked(t)
            ),
            key=lambda t: (-t.priority.rank, t.created_at),
        )[:10]

        return ProgressReport(
            total_todos=len(tracked),
            completed_todos=len(completed),
            completion_rate=len(completed) / len(tracked) if tracked else 0.0,
            average_completion_time=average_hours,
            velocity=velocity,
            estimated_completion=estimated_completion,
            blocked_todos=[t for t in partitions.project if t.status is TodoStatus.BLOCKED],
            upcoming_todos=upcoming,
            recently_completed=recent[:10],
        )

    def get_analytics(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return self.analytics.generate(self.store.partitions, now or self.clock())

    def get_insights(self) -> List[str]:
        return self.analytics.generate_insights(self.get_analytics())

    def get_smart_suggestions(
        self, file_paths: Optional[Iterable[str]] = None, limit: int = 5
    ) -> List[Todo]:
        """
        次に着手すべきTodoを提案

        優先度high/criticalでブロックされていないpending Todoを返す。
        file_pathsを指定した場合、関連ファイルが重なるTodoを最大3件先頭に置く。
        """
        candidates = sorted(
            (
                t
                for t in self.store.partitions.project
                if t.status is TodoStatus.PENDING
                and t.priority in SUGGESTION_PRIORITIES
                and self.store.is_unblocked(t)
            ),
            key=lambda t: (-t.priority.rank, t.created_at),
        )

        suggestions: List[Todo] = []
        paths = list(file_paths or [])
        if paths:
            suggestions = [
                t
                for t in candidates
                if any(fp in p or p in fp for fp in t.file_paths for p in paths)
            ][:MAX_CONTEXTUAL_SUGGESTIONS]

        for todo in candidates:
            if todo not in suggestions:
                suggestions.append(todo)
        return suggestions[:limit]

    def list_todos(
        self,
        status: Optional[TodoStatus] = None,
        priority: Optional[TodoPriority] = None,
        category: Optional[str] = None,
        limit: int = 20,
    ) -> List[Todo]:
        """条件に一致するTodoを優先度順に返す"""
        todos = [
            t
            for t in self.store.all_todos()
            if (status is None or t.status is TodoStatus(status))
            and (priority is None or t.priority is TodoPriority(priority))
            and (category is None or t.category == category)
        ]
        todos.sort(key=lambda t: (-t.priority.rank, t.created_at))
        return todos[:limit]

    def export_backlog(self) -> None:
        """管理中Todoの状態をバックログ文書に書き戻す"""
        self.backlog.write(self.store.partitions.project, self.store.partitions.archived)
