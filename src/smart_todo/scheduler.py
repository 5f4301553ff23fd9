"""
バックグラウンドスケジューラー

完了検出（既定5分）とバックログ同期（既定15分）を定期実行し、
ファイル変更時にはデバウンスした検出サイクルを追加で起動する。
ヘルスチェック用HTTPサーバーを同じプロセス内で公開する。

Design Reference: DESIGN.md (Background Scheduler)
関連クラス:
  - orchestrator.TodoOrchestrator: 各サイクルで呼び出す操作
  - server.run.HealthServer: /health /stats /progress を提供
"""

from __future__ import annotations

import logging
import os
import signal
import threading
import time
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import psutil
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import SchedulerConfig
from .logger import close_daily_log, open_daily_log
from .models import DetectionResult, ProgressReport, SuggestedAction, utcnow
from .orchestrator import TodoOrchestrator
from .server import HealthServer, create_app

logger = logging.getLogger(__name__)

EXCLUDED_DIRS = frozenset(
    [".git", "node_modules", "dist", "build", "coverage", ".todo-data", "__pycache__", ".venv"]
)


class SchedulerState(str, Enum):
    """スケジューラーの状態"""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class _ChangeHandler(FileSystemEventHandler):
    """ファイル作成・更新イベントをスケジューラーへ渡す"""

    def __init__(self, scheduler: "BackgroundScheduler"):
        super().__init__()
        self.scheduler = scheduler

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.scheduler.on_file_changed(os.fsdecode(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.scheduler.on_file_changed(os.fsdecode(event.src_path))


class BackgroundScheduler:
    """検出・同期サイクルを定期実行するスケジューラークラス"""

    def __init__(
        self,
        orchestrator: TodoOrchestrator,
        config: Optional[SchedulerConfig] = None,
        log_dir: Optional[Path] = None,
        health_enabled: bool = True,
    ):
        """
        初期化

        Args:
            orchestrator: 操作対象のオーケストレーター
            config: スケジューラー設定（省略時はorchestratorの設定）
            log_dir: 日付付きログファイルの出力先（Noneの場合は出力しない）
            health_enabled: ヘルスチェックHTTPサーバーを起動するか
        """
        self.orchestrator = orchestrator
        self.config = config or orchestrator.config.scheduler
        self.log_dir = log_dir
        self.health_enabled = health_enabled
        self.project_root = orchestrator.config.root

        # 状態管理
        self._state = SchedulerState.STOPPED
        self._lock = threading.Lock()
        # 実行中サイクルのガード（同時に1サイクルのみストアを変更する）
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()

        self._healthy = True
        self._started_at: Optional[float] = None
        self._last_detection: Optional[datetime] = None
        self._last_sync: Optional[datetime] = None
        self._detections = 0
        self._auto_completions = 0
        self._errors = 0
        self._skipped_cycles = 0

        # スレッド・リソース
        self._timers: List[threading.Thread] = []
        self._debounce: Optional[threading.Timer] = None
        self._observer: Optional[Any] = None
        self._log_handler: Optional[logging.Handler] = None
        self.health_server: Optional[HealthServer] = None

    @property
    def state(self) -> SchedulerState:
        with self._lock:
            return self._state

    @property
    def healthy(self) -> bool:
        with self._lock:
            return self._healthy

    # ------------------------------------------------------------------
    # ライフサイクル
    # ------------------------------------------------------------------

    def start(self) -> None:
        """スケジューラーを開始（ヘルスサーバー → 初期化 → タイマー・監視）"""
        with self._lock:
            if self._state is not SchedulerState.STOPPED:
                logger.warning("Scheduler is already running")
                return
            self._state = SchedulerState.STARTING
            self._stop_event.clear()
            self._healthy = True
            self._started_at = time.monotonic()

        if self.log_dir is not None:
            self._log_handler = open_daily_log(Path(self.log_dir))

        if self.health_enabled:
            self.health_server = HealthServer(
                create_app(self), host=self.config.health_host, port=self.config.health_port
            )
            try:
                self.health_server.start()
            except Exception:
                self.health_server = None
                self._release_log_handler()
                with self._lock:
                    self._state = SchedulerState.STOPPED
                raise

        try:
            self.orchestrator.initialize(run_detection=False)
        except Exception as exc:
            logger.error(f"Orchestrator initialization failed: {exc}", exc_info=True)
            with self._lock:
                self._healthy = False
                self._errors += 1
                self._state = SchedulerState.RUNNING
            return

        self._start_timer(
            "detect",
            self.config.initial_detect_delay_seconds,
            self.config.detect_interval_seconds,
            self.run_detection_cycle,
        )
        self._start_timer(
            "sync",
            self.config.initial_sync_delay_seconds,
            self.config.sync_interval_seconds,
            self.run_sync_cycle,
        )
        if self.config.file_watch_enabled:
            self._start_watcher()

        with self._lock:
            self._state = SchedulerState.RUNNING
        logger.info(
            f"Smart todo scheduler started (detect every {self.config.detect_interval_seconds}s, "
            f"sync every {self.config.sync_interval_seconds}s)"
        )

    def stop(self) -> None:
        """スケジューラーを停止"""
        with self._lock:
            if self._state in (SchedulerState.STOPPED, SchedulerState.STOPPING):
                logger.warning("Scheduler is not running")
                return
            self._state = SchedulerState.STOPPING
            debounce, self._debounce = self._debounce, None
        logger.info("Stopping smart todo scheduler...")

        self._stop_event.set()
        if debounce is not None:
            debounce.cancel()

        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=2.0)
            self._observer = None

        # 実行中サイクルの終了を一定時間だけ待つ
        drained = self._cycle_lock.acquire(timeout=self.config.drain_timeout_seconds)
        if drained:
            self._cycle_lock.release()
        else:
            logger.warning("In-flight cycle did not finish within drain timeout")

        if debounce is not None:
            self._timers.append(debounce)
        for thread in self._timers:
            thread.join(timeout=self.config.drain_timeout_seconds)
        self._timers = []

        if self.orchestrator.initialized:
            try:
                self.orchestrator.shutdown()
            except Exception as exc:
                logger.error(f"Failed to save state on shutdown: {exc}", exc_info=True)

        if self.health_server is not None:
            self.health_server.stop()
            self.health_server = None

        with self._lock:
            self._state = SchedulerState.STOPPED
        logger.info("Smart todo scheduler stopped")
        self._release_log_handler()

    def run_forever(self) -> None:
        """SIGINT/SIGTERMを受けるまで実行"""

        def signal_handler(sig, frame):
            logger.info("Received shutdown signal, stopping scheduler...")
            self._stop_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        self.start()
        try:
            while not self._stop_event.wait(1.0):
                pass
        finally:
            self.stop()

    # ------------------------------------------------------------------
    # サイクル
    # ------------------------------------------------------------------

    def run_detection_cycle(self) -> Optional[List[DetectionResult]]:
        """
        完了検出を1サイクル実行

        Returns:
            検出結果。他のサイクル実行中でスキップした場合・失敗した場合はNone
        """
        if not self._cycle_lock.acquire(blocking=False):
            with self._lock:
                self._skipped_cycles += 1
            logger.debug("Detection cycle skipped: another cycle is running")
            return None

        try:
            threshold = self.config.auto_complete_threshold
            results = self.orchestrator.run_completion_detection(auto_apply_threshold=threshold)
            applied = sum(
                1
                for r in results
                if r.confidence > threshold and r.suggested_action is SuggestedAction.MARK_COMPLETED
            )
            with self._lock:
                self._detections += len(results)
                self._auto_completions += applied
                self._last_detection = utcnow()
            if results:
                logger.info(f"Detection cycle: {len(results)} detections, {applied} auto-completed")
            return results
        except Exception as exc:
            logger.error(f"Detection cycle failed: {exc}", exc_info=True)
            with self._lock:
                self._errors += 1
            return None
        finally:
            self._cycle_lock.release()

    def run_sync_cycle(self) -> bool:
        """バックログ文書を書き戻し、進捗スナップショットを記録"""
        if not self._cycle_lock.acquire(blocking=False):
            with self._lock:
                self._skipped_cycles += 1
            logger.debug("Sync cycle skipped: another cycle is running")
            return False

        try:
            self.orchestrator.export_backlog()
            report = self.orchestrator.generate_progress_report()
            logger.info(
                f"Progress: {report.completed_todos}/{report.total_todos} completed "
                f"({report.completion_rate * 100:.1f}%), velocity {report.velocity}/week"
            )
            if report.blocked_todos:
                logger.warning(f"{len(report.blocked_todos)} todos are blocked")
            with self._lock:
                self._last_sync = utcnow()
            return True
        except Exception as exc:
            logger.error(f"Sync cycle failed: {exc}", exc_info=True)
            with self._lock:
                self._errors += 1
            return False
        finally:
            self._cycle_lock.release()

    def _start_timer(
        self, name: str, initial_delay: float, interval: float, task: Callable[[], Any]
    ) -> None:
        def loop() -> None:
            delay = initial_delay
            while not self._stop_event.wait(delay):
                task()
                delay = interval

        thread = threading.Thread(target=loop, daemon=True, name=f"smart-todo-{name}-timer")
        self._timers.append(thread)
        thread.start()

    # ------------------------------------------------------------------
    # ファイル監視
    # ------------------------------------------------------------------

    def _start_watcher(self) -> None:
        observer = Observer()
        observer.schedule(_ChangeHandler(self), str(self.project_root), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info(f"Watching {self.project_root} for file changes")

    def is_watched(self, path: str) -> bool:
        """除外ディレクトリ配下でなければTrue"""
        try:
            parts = Path(path).resolve().relative_to(self.project_root).parts
        except ValueError:
            return False
        return not any(part in EXCLUDED_DIRS for part in parts)

    def on_file_changed(self, path: str) -> None:
        """ファイル変更を受け取り、デバウンス後に検出サイクルを起動"""
        if not self.is_watched(path):
            return
        with self._lock:
            if self._state is not SchedulerState.RUNNING or self._stop_event.is_set():
                return
            if self._debounce is not None:
                self._debounce.cancel()
            self._debounce = threading.Timer(self.config.debounce_seconds, self._debounced_detection)
            self._debounce.daemon = True
            self._debounce.name = "smart-todo-debounce"
            self._debounce.start()
        logger.debug(f"File changed: {path}")

    def _debounced_detection(self) -> None:
        if not self._stop_event.is_set():
            self.run_detection_cycle()

    # ------------------------------------------------------------------
    # 状態
    # ------------------------------------------------------------------

    def get_analytics(self) -> Dict[str, Any]:
        """実行中のサイクルが終わるのを待ってから分析データを取得"""
        with self._cycle_lock:
            return self.orchestrator.get_analytics()

    def get_progress_report(self) -> ProgressReport:
        """実行中のサイクルが終わるのを待ってから進捗レポートを取得"""
        with self._cycle_lock:
            return self.orchestrator.generate_progress_report()

    def get_status(self) -> Dict[str, Any]:
        """現在の状態を取得"""
        with self._lock:
            uptime = time.monotonic() - self._started_at if self._started_at else 0.0
            return {
                "status": "healthy" if self._healthy else "unhealthy",
                "state": self._state.value,
                "healthy": self._healthy,
                "uptime_seconds": round(uptime, 3),
                "last_detection": self._last_detection.isoformat() if self._last_detection else None,
                "last_sync": self._last_sync.isoformat() if self._last_sync else None,
                "detections": self._detections,
                "auto_completions": self._auto_completions,
                "errors": self._errors,
                "skipped_cycles": self._skipped_cycles,
                "memory_rss_mb": psutil.Process().memory_info().rss / 1024 / 1024,
                "config": {
                    "detect_interval_seconds": self.config.detect_interval_seconds,
                    "sync_interval_seconds": self.config.sync_interval_seconds,
                    "file_watch_enabled": self.config.file_watch_enabled,
                    "auto_complete_threshold": self.config.auto_complete_threshold,
                },
            }

    def _release_log_handler(self) -> None:
        if self._log_handler is not None:
            close_daily_log(self._log_handler)
            self._log_handler = None
