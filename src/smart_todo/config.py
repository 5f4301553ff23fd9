"""
設定管理モジュール

Design Reference: DESIGN.md (設定)
関連クラス:
  - orchestrator.TodoOrchestrator: この設定を使用するメインクラス
  - scheduler.BackgroundScheduler: スケジューラー設定を使用
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .exceptions import ConfigurationError


@dataclass
class VCSConfig:
    """gitコマンド設定"""

    enabled: bool = True
    timeout_seconds: float = 10.0
    # Trueの場合、git失敗を空結果ではなくVCSUnavailableErrorとして送出する
    strict: bool = False
    max_commits: int = 50


@dataclass
class StoreConfig:
    """Todoストア設定"""

    data_path: str = ".todo-data/todos.json"
    backlog_path: str = "FUTURE_TODO.md"
    backup_enabled: bool = True
    max_backups: int = 10


@dataclass
class SchedulerConfig:
    """バックグラウンドスケジューラー設定"""

    detect_interval_seconds: float = 300  # デフォルト5分
    sync_interval_seconds: float = 900  # デフォルト15分
    initial_detect_delay_seconds: float = 5
    initial_sync_delay_seconds: float = 10
    file_watch_enabled: bool = True
    debounce_seconds: float = 2.0
    auto_complete_threshold: float = 0.8
    drain_timeout_seconds: float = 5.0
    health_host: str = "127.0.0.1"
    health_port: int = 3001


@dataclass
class Config:
    """アプリケーション設定クラス"""

    project_root: str = "."
    auto_detection_enabled: bool = True

    vcs: VCSConfig = field(default_factory=VCSConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)

    # ログ設定
    log_level: str = "INFO"
    log_dir: str = ".todo-data/logs"

    @property
    def root(self) -> Path:
        return Path(self.project_root).resolve()

    def resolve(self, relative: str) -> Path:
        """プロジェクトルート基準でパスを解決"""
        path = Path(relative)
        return path if path.is_absolute() else self.root / path

    @property
    def data_path(self) -> Path:
        return self.resolve(self.store.data_path)

    @property
    def backlog_path(self) -> Path:
        return self.resolve(self.store.backlog_path)

    @property
    def log_path(self) -> Path:
        return self.resolve(self.log_dir)

    @classmethod
    def from_yaml(cls, config_path: Path, project_root: Optional[str] = None) -> "Config":
        """YAMLファイルから設定を読み込む

        Args:
            config_path: 設定ファイルパス
            project_root: 指定時はYAMLの値より優先

        Returns:
            Config: 設定インスタンス

        Raises:
            ConfigurationError: ファイルが読めない、または形式が不正な場合
        """
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_data: Dict[str, Any] = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"設定ファイルを読み込めません: {config_path}: {exc}") from exc

        if not isinstance(yaml_data, dict):
            raise ConfigurationError(f"設定ファイルの形式が不正です: {config_path}")

        vcs_data = yaml_data.get("vcs", {})
        store_data = yaml_data.get("store", {})
        scheduler_data = yaml_data.get("scheduler", {})
        log_data = yaml_data.get("log", {})

        try:
            return cls(
                project_root=project_root or yaml_data.get("project_root", "."),
                auto_detection_enabled=yaml_data.get("auto_detection_enabled", True),
                vcs=VCSConfig(**vcs_data),
                store=StoreConfig(**store_data),
                scheduler=SchedulerConfig(**scheduler_data),
                log_level=log_data.get("level", "INFO"),
                log_dir=log_data.get("dir", ".todo-data/logs"),
            )
        except TypeError as exc:
            raise ConfigurationError(f"不明な設定キーがあります: {exc}") from exc

    @classmethod
    def from_env(cls, project_root: Optional[str] = None) -> "Config":
        """環境変数から設定を読み込む"""
        return cls(
            project_root=project_root or os.getenv("SMART_TODO_PROJECT_ROOT", "."),
            auto_detection_enabled=_env_bool("SMART_TODO_AUTO_DETECTION", True),
            vcs=VCSConfig(
                enabled=_env_bool("SMART_TODO_GIT_ENABLED", True),
                timeout_seconds=float(os.getenv("SMART_TODO_GIT_TIMEOUT", "10")),
                strict=_env_bool("SMART_TODO_GIT_STRICT", False),
            ),
            store=StoreConfig(
                data_path=os.getenv("SMART_TODO_DATA_PATH", ".todo-data/todos.json"),
                backlog_path=os.getenv("SMART_TODO_BACKLOG_PATH", "FUTURE_TODO.md"),
                backup_enabled=_env_bool("SMART_TODO_BACKUP", True),
                max_backups=int(os.getenv("SMART_TODO_MAX_BACKUPS", "10")),
            ),
            scheduler=SchedulerConfig(
                detect_interval_seconds=float(os.getenv("SMART_TODO_DETECT_INTERVAL", "300")),
                sync_interval_seconds=float(os.getenv("SMART_TODO_SYNC_INTERVAL", "900")),
                file_watch_enabled=_env_bool("SMART_TODO_FILE_WATCH", True),
                health_port=int(os.getenv("SMART_TODO_HEALTH_PORT", "3001")),
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_dir=os.getenv("SMART_TODO_LOG_DIR", ".todo-data/logs"),
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")
