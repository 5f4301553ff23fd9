"""
ロギング設定モジュール

Design Reference: DESIGN.md (ロギング)
"""

import logging
from datetime import date
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    ロガーのセットアップ

    Args:
        log_level: ログレベル (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: ログファイルのパス（省略時はコンソールのみ）
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        # ログディレクトリの作成
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=LOG_FORMAT,
        handlers=handlers,
    )


def open_daily_log(log_dir: Path, logger_name: str = "smart_todo") -> logging.FileHandler:
    """
    日付付きログファイルのハンドラーを追加

    バックグラウンドサービス稼働中のみ使用し、停止時にclose_daily_logで閉じる。

    Args:
        log_dir: ログディレクトリ
        logger_name: ハンドラーを追加するロガー名

    Returns:
        追加したFileHandler
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"smart-todo-{date.today().isoformat()}.log"
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger(logger_name).addHandler(handler)
    return handler


def close_daily_log(handler: logging.Handler, logger_name: str = "smart_todo") -> None:
    """open_daily_logで追加したハンドラーをflushして閉じる"""
    handler.flush()
    logging.getLogger(logger_name).removeHandler(handler)
    handler.close()
