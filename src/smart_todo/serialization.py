"""
Todoストア文書のシリアライザ

日時はISO8601文字列として保存し、読み込み時はフィールド名で復元する。
format_version 1（旧形式: camelCaseキー、{"__type": "Date", "value": ...} 形式の日時）も読み込める。

Design Reference: DESIGN.md (永続化)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .models import CompletionPattern, Partition, PartitionSet, SessionTodoUpdate, Todo, TodoStatus

FORMAT_VERSION = 2

LEGACY_PARTITION_KEYS = {
    Partition.SESSION: "sessionTodos",
    Partition.PROJECT: "projectTodos",
    Partition.FUTURE: "futureTodos",
    Partition.ARCHIVED: "archivedTodos",
}
LEGACY_FIELD_NAMES = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "completedAt": "completed_at",
    "estimatedHours": "estimated_hours",
    "actualHours": "actual_hours",
    "filePaths": "file_paths",
    "completionPatterns": "completion_patterns",
    "sessionId": "session_id",
    "commitHashes": "commit_hashes",
}


def encode_document(partitions: PartitionSet, watermark: Optional[datetime]) -> Dict[str, Any]:
    """パーティションセットを保存用の辞書に変換"""
    return {
        "format_version": FORMAT_VERSION,
        "watermark": watermark.isoformat() if watermark else None,
        "partitions": {
            partition.value: [todo.to_dict() for todo in todos]
            for partition, todos in partitions.items()
        },
    }


def decode_document(data: Dict[str, Any]) -> Tuple[PartitionSet, Optional[datetime]]:
    """
    保存文書をパーティションセットに復元

    Raises:
        ValueError: 文書の形式が不正な場合
    """
    if not isinstance(data, dict):
        raise ValueError("store document must be a JSON object")

    version = data.get("format_version", 1)
    if version == 1:
        return _decode_legacy(data), None
    if version != FORMAT_VERSION:
        raise ValueError(f"unsupported store format_version: {version}")

    partitions = PartitionSet()
    raw_partitions = data.get("partitions", {})
    for partition in Partition:
        partitions.bucket(partition).extend(
            todo_from_dict(item) for item in raw_partitions.get(partition.value, [])
        )
    return partitions, parse_datetime(data.get("watermark"))


def _decode_legacy(data: Dict[str, Any]) -> PartitionSet:
    partitions = PartitionSet()
    for partition, key in LEGACY_PARTITION_KEYS.items():
        for item in data.get(key, []):
            converted = {LEGACY_FIELD_NAMES.get(k, k): v for k, v in item.items()}
            partitions.bucket(partition).append(todo_from_dict(converted))
    return partitions


def parse_datetime(value: Any) -> Optional[datetime]:
    """ISO8601文字列（旧形式の日付オブジェクトも可）をdatetimeに変換"""
    if value is None:
        return None
    if isinstance(value, dict):
        # 旧形式: {"__type": "Date", "value": "..."}
        value = value.get("value")
        if value is None:
            return None
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def pattern_from_dict(data: Dict[str, Any]) -> CompletionPattern:
    return CompletionPattern(
        kind=data.get("kind") or data["type"],
        pattern=data.get("pattern", ""),
        confidence=float(data["confidence"]),
    )


def todo_from_dict(data: Dict[str, Any]) -> Todo:
    """辞書からTodoを生成（必須: id, content）"""
    optional: Dict[str, Any] = {}
    for key in ("status", "priority"):
        if data.get(key):
            optional[key] = data[key]
    for key in ("created_at", "updated_at"):
        parsed = parse_datetime(data.get(key))
        if parsed:
            optional[key] = parsed

    return Todo(
        id=str(data["id"]),
        content=data["content"],
        category=data.get("category"),
        tags=list(data.get("tags") or []),
        completed_at=parse_datetime(data.get("completed_at")),
        estimated_hours=data.get("estimated_hours"),
        actual_hours=data.get("actual_hours"),
        dependencies=list(data.get("dependencies") or []),
        file_paths=list(data.get("file_paths") or []),
        completion_patterns=[pattern_from_dict(p) for p in data.get("completion_patterns") or []],
        session_id=data.get("session_id"),
        commit_hashes=list(data.get("commit_hashes") or []),
        **optional,
    )


def session_update_from_dict(data: Dict[str, Any]) -> SessionTodoUpdate:
    """
    セッションTodoの辞書を部分更新に変換

    idのみ必須。status / content / actual_hours は含まれていない場合Noneのまま。

    Raises:
        ValueError: idがない、またはstatusが不正な場合
    """
    if not isinstance(data, dict) or not data.get("id"):
        raise ValueError(f"session todo without id: {data}")
    status = data.get("status")
    content = data.get("content")
    return SessionTodoUpdate(
        id=str(data["id"]),
        content=content or None,
        status=TodoStatus(status) if status else None,
        actual_hours=data.get("actual_hours"),
        record=todo_from_dict(data) if content else None,
    )


def session_updates_from_list(items: List[Dict[str, Any]]) -> List[SessionTodoUpdate]:
    return [session_update_from_dict(item) for item in items]
