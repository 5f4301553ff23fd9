"""Git-aware todo tracking: session sync, completion detection and progress analytics."""

from .config import Config
from .exceptions import SmartTodoError, TodoNotFoundError
from .models import (
    CommitInfo,
    CompletionPattern,
    DetectionResult,
    Partition,
    PartitionSet,
    PatternKind,
    ProgressReport,
    SessionTodoUpdate,
    SuggestedAction,
    SyncResult,
    Todo,
    TodoConflict,
    TodoPriority,
    TodoStatus,
)
from .orchestrator import TodoOrchestrator

__all__ = [
    "Config",
    "SmartTodoError",
    "TodoNotFoundError",
    "CommitInfo",
    "CompletionPattern",
    "DetectionResult",
    "Partition",
    "PartitionSet",
    "PatternKind",
    "ProgressReport",
    "SessionTodoUpdate",
    "SuggestedAction",
    "SyncResult",
    "Todo",
    "TodoConflict",
    "TodoPriority",
    "TodoStatus",
    "TodoOrchestrator",
]
