"""
バックログ文書（FUTURE_TODO.md）の読み書き

`## 見出し` 単位のセクションと `- [ ] 内容` / `- [x] 内容` 形式のチェックボックスを解析する。
書き戻し時は管理対象Todoのチェック状態と進捗セクションのみ更新し、それ以外の行はそのまま残す。

Design Reference: DESIGN.md (External backlog document)
"""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .detection import extract_file_paths
from .exceptions import BacklogParseError
from .models import Todo, TodoPriority, TodoStatus, utcnow

logger = logging.getLogger(__name__)

PROGRESS_HEADING = "## Progress Tracking"

HEADING_RE = re.compile(r"^(#{2,4})\s*(.+)$")
CHECKBOX_RE = re.compile(r"^(\s*-\s*\[)\s*([xX ]?)\s*(\]\s*)(.+)$")
# "- [?]" のような1文字以内の角括弧。リンク "- [text](url)" は対象外
BOX_START_RE = re.compile(r"^-\s*\[(.?)\](?!\()")
STATUS_MARKER_RE = re.compile(r"\s*(?:\((?:in progress|blocked)\))?\s*(?:✓ \d{4}-\d{2}-\d{2})?\s*$")
SRC_PATH_RE = re.compile(r"(?:src|components|services)/[\w/.-]+")

EMPTY_TEMPLATE = """# Project Todo List

## Current Sprint

- [ ] Add your todos here

## Backlog

- [ ] Future tasks

## Progress Tracking

*Auto-generated section - will be updated automatically*
"""

CATEGORY_RULES = [
    (("phase 1", "deployment"), "deployment"),
    (("phase 2", "creator", "community"), "community"),
    (("phase 3", "feature"), "features"),
    (("phase 4", "business", "analytics"), "business"),
    (("backend",), "backend"),
    (("frontend",), "frontend"),
    (("mobile",), "mobile"),
    (("security",), "security"),
    (("performance",), "performance"),
]
PRIORITY_RULES = [
    (("critical", "phase 1"), TodoPriority.CRITICAL),
    (("high", "phase 2"), TodoPriority.HIGH),
    (("medium", "phase 3"), TodoPriority.MEDIUM),
]


def category_for_section(title: str) -> str:
    lowered = title.lower()
    for keywords, category in CATEGORY_RULES:
        if any(k in lowered for k in keywords):
            return category
    return "general"


def priority_for_section(title: str) -> TodoPriority:
    lowered = title.lower()
    for keywords, priority in PRIORITY_RULES:
        if any(k in lowered for k in keywords):
            return priority
    return TodoPriority.LOW


def todo_id_from_content(content: str) -> str:
    """本文から安定したIDを生成"""
    slug = re.sub(r"\s+", "-", re.sub(r"[^a-z0-9\s]", "", content.lower())).strip("-")
    digest = hashlib.sha1(content.encode("utf-8")).hexdigest()[:8]
    return f"future-{slug[:30]}-{digest}"


def _strip_markers(text: str) -> str:
    return STATUS_MARKER_RE.sub("", text).strip()


class BacklogDocument:
    """Markdownバックログ文書の読み書きを行うクラス"""

    def __init__(self, path: Path, clock: Callable[[], datetime] = utcnow):
        self.path = Path(path)
        self.clock = clock

    def parse(self) -> List[Todo]:
        """
        文書を解析してTodoのリストを返す

        ファイルがない場合はテンプレートを作成して空リストを返す。
        """
        if not self.path.exists():
            logger.info(f"{self.path.name} not found, creating template")
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(EMPTY_TEMPLATE, encoding="utf-8")
            return []
        return self.parse_text(self.path.read_text(encoding="utf-8"))

    def parse_text(self, content: str) -> List[Todo]:
        todos: List[Todo] = []
        for title, lines in self._sections(content):
            if title == PROGRESS_HEADING.lstrip("# "):
                continue
            try:
                todos.extend(self._parse_section(title, lines))
            except BacklogParseError as exc:
                logger.warning(f"Skipping malformed backlog section '{title}': {exc}")
        return todos

    def _sections(self, content: str):
        title = ""
        lines: List[str] = []
        for line in content.splitlines():
            match = HEADING_RE.match(line.strip())
            if match:
                if lines:
                    yield title, lines
                title, lines = match.group(2).strip(), []
                continue
            lines.append(line)
        if lines:
            yield title, lines

    def _parse_section(self, title: str, lines: Sequence[str]) -> List[Todo]:
        category = category_for_section(title)
        priority = priority_for_section(title)
        now = self.clock()
        todos: List[Todo] = []

        for line in lines:
            stripped = line.strip()
            box = BOX_START_RE.match(stripped)
            if not box:
                continue
            if box.group(1) not in ("", " ", "x", "X"):
                raise BacklogParseError(f"unrecognized checkbox mark: {stripped!r}")
            match = CHECKBOX_RE.match(stripped)
            if not match:
                raise BacklogParseError(f"checkbox without text: {stripped!r}")
            content = _strip_markers(match.group(4))
            if not content:
                raise BacklogParseError("empty todo text")
            completed = match.group(2).lower() == "x"
            todos.append(
                Todo(
                    id=todo_id_from_content(content),
                    content=content,
                    status=TodoStatus.COMPLETED if completed else TodoStatus.PENDING,
                    priority=priority,
                    category=category,
                    tags=["future-todo"],
                    created_at=now,
                    updated_at=now,
                    completed_at=now if completed else None,
                    file_paths=list(
                        dict.fromkeys(extract_file_paths(content) + SRC_PATH_RE.findall(content))
                    ),
                )
            )
        return todos

    def write(self, project: Sequence[Todo], archived: Sequence[Todo]) -> None:
        """管理中Todoの状態を文書に反映して保存"""
        current = self.path.read_text(encoding="utf-8") if self.path.exists() else EMPTY_TEMPLATE
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(self.render(current, project, archived), encoding="utf-8")

    def render(self, content: str, project: Sequence[Todo], archived: Sequence[Todo]) -> str:
        managed = [*project, *archived]
        lines = content.splitlines()
        for i, line in enumerate(lines):
            match = CHECKBOX_RE.match(line)
            if not match:
                continue
            prefix, _, suffix, text = match.groups()
            plain = _strip_markers(text)
            todo = self._match(plain, managed)
            if todo is None:
                continue
            mark = "x" if todo.status is TodoStatus.COMPLETED else " "
            rendered = f"{prefix}{mark}{suffix}{plain}"
            if todo.status is TodoStatus.IN_PROGRESS:
                rendered += " (in progress)"
            elif todo.status is TodoStatus.BLOCKED:
                rendered += " (blocked)"
            elif todo.status is TodoStatus.COMPLETED and todo.completed_at:
                rendered += f" ✓ {todo.completed_at.date().isoformat()}"
            lines[i] = rendered

        body = "\n".join(lines)
        return self._replace_progress_section(body, project, archived)

    @staticmethod
    def _match(text: str, todos: Sequence[Todo]) -> Optional[Todo]:
        todo_id = todo_id_from_content(text)
        lowered = text.lower()
        for todo in todos:
            if todo.id == todo_id:
                return todo
        for todo in todos:
            content = todo.content.lower()
            if content and (content in lowered or lowered in content):
                return todo
        return None

    def _replace_progress_section(
        self, content: str, project: Sequence[Todo], archived: Sequence[Todo]
    ) -> str:
        section = self.progress_section(project, archived)
        lines = content.splitlines()
        start = next((i for i, l in enumerate(lines) if l.strip() == PROGRESS_HEADING), None)
        if start is None:
            return content.rstrip("\n") + "\n\n" + section
        end = next(
            (i for i in range(start + 1, len(lines)) if re.match(r"^#{1,2}\s", lines[i])),
            len(lines),
        )
        tail = lines[end:]
        rebuilt = lines[:start] + section.rstrip("\n").splitlines()
        if tail:
            rebuilt += [""] + tail
        return "\n".join(rebuilt) + "\n"

    def progress_section(self, project: Sequence[Todo], archived: Sequence[Todo]) -> str:
        now = self.clock()
        week_ago = now - timedelta(days=7)
        total = len(project) + len(archived)
        completed = [t for t in archived if t.status is TodoStatus.COMPLETED]
        rate = len(completed) / total * 100 if total else 0.0
        recent = [t for t in completed if t.completed_at and t.completed_at > week_ago]
        filled = int(rate // 5)
        upcoming = [
            t for t in project if t.status is TodoStatus.PENDING and t.priority is TodoPriority.HIGH
        ][:5]

        def count(status: TodoStatus) -> int:
            return sum(1 for t in project if t.status is status)

        lines = [
            PROGRESS_HEADING,
            "",
            f"*Last updated: {now.strftime('%Y-%m-%d %H:%M')}*",
            "",
            "### Current Status",
            f"- **Total Tasks**: {total}",
            f"- **Completed**: {len(completed)} ({rate:.1f}%)",
            f"- **In Progress**: {count(TodoStatus.IN_PROGRESS)}",
            f"- **Blocked**: {count(TodoStatus.BLOCKED)}",
            f"- **Pending**: {count(TodoStatus.PENDING)}",
            "",
            "### Recent Activity",
            f"- **Completed this week**: {len(recent)} tasks",
            f"- **Average completion time**: {average_completion_days(completed)} days",
            "",
            "### Progress Chart",
            "```",
            f"{'█' * filled}{'░' * (20 - filled)} {rate:.1f}%",
            "```",
            "",
            "### Upcoming High Priority Tasks",
            *[f"- {t.content}" for t in upcoming],
            "",
            "### Recently Completed",
            *[f"- {t.content} ({t.completed_at.date().isoformat()})" for t in recent[:5]],
        ]
        return "\n".join(lines) + "\n"


def average_completion_days(todos: Sequence[Todo]) -> str:
    durations = [
        (t.completed_at - t.created_at).total_seconds() / 86400
        for t in todos
        if t.completed_at and t.created_at
    ]
    if not durations:
        return "N/A"
    return f"{sum(durations) / len(durations):.1f}"
