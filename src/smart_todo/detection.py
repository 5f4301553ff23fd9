"""
Todo完了検出モジュール

宣言された完了パターンを順に評価し、どれも当てはまらなければ
ヒューリスティック（キーワード一致・関連ファイル・作成対象）で判定する。
パターン評価器とヒューリスティックはいずれも差し替え可能な戦略クラス。

Design Reference: DESIGN.md (Completion Detector)
関連クラス:
  - vcs.VersionControlReader: ファイル存在確認・コミット取得
  - orchestrator.TodoOrchestrator: 閾値判定と自動完了
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Optional, Sequence

from .models import (
    CommitInfo,
    CompletionPattern,
    DetectionResult,
    PatternKind,
    SuggestedAction,
    Todo,
    TodoStatus,
    utcnow,
)
from .vcs import VersionControlReader

logger = logging.getLogger(__name__)

# パターン検出として採用する最低信頼度
PATTERN_MIN_CONFIDENCE = 0.5

STOP_WORDS = frozenset(
    ["the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by"]
)
COMPLETION_VERBS = ("complete", "implement", "add", "create", "build", "finish", "done", "fix")

BUILD_SUCCESS_PATTERNS = [
    re.compile(r"build\s+success", re.IGNORECASE),
    re.compile(r"build\s+complete", re.IGNORECASE),
    re.compile(r"successfully\s+built", re.IGNORECASE),
    re.compile(r"build\s+passing", re.IGNORECASE),
    re.compile(r"compilation\s+successful", re.IGNORECASE),
]
TEST_PASS_PATTERNS = [
    re.compile(r"tests?\s+pass", re.IGNORECASE),
    re.compile(r"all\s+tests?\s+passing", re.IGNORECASE),
    re.compile(r"test\s+suite\s+passing", re.IGNORECASE),
    re.compile(r"green\s+build", re.IGNORECASE),
    re.compile(r"\d+\s+tests?\s+passed", re.IGNORECASE),
]

CREATION_TARGET_PATTERNS = [
    re.compile(rf"{verb}\s+(\w+(?:\s+\w+)?)", re.IGNORECASE)
    for verb in ("create", "add", "implement", "build")
]

# 作成対象フレーズの末尾から取り除く一般名詞
GENERIC_NOUNS = frozenset(
    [
        "component",
        "components",
        "service",
        "page",
        "module",
        "class",
        "function",
        "endpoint",
        "file",
        "screen",
        "view",
        "widget",
        "hook",
        "model",
        "util",
        "helper",
    ]
)
CANDIDATE_EXTENSIONS = (".tsx", ".ts", ".jsx", ".js", ".py", ".go", ".md")
FILE_PATH_RE = re.compile(r"[\w/.-]+\.(?:tsx|ts|jsx|js|go|py|md|json|css|scss|yaml|yml)\b")

BUILD_WINDOW = timedelta(hours=24)


def extract_keywords(text: str) -> List[str]:
    """ストップワードを除いた長さ3以上の小文字トークン"""
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    return [w for w in words if len(w) > 2 and w not in STOP_WORDS]


def extract_creation_target(content: str) -> Optional[str]:
    """「create Foo Bar」などの作成対象フレーズを抽出"""
    for pattern in CREATION_TARGET_PATTERNS:
        match = pattern.search(content)
        if match:
            return match.group(1).strip()
    return None


def extract_file_paths(content: str) -> List[str]:
    """テキスト中のファイルパスらしき文字列を抽出"""
    return FILE_PATH_RE.findall(content)


def file_stem(path: str) -> str:
    return PurePosixPath(path).name.split(".")[0]


def _compact_target(target: str) -> str:
    words = target.split()
    meaningful = [w for w in words if w.lower() not in GENERIC_NOUNS]
    return "".join(meaningful or words)


def generate_completion_patterns(todo: Todo) -> List[CompletionPattern]:
    """
    Todo本文から完了パターンを生成（セッション→プロジェクト昇格時）

    - create/add: 作成対象ファイルの file_exists
    - implement/build: キーワードの commit_message
    - deploy/build/CI: build_success
    - test: test_pass
    """
    patterns: List[CompletionPattern] = []
    content = todo.content.lower()

    if "create" in content or "add" in content:
        for path in extract_file_paths(todo.content):
            patterns.append(CompletionPattern(PatternKind.FILE_EXISTS, path, 0.8))
        target = extract_creation_target(todo.content)
        if target:
            compact = _compact_target(target)
            for ext in CANDIDATE_EXTENSIONS:
                patterns.append(
                    CompletionPattern(PatternKind.FILE_EXISTS, f"src/**/*{compact}*{ext}", 0.8)
                )

    if "implement" in content or "build" in content:
        keywords = [
            w for w in extract_keywords(todo.content) if w not in ("create", "implement", "build", "add")
        ]
        if keywords:
            alternatives = "|".join(re.escape(w) for w in keywords[:2])
            patterns.append(
                CompletionPattern(
                    PatternKind.COMMIT_MESSAGE,
                    f"(implement|build|add|create|complete).*({alternatives})",
                    0.7,
                )
            )

    if "deploy" in content or "build" in content or "ci/cd" in content or re.search(r"\bci\b", content):
        patterns.append(CompletionPattern(PatternKind.BUILD_SUCCESS, "deployment|build", 0.8))

    if "test" in content:
        patterns.append(CompletionPattern(PatternKind.TEST_PASS, "test", 0.8))

    return patterns


# ---------------------------------------------------------------------------
# パターン評価戦略
# ---------------------------------------------------------------------------


class PatternStrategy(ABC):
    """完了パターン1種類の評価器"""

    kind: PatternKind

    @abstractmethod
    def evaluate(
        self, todo: Todo, pattern: CompletionPattern, commits: Sequence[CommitInfo]
    ) -> Optional[DetectionResult]:
        """パターンが満たされていれば検出結果を返す"""
        pass

    def _result(self, todo: Todo, pattern: CompletionPattern, evidence: str, commit_hash=None):
        return DetectionResult(
            todo_id=todo.id,
            detection_type=self.kind.value,
            confidence=pattern.confidence,
            evidence=evidence,
            suggested_action=SuggestedAction.MARK_COMPLETED,
            commit_hash=commit_hash,
        )


class FileExistsStrategy(PatternStrategy):
    kind = PatternKind.FILE_EXISTS

    def __init__(self, reader: VersionControlReader):
        self.reader = reader

    def evaluate(self, todo, pattern, commits):
        if pattern.pattern and self.reader.path_exists(pattern.pattern):
            return self._result(todo, pattern, f"File {pattern.pattern} was created")
        return None


class FileContainsStrategy(PatternStrategy):
    kind = PatternKind.FILE_CONTAINS

    def __init__(self, reader: VersionControlReader):
        self.reader = reader

    def evaluate(self, todo, pattern, commits):
        file_path, sep, needle = pattern.pattern.partition("::")
        if not sep or not file_path or not needle:
            return None
        content = self.reader.read_file(file_path)
        if content is not None and needle in content:
            return self._result(todo, pattern, f'File {file_path} contains "{needle}"')
        return None


class CommitMessageStrategy(PatternStrategy):
    kind = PatternKind.COMMIT_MESSAGE

    def evaluate(self, todo, pattern, commits):
        try:
            regex = re.compile(pattern.pattern, re.IGNORECASE)
        except re.error as exc:
            logger.warning(f"Invalid commit_message pattern on todo {todo.id}: {exc}")
            return None
        for commit in commits:
            if regex.search(commit.message):
                return self._result(
                    todo, pattern, f'Commit "{commit.message}" matches pattern', commit.hash
                )
        return None


class _RecentCommitPhraseStrategy(PatternStrategy):
    """直近24時間のコミットメッセージに成功表現があるかを確認"""

    phrases: List[re.Pattern] = []
    label = ""

    def __init__(self, reader: VersionControlReader, clock: Callable[[], datetime] = utcnow):
        self.reader = reader
        self.clock = clock

    def evaluate(self, todo, pattern, commits):
        for commit in self.reader.recent_commits(self.clock() - BUILD_WINDOW):
            if any(p.search(commit.message) for p in self.phrases):
                return self._result(
                    todo, pattern, f"{self.label} indicated by commit: {commit.message}", commit.hash
                )
        return None


class BuildSuccessStrategy(_RecentCommitPhraseStrategy):
    kind = PatternKind.BUILD_SUCCESS
    phrases = BUILD_SUCCESS_PATTERNS
    label = "Build success"


class TestPassStrategy(_RecentCommitPhraseStrategy):
    __test__ = False

    kind = PatternKind.TEST_PASS
    phrases = TEST_PASS_PATTERNS
    label = "Tests passing"


# ---------------------------------------------------------------------------
# ヒューリスティック戦略
# ---------------------------------------------------------------------------


class HeuristicStrategy(ABC):
    """パターンが発火しなかった場合のフォールバック判定"""

    @abstractmethod
    def evaluate(self, todo: Todo, commits: Sequence[CommitInfo]) -> Optional[DetectionResult]:
        pass


class KeywordOverlapHeuristic(HeuristicStrategy):
    """Todo本文とコミットメッセージのキーワード一致率で判定"""

    threshold = 0.6
    completion_threshold = 0.8
    bonus = 0.5

    def score(self, todo: Todo, commit: CommitInfo) -> float:
        todo_words = extract_keywords(todo.content)
        commit_words = extract_keywords(commit.message)
        message = commit.message.lower()
        content = todo.content.lower()

        matched = 0.0
        for word in todo_words:
            if any(word in cw or cw in word for cw in commit_words):
                matched += 1

        if any(verb in message for verb in COMPLETION_VERBS):
            matched += self.bonus
        if "create" in content and "create" in message:
            matched += self.bonus
        if "implement" in content and "implement" in message:
            matched += self.bonus

        return min(matched / max(len(todo_words), 1), 1.0)

    def evaluate(self, todo, commits):
        for commit in commits:
            confidence = self.score(todo, commit)
            if confidence > self.threshold:
                action = (
                    SuggestedAction.MARK_COMPLETED
                    if confidence > self.completion_threshold
                    else SuggestedAction.UPDATE_PROGRESS
                )
                return DetectionResult(
                    todo_id=todo.id,
                    detection_type="heuristic_commit",
                    confidence=confidence,
                    evidence=f'Commit message suggests completion: "{commit.message}"',
                    suggested_action=action,
                    commit_hash=commit.hash,
                )
        return None


class FilePathHeuristic(HeuristicStrategy):
    """Todoの関連ファイルがコミットで変更されたかで判定"""

    def evaluate(self, todo, commits):
        if not todo.file_paths:
            return None
        for commit in commits:
            relevant = [
                changed
                for changed in commit.changed_files
                if any(changed in path or path in changed for path in todo.file_paths)
            ]
            if relevant:
                confidence = min(0.7 + 0.1 * len(relevant), 0.9)
                action = (
                    SuggestedAction.MARK_COMPLETED if confidence > 0.8 else SuggestedAction.UPDATE_PROGRESS
                )
                return DetectionResult(
                    todo_id=todo.id,
                    detection_type="heuristic_files",
                    confidence=confidence,
                    evidence=f"Related files modified: {', '.join(relevant)}",
                    suggested_action=action,
                    commit_hash=commit.hash,
                )
        return None


class CreationTargetHeuristic(HeuristicStrategy):
    """「create X」系Todoの作成対象に一致するファイルがコミットされたかで判定"""

    confidence = 0.8

    def evaluate(self, todo, commits):
        content = todo.content.lower()
        if not any(verb in content for verb in ("create", "add", "implement")):
            return None
        target = extract_creation_target(todo.content)
        if not target:
            return None

        needle = target.lower()
        for commit in commits:
            created = [
                path
                for path in commit.changed_files
                if needle in path.lower() or (file_stem(path) and file_stem(path).lower() in needle)
            ]
            if created:
                return DetectionResult(
                    todo_id=todo.id,
                    detection_type="creation_detection",
                    confidence=self.confidence,
                    evidence=f'Created files matching "{target}": {", ".join(created)}',
                    suggested_action=SuggestedAction.MARK_COMPLETED,
                    commit_hash=commit.hash,
                )
        return None


# ---------------------------------------------------------------------------
# 検出器本体
# ---------------------------------------------------------------------------


class CompletionDetector:
    """Todoの完了条件が満たされたかを判定するクラス"""

    def __init__(
        self,
        reader: VersionControlReader,
        pattern_strategies: Optional[Dict[PatternKind, PatternStrategy]] = None,
        heuristics: Optional[List[HeuristicStrategy]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        初期化

        Args:
            reader: バージョン管理リーダー
            pattern_strategies: パターン種別ごとの評価器（省略時は標準セット）
            heuristics: フォールバック判定の順序付きリスト（省略時は標準セット）
            clock: 現在時刻の取得関数
        """
        self.reader = reader
        if pattern_strategies is None:
            pattern_strategies = {
                strategy.kind: strategy
                for strategy in (
                    FileExistsStrategy(reader),
                    FileContainsStrategy(reader),
                    CommitMessageStrategy(),
                    BuildSuccessStrategy(reader, clock),
                    TestPassStrategy(reader, clock),
                )
            }
        self.pattern_strategies = pattern_strategies
        if heuristics is None:
            heuristics = [KeywordOverlapHeuristic(), FilePathHeuristic(), CreationTargetHeuristic()]
        self.heuristics = heuristics

    def check(self, todo: Todo, commits: Sequence[CommitInfo]) -> Optional[DetectionResult]:
        """
        1件のTodoを判定

        Args:
            todo: 判定対象（pending / in_progress）
            commits: 直近のコミット

        Returns:
            検出結果、該当なしの場合None
        """
        if todo.status in (TodoStatus.COMPLETED, TodoStatus.CANCELLED):
            return None

        for pattern in todo.completion_patterns:
            strategy = self.pattern_strategies.get(pattern.kind)
            if strategy is None:
                logger.debug(f"No strategy registered for pattern kind {pattern.kind}")
                continue
            result = strategy.evaluate(todo, pattern, commits)
            if result and result.confidence > PATTERN_MIN_CONFIDENCE:
                return result

        for heuristic in self.heuristics:
            result = heuristic.evaluate(todo, commits)
            if result:
                return result

        return None
