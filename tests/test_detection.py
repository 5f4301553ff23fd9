"""CompletionDetectorと完了パターン生成のテスト"""

from datetime import timedelta

import pytest
from conftest import NOW, make_todo

from smart_todo.detection import (
    CompletionDetector,
    KeywordOverlapHeuristic,
    extract_creation_target,
    extract_keywords,
    generate_completion_patterns,
)
from smart_todo.models import (
    CommitInfo,
    CompletionPattern,
    PatternKind,
    SuggestedAction,
    TodoStatus,
)
from smart_todo.vcs import GitCommandReader


def commit(message: str, files=None, hash_: str = "c0ffee") -> CommitInfo:
    return CommitInfo(hash=hash_, message=message, author="dev", timestamp=NOW, changed_files=files or [])


def test_extract_keywords_drops_stop_words():
    assert extract_keywords("Add the login form to the app") == ["add", "login", "form", "app"]


def test_extract_creation_target():
    assert extract_creation_target("create PricingCalculator component") == "PricingCalculator component"
    assert extract_creation_target("refactor everything") is None


def test_generated_patterns_for_create_todo():
    """create系TodoからglobのFILE_EXISTSパターンを生成"""
    todo = make_todo("t1", "create PricingCalculator component")
    patterns = generate_completion_patterns(todo)

    globs = [p.pattern for p in patterns if p.kind is PatternKind.FILE_EXISTS]
    assert "src/**/*PricingCalculator*.tsx" in globs
    assert all(p.confidence == 0.8 for p in patterns)


def test_generated_patterns_for_build_and_test():
    todo = make_todo("t2", "implement checkout tests and build pipeline")
    kinds = {p.kind for p in generate_completion_patterns(todo)}
    assert kinds == {PatternKind.COMMIT_MESSAGE, PatternKind.BUILD_SUCCESS, PatternKind.TEST_PASS}


def test_pricing_calculator_scenario(tmp_path):
    """作成対象ファイルが存在すれば mark_completed"""
    component = tmp_path / "src" / "components" / "PricingCalculator.tsx"
    component.parent.mkdir(parents=True)
    component.write_text("export const PricingCalculator = () => null;\n", encoding="utf-8")

    todo = make_todo("pricing", "create PricingCalculator component")
    todo.completion_patterns = generate_completion_patterns(todo)
    detector = CompletionDetector(GitCommandReader(tmp_path), clock=lambda: NOW)

    result = detector.check(todo, [])

    assert result is not None
    assert result.detection_type == "file_exists"
    assert result.confidence == 0.8
    assert result.suggested_action is SuggestedAction.MARK_COMPLETED


def test_pattern_detection_preferred_over_heuristics(fake_reader, clock):
    """パターン検出（>0.5）はヒューリスティックより優先"""
    todo = make_todo(
        "login",
        "fix login bug",
        completion_patterns=[CompletionPattern(PatternKind.COMMIT_MESSAGE, "login", 0.6)],
    )
    detector = CompletionDetector(fake_reader, clock=clock)

    result = detector.check(todo, [commit("fix login bug")])

    assert result.detection_type == "commit_message"
    assert result.confidence == 0.6
    assert result.commit_hash == "c0ffee"


def test_low_confidence_pattern_falls_back_to_heuristic(fake_reader, clock):
    """信頼度0.5のパターンは採用せずヒューリスティックへ"""
    todo = make_todo(
        "login",
        "fix login bug",
        completion_patterns=[CompletionPattern(PatternKind.COMMIT_MESSAGE, "login", 0.5)],
    )
    detector = CompletionDetector(fake_reader, clock=clock)

    result = detector.check(todo, [commit("fix login bug")])

    assert result.detection_type == "heuristic_commit"
    assert result.confidence == 1.0
    assert result.suggested_action is SuggestedAction.MARK_COMPLETED


def test_keyword_score_partial_match():
    """一致率0.6以下は検出しない"""
    heuristic = KeywordOverlapHeuristic()
    todo = make_todo("t", "update pricing table layout")
    assert heuristic.score(todo, commit("pricing tweak")) == pytest.approx(0.25)
    assert heuristic.evaluate(todo, [commit("pricing tweak")]) is None


def test_file_path_heuristic(fake_reader, clock):
    """関連ファイルの変更は update_progress"""
    todo = make_todo("session", "Refactor session handling", file_paths=["src/session.py"])
    detector = CompletionDetector(fake_reader, clock=clock)

    result = detector.check(todo, [commit("wip", files=["src/session.py"])])

    assert result.detection_type == "heuristic_files"
    assert result.confidence == pytest.approx(0.8)
    assert result.suggested_action is SuggestedAction.UPDATE_PROGRESS


def test_creation_target_heuristic(fake_reader, clock):
    todo = make_todo("widget", "create Sidebar")
    detector = CompletionDetector(fake_reader, clock=clock)

    result = detector.check(todo, [commit("wip", files=["src/Sidebar.tsx"])])

    assert result.detection_type == "creation_detection"
    assert result.confidence == 0.8


def test_build_success_uses_recent_commits(fake_reader, clock):
    """直近24時間のコミットに成功表現があればbuild_success"""
    fake_reader.recent_commits.return_value = [commit("CI: build passing on main", hash_="b1")]
    todo = make_todo(
        "deploy",
        "deploy to staging",
        completion_patterns=[CompletionPattern(PatternKind.BUILD_SUCCESS, "deployment|build", 0.8)],
    )
    detector = CompletionDetector(fake_reader, clock=clock)

    result = detector.check(todo, [])

    assert result.detection_type == "build_success"
    assert result.commit_hash == "b1"
    since = fake_reader.recent_commits.call_args[0][0]
    assert since == NOW - timedelta(hours=24)


def test_file_contains_pattern(fake_reader, clock):
    fake_reader.read_file.return_value = "FEATURE_FLAG = True\n"
    todo = make_todo(
        "flag",
        "enable the feature flag",
        completion_patterns=[CompletionPattern(PatternKind.FILE_CONTAINS, "settings.py::FEATURE_FLAG", 0.9)],
    )
    result = CompletionDetector(fake_reader, clock=clock).check(todo, [])

    assert result.detection_type == "file_contains"
    fake_reader.read_file.assert_called_with("settings.py")


def test_invalid_regex_pattern_is_ignored(fake_reader, clock):
    todo = make_todo(
        "regex",
        "something unrelated",
        completion_patterns=[CompletionPattern(PatternKind.COMMIT_MESSAGE, "([unclosed", 0.9)],
    )
    assert CompletionDetector(fake_reader, clock=clock).check(todo, [commit("([unclosed")]) is None


def test_completed_todo_is_not_checked(fake_reader, clock):
    fake_reader.path_exists.return_value = True
    todo = make_todo(
        "done",
        "create Header",
        status=TodoStatus.COMPLETED,
        completion_patterns=[CompletionPattern(PatternKind.FILE_EXISTS, "src/Header.tsx", 0.9)],
    )
    assert CompletionDetector(fake_reader, clock=clock).check(todo, []) is None


def test_pattern_confidence_must_be_in_range():
    with pytest.raises(ValueError):
        CompletionPattern(PatternKind.FILE_EXISTS, "a.py", 0)
    with pytest.raises(ValueError):
        CompletionPattern(PatternKind.FILE_EXISTS, "a.py", 1.5)
