"""AnalyticsEngineのテスト"""

from datetime import timedelta

import pytest
from conftest import NOW, make_todo

from smart_todo.analytics import AnalyticsEngine
from smart_todo.models import PartitionSet, TodoPriority, TodoStatus


def completed(todo_id: str, days_ago: float, **kwargs):
    return make_todo(
        todo_id,
        status=TodoStatus.COMPLETED,
        completed_at=NOW - timedelta(days=days_ago),
        **kwargs,
    )


@pytest.fixture
def partitions():
    return PartitionSet(
        project=[
            make_todo("p1", category="frontend", priority=TodoPriority.HIGH),
            make_todo("p2", category="frontend", status=TodoStatus.BLOCKED, dependencies=["p1"]),
            make_todo("p3", "Wait for design mockup", category="backend", status=TodoStatus.BLOCKED),
            make_todo(
                "p4",
                category="backend",
                status=TodoStatus.IN_PROGRESS,
                updated_at=NOW - timedelta(days=10),
            ),
            make_todo(
                "p5",
                category="backend",
                priority=TodoPriority.CRITICAL,
                created_at=NOW - timedelta(days=8),
            ),
        ],
        archived=[
            completed("a1", 0, category="frontend", estimated_hours=4.0, actual_hours=5.0),
            completed("a2", 0.5, category="frontend", estimated_hours=2.0, actual_hours=2.0),
            completed("a3", 7),
            completed("a4", 7),
        ],
        future=[make_todo("f1", category="backend", priority=TodoPriority.LOW)],
    )


def test_completion_trends(partitions):
    trends = AnalyticsEngine().completion_trends(partitions.archived, NOW)

    assert len(trends) == 31
    assert trends[-1] == {"date": "2024-06-10", "completed": 2, "added": 0}
    assert trends[-4]["added"] == 4


def test_category_breakdown(partitions):
    todos = [*partitions.project, *partitions.archived, *partitions.future]
    breakdown = AnalyticsEngine().category_breakdown(todos)

    assert breakdown[0] == {"category": "frontend", "total": 4, "completed": 2}
    assert breakdown[1] == {"category": "backend", "total": 4, "completed": 0}
    assert breakdown[2] == {"category": "uncategorized", "total": 2, "completed": 2}


def test_priority_distribution_order(partitions):
    todos = [*partitions.project, *partitions.archived, *partitions.future]
    distribution = AnalyticsEngine().priority_distribution(todos)

    assert [d["priority"] for d in distribution] == ["critical", "high", "medium", "low"]
    assert distribution[2]["count"] == 7


def test_velocity_history_moving_average(partitions):
    """月曜始まりの週単位で集計し、4週移動平均を付与"""
    history = AnalyticsEngine().velocity_history(partitions.archived, NOW)

    assert len(history) == 13
    assert history[-1]["week"] == "2024-06-10"
    assert history[-1]["completed"] == 2
    assert history[-2] == {"week": "2024-06-03", "completed": 2, "estimated": 0}
    assert history[-1]["estimated"] == 1


def test_bottlenecks(partitions):
    bottlenecks = AnalyticsEngine().bottlenecks(partitions, NOW)
    reasons = {b["reason"]: b["affected_todos"] for b in bottlenecks}

    assert reasons["Waiting for 1 dependency/dependencies"] == ["p2"]
    assert reasons["Waiting for design/specifications"] == ["p3"]
    assert reasons["Long-running tasks (>1 week)"] == ["p4"]
    assert reasons["High priority pending tasks"] == ["p5"]


def test_time_accuracy(partitions):
    accuracy = AnalyticsEngine().time_accuracy(partitions.archived)

    assert [a["accuracy"] for a in accuracy] == [pytest.approx(100.0), pytest.approx(80.0)]


def test_generate_and_insights(partitions):
    engine = AnalyticsEngine()
    analytics = engine.generate(partitions, NOW)

    assert set(analytics) == {
        "completion_trends",
        "category_breakdown",
        "priority_distribution",
        "velocity_history",
        "bottlenecks",
        "time_accuracy",
    }
    insights = engine.generate_insights(analytics)
    assert any(i.startswith("Velocity is low") for i in insights)
    assert any(i.startswith("Main bottleneck:") for i in insights)
