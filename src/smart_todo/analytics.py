"""
Todo分析エンジン

完了トレンド・カテゴリ別内訳・優先度分布・週次ベロシティ・ボトルネック・見積精度を算出する。
"""

from __future__ import annotations

from collections import Counter, OrderedDict
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from .models import PRIORITY_RANK, PartitionSet, Todo, TodoPriority, TodoStatus, utcnow

TREND_DAYS = 30
VELOCITY_WEEKS = 12
MOVING_AVERAGE_WEEKS = 4

BLOCKING_REASONS = [
    (("review", "approval"), "Waiting for review/approval"),
    (("deploy", "production"), "Deployment/infrastructure dependencies"),
    (("external", "third-party"), "External dependencies"),
    (("design", "mockup"), "Waiting for design/specifications"),
]


def week_start(day: date) -> date:
    """その日を含む週の月曜日"""
    return day - timedelta(days=day.weekday())


class AnalyticsEngine:
    """Todo履歴から傾向を導出するクラス"""

    def generate(self, partitions: PartitionSet, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        分析結果を生成

        Args:
            partitions: 対象のパーティションセット（project / archived / future を使用）
            now: 基準時刻

        Returns:
            JSONに変換可能な分析結果
        """
        now = now or utcnow()
        todos = [*partitions.project, *partitions.archived, *partitions.future]
        return {
            "completion_trends": self.completion_trends(todos, now),
            "category_breakdown": self.category_breakdown(todos),
            "priority_distribution": self.priority_distribution(todos),
            "velocity_history": self.velocity_history(todos, now),
            "bottlenecks": self.bottlenecks(partitions, now),
            "time_accuracy": self.time_accuracy(todos),
        }

    def completion_trends(self, todos: List[Todo], now: datetime) -> List[Dict[str, Any]]:
        end = now.date()
        start = end - timedelta(days=TREND_DAYS)
        trends: "OrderedDict[date, Dict[str, int]]" = OrderedDict()
        day = start
        while day <= end:
            trends[day] = {"completed": 0, "added": 0}
            day += timedelta(days=1)

        for todo in todos:
            created = todo.created_at.date()
            if created in trends:
                trends[created]["added"] += 1
            if todo.completed_at and todo.completed_at.date() in trends:
                trends[todo.completed_at.date()]["completed"] += 1

        return [{"date": day.isoformat(), **counts} for day, counts in trends.items()]

    def category_breakdown(self, todos: List[Todo]) -> List[Dict[str, Any]]:
        totals: Counter = Counter()
        completed: Counter = Counter()
        for todo in todos:
            category = todo.category or "uncategorized"
            totals[category] += 1
            if todo.status is TodoStatus.COMPLETED:
                completed[category] += 1
        return sorted(
            (
                {"category": category, "total": total, "completed": completed[category]}
                for category, total in totals.items()
            ),
            key=lambda entry: entry["total"],
            reverse=True,
        )

    def priority_distribution(self, todos: List[Todo]) -> List[Dict[str, Any]]:
        counts = Counter(todo.priority for todo in todos)
        return [
            {"priority": priority.value, "count": counts[priority]}
            for priority in sorted(counts, key=lambda p: PRIORITY_RANK[p], reverse=True)
        ]

    def velocity_history(self, todos: List[Todo], now: datetime) -> List[Dict[str, Any]]:
        end = now.date()
        start = end - timedelta(weeks=VELOCITY_WEEKS)
        weeks: "OrderedDict[date, int]" = OrderedDict()
        day = start
        while day <= end:
            weeks[week_start(day)] = 0
            day += timedelta(weeks=1)
        weeks.setdefault(week_start(end), 0)

        for todo in todos:
            if todo.status is not TodoStatus.COMPLETED or not todo.completed_at:
                continue
            completed_day = todo.completed_at.date()
            if start <= completed_day <= end:
                key = week_start(completed_day)
                if key in weeks:
                    weeks[key] += 1

        keys = sorted(weeks)
        history = []
        for i, key in enumerate(keys):
            window = keys[max(0, i - MOVING_AVERAGE_WEEKS + 1) : i + 1]
            estimated = round(sum(weeks[k] for k in window) / len(window))
            history.append({"week": key.isoformat(), "completed": weeks[key], "estimated": estimated})
        return history

    def bottlenecks(self, partitions: PartitionSet, now: datetime) -> List[Dict[str, Any]]:
        groups: Dict[str, List[str]] = {}
        lookup = {todo.id: todo for todo in partitions.all_todos()}

        for todo in partitions.project:
            if todo.status is TodoStatus.BLOCKED:
                groups.setdefault(self._blocking_reason(todo, lookup), []).append(todo.id)

        week_ago = now - timedelta(days=7)
        stuck = [
            t.id
            for t in partitions.project
            if t.status is TodoStatus.IN_PROGRESS and t.updated_at < week_ago
        ]
        if stuck:
            groups["Long-running tasks (>1 week)"] = stuck

        urgent = [
            t.id
            for t in partitions.project
            if t.status is TodoStatus.PENDING
            and t.priority in (TodoPriority.CRITICAL, TodoPriority.HIGH)
            and t.created_at < week_ago
        ]
        if urgent:
            groups["High priority pending tasks"] = urgent

        return sorted(
            (
                {"reason": reason, "count": len(ids), "affected_todos": ids}
                for reason, ids in groups.items()
            ),
            key=lambda entry: entry["count"],
            reverse=True,
        )

    @staticmethod
    def _blocking_reason(todo: Todo, lookup: Dict[str, Todo]) -> str:
        incomplete = [
            dep
            for dep in todo.dependencies
            if dep in lookup and lookup[dep].status is not TodoStatus.COMPLETED
        ]
        if incomplete:
            return f"Waiting for {len(incomplete)} dependency/dependencies"
        content = todo.content.lower()
        for keywords, reason in BLOCKING_REASONS:
            if any(k in content for k in keywords):
                return reason
        return "Unknown blocking reason"

    def time_accuracy(self, todos: List[Todo]) -> List[Dict[str, float]]:
        accuracy = []
        for todo in todos:
            estimated, actual = todo.estimated_hours, todo.actual_hours
            if todo.status is not TodoStatus.COMPLETED or not estimated or not actual:
                continue
            if estimated <= 0 or actual <= 0:
                continue
            accuracy.append(
                {
                    "estimated": estimated,
                    "actual": actual,
                    "accuracy": min(estimated / actual, actual / estimated) * 100,
                }
            )
        return sorted(accuracy, key=lambda entry: entry["accuracy"], reverse=True)

    def generate_insights(self, analytics: Dict[str, Any]) -> List[str]:
        """分析結果から短い改善ヒントを生成"""
        insights: List[str] = []

        recent = analytics["velocity_history"][-MOVING_AVERAGE_WEEKS:]
        if recent:
            avg_velocity = sum(week["completed"] for week in recent) / len(recent)
            if avg_velocity < 2:
                insights.append("Velocity is low - consider breaking large tasks into smaller ones")
            elif avg_velocity > 10:
                insights.append("High velocity - great momentum on task completion")

        for entry in analytics["category_breakdown"]:
            rate = entry["completed"] / entry["total"] if entry["total"] else 0
            if rate < 0.5 and entry["total"] > 5:
                insights.append(f"Low completion rate in {entry['category']} ({rate * 100:.0f}%)")

        if analytics["bottlenecks"]:
            top = analytics["bottlenecks"][0]
            insights.append(f"Main bottleneck: {top['reason']} ({top['count']} tasks affected)")

        accuracy = analytics["time_accuracy"]
        if len(accuracy) > 5:
            avg_accuracy = sum(item["accuracy"] for item in accuracy) / len(accuracy)
            if avg_accuracy < 60:
                insights.append("Time estimates are often inaccurate - consider revisiting estimation")
            elif avg_accuracy > 85:
                insights.append("Excellent time estimation accuracy")

        total = sum(entry["count"] for entry in analytics["priority_distribution"])
        high = next(
            (e["count"] for e in analytics["priority_distribution"] if e["priority"] == "high"), 0
        )
        if total and high / total > 0.4:
            insights.append("Too many high-priority tasks - consider re-prioritizing")

        return insights
