#!/usr/bin/env python3
"""
smart-todo CLI - オーケストレーターの各操作を呼び出すコマンドラインインターフェース

Usage:
    python -m smart_todo sync --session FILE [--format json|text]
    python -m smart_todo detect [--auto-complete] [--threshold 0.9]
    python -m smart_todo progress
    python -m smart_todo analytics
    python -m smart_todo suggest [--files a.ts,b.ts] [--count 5]
    python -m smart_todo complete ID [--reason "..."]
    python -m smart_todo promote ID [--category backend]
    python -m smart_todo list [--status pending] [--priority high] [--category ...] [--limit 20]
    python -m smart_todo init [--git-hooks]
    python -m smart_todo start [--detect-interval 300] [--sync-interval 900] [--port 3001] [--no-file-watch]
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, List, Optional

from .config import Config
from .exceptions import SmartTodoError
from .hooks import install_git_hooks
from .logger import setup_logger
from .models import SessionTodoUpdate, Todo, TodoPriority, TodoStatus
from .orchestrator import TodoOrchestrator
from .serialization import session_updates_from_list


def format_todo_text(todo: Todo) -> str:
    """Todoをテキスト形式で整形"""
    category = todo.category or "-"
    return f"[{todo.id}] {todo.status.value} | {todo.priority.value} | {category} | {todo.content}"


def print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def load_session_todos(session_file: Path) -> List[SessionTodoUpdate]:
    """
    セッションTodoのJSONファイル（配列 または {"todos": [...]}）を読み込む

    各レコードはidのみ必須。含まれないフィールドは同期時に既存値を保持する。
    """
    data = json.loads(Path(session_file).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        session_id = data.get("session_id")
        items = data.get("todos", [])
        if session_id:
            items = [{"session_id": session_id, **item} for item in items]
    else:
        items = data
    if not isinstance(items, list):
        raise ValueError("session file must contain a list of todos")
    return session_updates_from_list(items)


def cmd_sync(orchestrator: TodoOrchestrator, session_file: str, output_format: str) -> int:
    """セッションTodoを同期"""
    try:
        todos = load_session_todos(Path(session_file))
    except (OSError, ValueError, KeyError) as exc:
        print(f"Error: セッションファイルを読み込めません: {exc}", file=sys.stderr)
        return 1

    result = orchestrator.sync_session_todos(todos)
    if output_format == "json":
        print_json(result.to_dict())
    else:
        print(
            f"同期しました: 追加 {len(result.added)} / 更新 {len(result.updated)} / "
            f"完了 {len(result.completed)} / 競合 {len(result.conflicts)}"
        )
        for conflict in result.conflicts:
            print(f"  競合 [{conflict.todo_id}] {conflict.kind} -> {conflict.recommendation}")
        for todo_id in result.skipped:
            print(f"  スキップ [{todo_id}] contentがないため追加できません")
    return 0


def cmd_detect(
    orchestrator: TodoOrchestrator, auto_complete: bool, threshold: float, output_format: str
) -> int:
    """完了検出を実行"""
    results = orchestrator.run_completion_detection(
        auto_apply_threshold=threshold if auto_complete else float("inf")
    )
    if output_format == "json":
        print_json([r.to_dict() for r in results])
    elif not results:
        print("完了候補は見つかりませんでした。")
    else:
        for r in results:
            print(
                f"[{r.todo_id}] {r.detection_type} ({r.confidence:.0%}) "
                f"{r.suggested_action.value}: {r.evidence}"
            )
    return 0


def cmd_progress(orchestrator: TodoOrchestrator, output_format: str) -> int:
    """進捗レポートを表示"""
    report = orchestrator.generate_progress_report()
    if output_format == "json":
        print_json(report.to_dict())
        return 0

    print(f"完了: {report.completed_todos}/{report.total_todos} ({report.completion_rate * 100:.1f}%)")
    print(f"ベロシティ: {report.velocity} 件/週")
    print(f"平均作業時間: {report.average_completion_time:.1f} 時間")
    print(f"完了見込み: {report.estimated_completion.date().isoformat()}")
    if report.blocked_todos:
        print(f"ブロック中: {len(report.blocked_todos)} 件")
        for todo in report.blocked_todos:
            print(f"  {format_todo_text(todo)}")
    if report.upcoming_todos:
        print("次のTodo:")
        for todo in report.upcoming_todos:
            print(f"  {format_todo_text(todo)}")
    return 0


def cmd_analytics(orchestrator: TodoOrchestrator, output_format: str) -> int:
    """分析結果とヒントを表示"""
    analytics = orchestrator.get_analytics()
    insights = orchestrator.analytics.generate_insights(analytics)
    if output_format == "json":
        print_json({**analytics, "insights": insights})
        return 0

    print("カテゴリ別:")
    for entry in analytics["category_breakdown"]:
        print(f"  {entry['category']}: {entry['completed']}/{entry['total']}")
    print("優先度別:")
    for entry in analytics["priority_distribution"]:
        print(f"  {entry['priority']}: {entry['count']}")
    if analytics["bottlenecks"]:
        print("ボトルネック:")
        for entry in analytics["bottlenecks"]:
            print(f"  {entry['reason']} ({entry['count']})")
    if insights:
        print("ヒント:")
        for insight in insights:
            print(f"  - {insight}")
    return 0


def cmd_suggest(
    orchestrator: TodoOrchestrator, files: Optional[str], count: int, output_format: str
) -> int:
    """次に取り組むTodoを提案"""
    file_paths = [f.strip() for f in files.split(",") if f.strip()] if files else None
    suggestions = orchestrator.get_smart_suggestions(file_paths=file_paths, limit=count)
    if output_format == "json":
        print_json([t.to_dict() for t in suggestions])
    elif not suggestions:
        print("提案できるTodoはありません。")
    else:
        for todo in suggestions:
            print(format_todo_text(todo))
    return 0


def cmd_complete(
    orchestrator: TodoOrchestrator, todo_id: str, reason: Optional[str], output_format: str
) -> int:
    """Todoを完了にする"""
    todo = orchestrator.mark_todo_completed(todo_id, reason)
    if output_format == "json":
        print_json(todo.to_dict())
    else:
        print(f"完了しました: {format_todo_text(todo)}")
    return 0


def cmd_promote(
    orchestrator: TodoOrchestrator, todo_id: str, category: Optional[str], output_format: str
) -> int:
    """セッションTodoをプロジェクトTodoへ昇格"""
    todo = orchestrator.promote_session_todo(todo_id, category)
    if output_format == "json":
        print_json(todo.to_dict())
    else:
        print(f"昇格しました: {format_todo_text(todo)}")
    return 0


def cmd_list(
    orchestrator: TodoOrchestrator,
    status: Optional[str],
    priority: Optional[str],
    category: Optional[str],
    limit: int,
    output_format: str,
) -> int:
    """Todoリストを表示"""
    todos = orchestrator.list_todos(
        status=TodoStatus(status) if status else None,
        priority=TodoPriority(priority) if priority else None,
        category=category,
        limit=limit,
    )
    if output_format == "json":
        print_json([t.to_dict() for t in todos])
    elif not todos:
        print("Todoは登録されていません。")
    else:
        for todo in todos:
            print(format_todo_text(todo))
    return 0


def cmd_init(orchestrator: TodoOrchestrator, git_hooks: bool, output_format: str) -> int:
    """データディレクトリとバックログ文書を用意し、必要ならgitフックを入れる"""
    hooks = install_git_hooks(orchestrator.config.root) if git_hooks else []
    orchestrator.export_backlog()
    payload = {
        "data_path": str(orchestrator.store.data_path),
        "backlog_path": str(orchestrator.backlog.path),
        "hooks": [str(p) for p in hooks],
    }
    if output_format == "json":
        print_json(payload)
    else:
        print(f"初期化しました: {payload['data_path']}")
        print(f"バックログ: {payload['backlog_path']}")
        for hook in payload["hooks"]:
            print(f"フック: {hook}")
    return 0


def cmd_start(
    config: Config,
    detect_interval: Optional[float],
    sync_interval: Optional[float],
    port: Optional[int],
    no_file_watch: bool,
) -> int:
    """バックグラウンドサービスを起動（SIGINT/SIGTERMで停止）"""
    from .scheduler import BackgroundScheduler

    if detect_interval is not None:
        config.scheduler.detect_interval_seconds = detect_interval
    if sync_interval is not None:
        config.scheduler.sync_interval_seconds = sync_interval
    if port is not None:
        config.scheduler.health_port = port
    if no_file_watch:
        config.scheduler.file_watch_enabled = False

    scheduler = BackgroundScheduler(TodoOrchestrator(config), log_dir=config.log_path)
    scheduler.run_forever()
    return 0


def add_format_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--format",
        choices=["json", "text"],
        default="text",
        help="出力フォーマット（デフォルト: text）",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smart-todo",
        description="smart-todo - gitコミットからTodo完了を検出するバックログ管理CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--project-root", default=None, help="プロジェクトルート（デフォルト: カレントディレクトリ）")
    parser.add_argument("--config", default=None, help="YAML設定ファイルのパス")

    subparsers = parser.add_subparsers(dest="command", help="実行するコマンド", required=True)

    # sync コマンド
    parser_sync = subparsers.add_parser("sync", help="セッションTodoを同期")
    parser_sync.add_argument("--session", required=True, help="セッションTodoのJSONファイル")
    add_format_argument(parser_sync)

    # detect コマンド
    parser_detect = subparsers.add_parser("detect", help="完了検出を実行")
    parser_detect.add_argument("--auto-complete", action="store_true", help="高信頼度の検出を自動で完了にする")
    parser_detect.add_argument("--threshold", type=float, default=0.9, help="自動完了の信頼度閾値（デフォルト: 0.9）")
    add_format_argument(parser_detect)

    # progress / analytics コマンド
    add_format_argument(subparsers.add_parser("progress", help="進捗レポートを表示"))
    add_format_argument(subparsers.add_parser("analytics", help="分析結果を表示"))

    # suggest コマンド
    parser_suggest = subparsers.add_parser("suggest", help="次に取り組むTodoを提案")
    parser_suggest.add_argument("--files", help="作業中のファイル（カンマ区切り）")
    parser_suggest.add_argument("--count", type=int, default=5, help="提案数（デフォルト: 5）")
    add_format_argument(parser_suggest)

    # complete コマンド
    parser_complete = subparsers.add_parser("complete", help="Todoを完了にする")
    parser_complete.add_argument("id", help="完了するTodoのID")
    parser_complete.add_argument("--reason", help="完了理由")
    add_format_argument(parser_complete)

    # promote コマンド
    parser_promote = subparsers.add_parser("promote", help="セッションTodoを昇格")
    parser_promote.add_argument("id", help="昇格するTodoのID")
    parser_promote.add_argument("--category", help="カテゴリ")
    add_format_argument(parser_promote)

    # list コマンド
    parser_list = subparsers.add_parser("list", help="Todoリストを表示")
    parser_list.add_argument("--status", choices=[s.value for s in TodoStatus])
    parser_list.add_argument("--priority", choices=[p.value for p in TodoPriority])
    parser_list.add_argument("--category")
    parser_list.add_argument("--limit", type=int, default=20)
    add_format_argument(parser_list)

    # init コマンド
    parser_init = subparsers.add_parser("init", help="データとバックログ文書を初期化")
    parser_init.add_argument("--git-hooks", action="store_true", help="gitフックをインストール")
    add_format_argument(parser_init)

    # start コマンド
    parser_start = subparsers.add_parser("start", help="バックグラウンドサービスを起動")
    parser_start.add_argument("--detect-interval", type=float, help="検出間隔（秒）")
    parser_start.add_argument("--sync-interval", type=float, help="同期間隔（秒）")
    parser_start.add_argument("--port", type=int, help="ヘルスチェックのポート")
    parser_start.add_argument("--no-file-watch", action="store_true", help="ファイル監視を無効化")

    return parser


def load_config(config_path: Optional[str], project_root: Optional[str]) -> Config:
    if config_path:
        return Config.from_yaml(Path(config_path), project_root=project_root)
    return Config.from_env(project_root=project_root)


def run_command(orchestrator: TodoOrchestrator, args: argparse.Namespace) -> int:
    """サブコマンドを対応するcmd_*関数に振り分ける"""
    if args.command == "sync":
        return cmd_sync(orchestrator, args.session, args.format)
    elif args.command == "detect":
        return cmd_detect(orchestrator, args.auto_complete, args.threshold, args.format)
    elif args.command == "progress":
        return cmd_progress(orchestrator, args.format)
    elif args.command == "analytics":
        return cmd_analytics(orchestrator, args.format)
    elif args.command == "suggest":
        return cmd_suggest(orchestrator, args.files, args.count, args.format)
    elif args.command == "complete":
        return cmd_complete(orchestrator, args.id, args.reason, args.format)
    elif args.command == "promote":
        return cmd_promote(orchestrator, args.id, args.category, args.format)
    elif args.command == "list":
        return cmd_list(orchestrator, args.status, args.priority, args.category, args.limit, args.format)
    elif args.command == "init":
        return cmd_init(orchestrator, args.git_hooks, args.format)
    else:
        print(f"Error: 不明なコマンド: {args.command}", file=sys.stderr)
        return 1


def main(argv: Optional[List[str]] = None) -> int:
    """CLIエントリポイント"""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, args.project_root)
    except SmartTodoError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    setup_logger(log_level=config.log_level if args.command == "start" else "WARNING")

    if args.command == "start":
        try:
            return cmd_start(
                config, args.detect_interval, args.sync_interval, args.port, args.no_file_watch
            )
        except Exception as exc:
            print(f"Error: サービスを起動できません: {exc}", file=sys.stderr)
            return 1

    orchestrator = TodoOrchestrator(config)
    try:
        orchestrator.initialize(run_detection=False)
        exit_code = run_command(orchestrator, args)
    except SmartTodoError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1
    except Exception as exc:
        print(f"Error: {args.command} に失敗しました: {exc}", file=sys.stderr)
        exit_code = 1

    try:
        orchestrator.shutdown()
    except SmartTodoError as exc:
        if exit_code == 0:
            print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
