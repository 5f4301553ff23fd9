"""smart-todoのカスタム例外定義

Design Reference: DESIGN.md (エラーハンドリング)
"""


class SmartTodoError(Exception):
    """smart-todo基底例外"""

    pass


class TodoNotFoundError(SmartTodoError, KeyError):
    """指定IDのTodoが存在しない"""

    def __init__(self, todo_id: str, partition: str = ""):
        self.todo_id = todo_id
        self.partition = partition
        where = f"{partition} " if partition else ""
        super().__init__(f"{where}todo with ID {todo_id} not found")

    def __str__(self) -> str:
        # KeyErrorのrepr表示ではなく通常のメッセージを返す
        return str(self.args[0])


class VCSUnavailableError(SmartTodoError):
    """gitコマンドが実行できない（strictモード時のみ送出）"""

    pass


class StorePersistenceError(SmartTodoError):
    """Todoストアの保存に失敗"""

    pass


class BacklogParseError(SmartTodoError):
    """バックログ文書のセクション解析エラー"""

    pass


class HookInstallError(SmartTodoError):
    """gitフックのインストール失敗"""

    pass


class ConfigurationError(SmartTodoError):
    """設定エラー"""

    pass
