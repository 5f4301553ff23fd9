"""smart-todo CLI実行用エントリポイント

Usage:
    python -m smart_todo <command> [options]
"""

from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
