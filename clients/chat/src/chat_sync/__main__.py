"""Thin runnable wrapper for the line-based chat consumer."""

from chat_sync.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
