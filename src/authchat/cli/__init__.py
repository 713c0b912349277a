"""CLI - 対話的フロントエンド"""

from authchat.cli.main import ChatCLI
from authchat.cli.parser import ArgumentParser, ParsedCommand, ValidationResult

__all__ = ["ArgumentParser", "ChatCLI", "ParsedCommand", "ValidationResult"]
