"""
コマンドライン引数の解析
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass
class ParsedCommand:
    """解析済みコマンド

    Attributes:
        options: オプション辞書
        config_path: 設定ファイルのパス
        messages: 起動時に送信するメッセージ
    """

    options: Dict[str, Any]
    config_path: Optional[Path]
    messages: List[str]


@dataclass
class ValidationResult:
    """バリデーション結果

    Attributes:
        is_valid: 有効かどうか
        errors: エラーメッセージのリスト
    """

    is_valid: bool
    errors: List[str]


class ArgumentParser:
    """コマンドライン引数の解析"""

    def parse(self, argv: List[str]) -> ParsedCommand:
        """引数を解析してParsedCommandを返す

        Args:
            argv: コマンドライン引数リスト

        Returns:
            ParsedCommand: 解析結果
        """
        options: Dict[str, Any] = {}
        messages: List[str] = []
        config_path: Optional[Path] = None

        i = 0
        while i < len(argv):
            arg = argv[i]

            if arg in ("-h", "--help"):
                options["help"] = True
                i += 1
                continue

            if arg in ("-v", "--version"):
                options["version"] = True
                i += 1
                continue

            if arg == "--config-check":
                options["config_check"] = True
                i += 1
                continue

            if arg == "--config":
                if i + 1 < len(argv):
                    config_path = Path(argv[i + 1])
                    i += 2
                    continue
                options["missing_config_path"] = True
                i += 1
                continue

            if arg == "--login":
                options["login"] = True
                i += 1
                continue

            if arg.startswith("-"):
                options.setdefault("unknown", []).append(arg)
            else:
                messages.append(arg)
            i += 1

        return ParsedCommand(options=options, config_path=config_path, messages=messages)

    def validate(self, parsed: ParsedCommand) -> ValidationResult:
        """解析結果の妥当性を検証

        Args:
            parsed: 解析済みコマンド

        Returns:
            ValidationResult: バリデーション結果
        """
        errors: List[str] = []

        if parsed.options.get("help") or parsed.options.get("version"):
            return ValidationResult(is_valid=True, errors=[])

        if parsed.options.get("missing_config_path"):
            errors.append("--config requires a file path.")

        for option in parsed.options.get("unknown", []):
            errors.append(f"Unknown option: '{option}'. Use --help for usage information.")

        if parsed.config_path is not None and not parsed.config_path.exists():
            errors.append(f"Config file not found: {parsed.config_path}")

        return ValidationResult(is_valid=not errors, errors=errors)
