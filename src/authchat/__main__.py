"""authchatのCLIエントリーポイント"""

import json
import logging
import sys
from typing import List

from authchat import __version__
from authchat.cli.main import ChatCLI
from authchat.cli.parser import ArgumentParser
from authchat.config.manager import ConfigManager
from authchat.errors import ConfigurationException


def main(args: List[str] | None = None) -> int:
    """
    authchatのメインエントリーポイント

    Args:
        args: コマンドライン引数（Noneの場合はsys.argvを使用）

    Returns:
        終了コード（0: 成功、非0: エラー）
    """
    if args is None:
        args = sys.argv[1:]

    parser = ArgumentParser()
    parsed = parser.parse(args)

    if parsed.options.get("version"):
        print(f"authchat {__version__}")
        return 0

    if parsed.options.get("help"):
        _print_help()
        return 0

    validation = parser.validate(parsed)
    if not validation.is_valid:
        for error in validation.errors:
            print(error, file=sys.stderr)
        return 1

    # 設定エラーは対話を始める前に致命的エラーとして扱う
    try:
        settings = ConfigManager().load(parsed.config_path)
    except ConfigurationException as exc:
        print(f"Configuration error: {exc.error.message}", file=sys.stderr)
        return 1

    if parsed.options.get("config_check"):
        print(json.dumps(settings.dump_masked(), ensure_ascii=False, indent=2))
        return 0

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    cli = ChatCLI(settings)
    return cli.run(parsed.messages, options=parsed.options)


def _print_help() -> None:
    """ヘルプメッセージを表示"""
    help_text = f"""authchat v{__version__} - OAuth2/OIDCで認証してチャットAPIと対話するクライアント

Usage:
    authchat [options] [message ...]

引数にメッセージを渡すと送信して終了し、省略すると対話モードで起動します。

Options:
    -h, --help           ヘルプメッセージを表示
    -v, --version        バージョン情報を表示
    --config <path>      設定ファイル（YAML）を指定
    --config-check       設定内容を検証して表示（client_idはマスク）
    --login              起動時にサインインする

Environment:
    AUTHCHAT_API_URL        チャットAPIのベースURL
    AUTHCHAT_CLIENT_ID      OAuthクライアントID
    AUTHCHAT_TENANT_ID      テナント（認可サーバー）ID
    AUTHCHAT_REDIRECT_URI   リダイレクトURI（ループバック）
    AUTHCHAT_SCOPES         要求するスコープ（カンマまたは空白区切り）
    AUTHCHAT_REQUIRE_AUTH   false にすると認証なしで送信

Examples:
    authchat --login
    authchat "hello"
"""
    print(help_text)


if __name__ == "__main__":
    sys.exit(main())
