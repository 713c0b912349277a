"""
ChatCLIメインモジュール

認証セッションとチャットクライアントを対話的なプロンプトに結び付ける
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Callable, Dict, List, Optional, TextIO

from authchat import __version__
from authchat.auth import Session, SessionManager, SessionState, build_session_manager
from authchat.chat import ChatClient, ChatExchange
from authchat.config.settings import ChatSettings

logger = logging.getLogger(__name__)

PROMPT = "> "

COMMAND_HELP = """Commands:
    /login    サインインする
    /logout   サインアウトする
    /status   認証状態を表示する
    /help     このメッセージを表示する
    /quit     終了する
それ以外の入力はチャットAPIに送信されます。"""


class ChatCLI:
    """authchatの対話的フロントエンド"""

    def __init__(
        self,
        settings: ChatSettings,
        session_manager: Optional[SessionManager] = None,
        chat_client: Optional[ChatClient] = None,
        input_func: Callable[[str], str] = input,
        output: Optional[TextIO] = None,
        error_output: Optional[TextIO] = None,
    ):
        """初期化

        Args:
            settings: 設定オブジェクト
            session_manager: 認証セッション（省略時は設定から生成）
            chat_client: チャットクライアント（省略時は設定から生成）
            input_func: 1行読み込む関数
        """
        self.settings = settings
        self.session_manager = session_manager or build_session_manager(settings)
        self.chat_client = chat_client or ChatClient(
            settings.api_url,
            self.session_manager,
            timeout=settings.request_timeout,
        )
        self._input = input_func
        self._out = output or sys.stdout
        self._err = error_output or sys.stderr
        self.session_manager.add_listener(self._on_state_change)

    def run(self, messages: List[str], options: Dict[str, Any] | None = None) -> int:
        """CLIを実行し、Exit Codeを返す

        Args:
            messages: 起動時に送信するメッセージ（空なら対話モード）
            options: 解析済みオプション辞書

        Returns:
            int: 終了コード（0: 成功、非0: エラー）
        """
        return asyncio.run(self.run_async(messages, options))

    async def run_async(self, messages: List[str], options: Dict[str, Any] | None = None) -> int:
        if options is None:
            options = {}

        try:
            await self.session_manager.initialize()
            if options.get("login") or (messages and not self.session_manager.is_authenticated):
                await self.session_manager.login()

            if messages:
                return await self._send_all(messages)
            await self._repl()
            return 0
        finally:
            await self.chat_client.aclose()

    async def _send_all(self, messages: List[str]) -> int:
        if not self.session_manager.is_authenticated:
            # サインイン失敗の理由は状態通知で表示済み
            if self.session_manager.session.last_error is None:
                self._print_error("ログインしていません。")
            return 1

        exit_code = 0
        for message in messages:
            exchange = await self.chat_client.send_message(message)
            if exchange is None or not self._render(exchange):
                exit_code = 1
        return exit_code

    async def _repl(self) -> None:
        self._print(f"authchat {__version__} - /help でコマンド一覧")
        self._print_status(self.session_manager.session)

        while True:
            try:
                line = await asyncio.to_thread(self._input, PROMPT)
            except (EOFError, KeyboardInterrupt):
                self._print("")
                return

            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                if not await self._handle_command(line):
                    return
                continue

            if not self.session_manager.is_authenticated:
                self._print_error("ログインしていません。/login でサインインしてください。")
                continue

            exchange = await self.chat_client.send_message(line)
            if exchange is not None:
                self._render(exchange)

    async def _handle_command(self, line: str) -> bool:
        """スラッシュコマンドを実行する。終了する場合はFalseを返す"""
        command = line.split()[0].lower()

        if command in ("/quit", "/exit"):
            return False
        if command == "/help":
            self._print(COMMAND_HELP)
        elif command == "/login":
            session = await self.session_manager.login()
            self._print_status(session)
        elif command == "/logout":
            session = await self.session_manager.logout()
            self._print_status(session)
        elif command == "/status":
            self._print_status(self.session_manager.session)
        else:
            self._print_error(f"Unknown command: '{command}'. /help でコマンド一覧を表示します。")
        return True

    def _render(self, exchange: ChatExchange) -> bool:
        if exchange.error_message is not None:
            self._print_error(exchange.error_message)
            return False
        self._print(f"Response: {exchange.response_text}")
        return True

    def _print_status(self, session: Session) -> None:
        if session.is_authenticated and session.account is not None:
            name = session.account.display_name
            if session.account.username:
                name = f"{name} ({session.account.username})"
            self._print(f"[auth] signed in as {name}")
        else:
            self._print("[auth] not signed in")

    def _on_state_change(self, state: SessionState, session: Session) -> None:
        logger.debug("Session state changed: %s", state.value)
        if state == SessionState.AUTHENTICATION_FAILED:
            self._print_error(f"サインインに失敗しました: {session.last_error}")

    def _print(self, text: str) -> None:
        print(text, file=self._out)

    def _print_error(self, text: str) -> None:
        print(f"Error: {text}", file=self._err)
