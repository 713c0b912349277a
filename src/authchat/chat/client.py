"""チャットクライアント

SessionManagerから取得したトークンでチャットAPIを1回呼び出し、
結果をChatExchangeに反映する。
"""

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from authchat.auth.session import SessionManager
from authchat.errors import AuthchatException, ChatApiException, ErrorCode, create_api_error

logger = logging.getLogger(__name__)


class ChatExchange(BaseModel):
    """1回の送信試行の状態"""
    input_text: str
    response_text: Optional[str] = None
    error_message: Optional[str] = None
    is_pending: bool = False


class ChatClient:
    """チャットAPIクライアント

    送信のたびにSessionManagerからトークンを取得し、
    同時に保留中にできる送信は1つだけに制限する。

    Attributes:
        api_url: チャットAPIのベースURL
        session_manager: 認証セッション
        exchange: 直近の送信試行
    """

    def __init__(
        self,
        api_url: str,
        session_manager: SessionManager,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """ChatClientを初期化

        Args:
            api_url: チャットAPIのベースURL
            session_manager: 認証セッション
            http_client: 送信に使うHTTPクライアント（省略時は内部で生成）
            timeout: タイムアウト秒数
        """
        self.api_url = api_url.rstrip("/")
        self.session_manager = session_manager
        self.exchange: Optional[ChatExchange] = None
        self._timeout = timeout
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._pending = False

    @property
    def chat_url(self) -> str:
        return f"{self.api_url}/chat"

    @property
    def is_pending(self) -> bool:
        return self._pending

    async def send_message(self, input_text: str) -> Optional[ChatExchange]:
        """メッセージを送信する

        送信中の場合、未認証の場合、空メッセージの場合は何もせずNoneを返す。
        エラーは例外ではなく exchange.error_message に設定する。

        Args:
            input_text: 送信するメッセージ

        Returns:
            Optional[ChatExchange]: 今回の送信試行
        """
        if self._pending:
            logger.debug("Send ignored: another exchange is pending")
            return None
        if not self.session_manager.is_authenticated:
            logger.debug("Send ignored: session is not authenticated")
            return None
        if not input_text or not input_text.strip():
            return None

        self._pending = True
        exchange = ChatExchange(input_text=input_text, is_pending=True)
        self.exchange = exchange
        try:
            try:
                token = await self.session_manager.get_access_token()
            except AuthchatException as e:
                logger.warning("Token acquisition failed: %s", e.error.message)
                exchange.error_message = e.error.message
                return exchange
            except Exception as e:
                logger.warning("Token acquisition failed: %s", e, exc_info=True)
                exchange.error_message = self._describe(e)
                return exchange

            try:
                exchange.response_text = await self._post(
                    input_text, token.access_token if token is not None else None
                )
            except ChatApiException as e:
                logger.warning("Chat request failed: %s", e.error.message)
                exchange.error_message = e.error.message
            return exchange
        finally:
            exchange.is_pending = False
            self._pending = False

    async def _post(self, message: str, access_token: Optional[str]) -> str:
        """チャットエンドポイントにPOSTし、応答テキストを返す

        Raises:
            ChatApiException: HTTPエラー、通信エラー、応答形式の不正
        """
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if access_token is not None:
            headers["Authorization"] = f"Bearer {access_token}"

        url = self.chat_url
        try:
            response = await self._client.post(
                url,
                params={"message": message},
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise ChatApiException(
                create_api_error(
                    code=ErrorCode.API_TIMEOUT,
                    message=self._describe(exc),
                    details={"url": url, "timeout": self._timeout},
                )
            ) from exc
        except httpx.HTTPError as exc:
            raise ChatApiException(
                create_api_error(
                    code=ErrorCode.API_ERROR,
                    message=self._describe(exc),
                    details={"url": url},
                )
            ) from exc

        if not response.is_success:
            raise ChatApiException(
                create_api_error(
                    code=ErrorCode.API_HTTP_ERROR,
                    message=f"HTTP error! status: {response.status_code}",
                    details={"url": url, "status": response.status_code, "error": response.text},
                )
            )

        try:
            data: Dict[str, Any] = response.json()
        except ValueError as exc:
            raise ChatApiException(
                create_api_error(
                    code=ErrorCode.API_INVALID_RESPONSE,
                    message=self._describe(exc),
                    details={"url": url, "response": response.text},
                )
            ) from exc

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise ChatApiException(
                create_api_error(
                    code=ErrorCode.API_INVALID_RESPONSE,
                    message="Invalid response format: missing 'response'",
                    details={"url": url, "response": data},
                )
            )
        return text

    async def aclose(self) -> None:
        """内部で生成したHTTPクライアントを閉じる"""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @staticmethod
    def _describe(error: Exception) -> str:
        return str(error) or error.__class__.__name__
