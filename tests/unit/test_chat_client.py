"""
ChatClient のユニットテスト
"""

import asyncio
import time
import unittest
from unittest.mock import AsyncMock, MagicMock

import httpx

from authchat.auth.base import AccessToken, Account
from authchat.auth.session import SessionManager
from authchat.chat.client import ChatClient
from authchat.errors import (
    ErrorCode,
    InteractionRequiredException,
    TokenAcquisitionException,
    create_auth_error,
)

API_URL = "https://chat.example.com/"
ACCOUNT = Account(identifier="oid-1", display_name="Ada", username="ada@example.com")


def make_token(value="token-abc"):
    return AccessToken(access_token=value, expires_at=time.time() + 3600)


class RecordingTransport:
    """送信されたリクエストを記録するハンドラ"""

    def __init__(self, response=None, error=None):
        self.requests = []
        self.response = response or httpx.Response(200, json={"response": "hi there"})
        self.error = error

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response


class TestChatClient(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.provider = AsyncMock()
        self.provider.discover_cached_account.return_value = ACCOUNT
        self.provider.acquire_token_silent.return_value = make_token()
        self.manager = SessionManager(self.provider, ["api://chat/Chat.Send"])
        await self.manager.initialize()

    def make_client(self, handler):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        self.addAsyncCleanup(http_client.aclose)
        return ChatClient(API_URL, self.manager, http_client=http_client)

    async def test_successful_exchange(self):
        """200応答の response フィールドが反映される"""
        transport = RecordingTransport()
        client = self.make_client(transport)

        exchange = await client.send_message("hello")

        self.assertEqual(exchange.input_text, "hello")
        self.assertEqual(exchange.response_text, "hi there")
        self.assertIsNone(exchange.error_message)
        self.assertFalse(exchange.is_pending)
        self.assertFalse(client.is_pending)

        self.assertEqual(len(transport.requests), 1)
        request = transport.requests[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.url.path, "/chat")
        self.assertEqual(request.url.params["message"], "hello")
        self.assertEqual(request.headers["Authorization"], "Bearer token-abc")
        self.assertEqual(request.headers["Content-Type"], "application/json")
        self.assertEqual(request.headers["Accept"], "application/json")

    async def test_http_error_status(self):
        """500応答はステータスコードを含むエラーになる"""
        transport = RecordingTransport(response=httpx.Response(500, text="boom"))
        client = self.make_client(transport)

        exchange = await client.send_message("hello")

        self.assertIn("500", exchange.error_message)
        self.assertEqual(exchange.error_message, "HTTP error! status: 500")
        self.assertIsNone(exchange.response_text)
        self.assertFalse(exchange.is_pending)

    async def test_transport_error(self):
        transport = RecordingTransport(error=httpx.ConnectError("connection refused"))
        client = self.make_client(transport)

        exchange = await client.send_message("hello")

        self.assertEqual(exchange.error_message, "connection refused")
        self.assertIsNone(exchange.response_text)
        self.assertFalse(client.is_pending)

    async def test_timeout_error_without_message(self):
        transport = RecordingTransport(error=httpx.ReadTimeout(""))
        client = self.make_client(transport)

        exchange = await client.send_message("hello")

        self.assertEqual(exchange.error_message, "ReadTimeout")

    async def test_malformed_json(self):
        transport = RecordingTransport(
            response=httpx.Response(200, content=b"<html>not json</html>")
        )
        client = self.make_client(transport)

        exchange = await client.send_message("hello")

        self.assertIsNotNone(exchange.error_message)
        self.assertIsNone(exchange.response_text)
        self.assertFalse(exchange.is_pending)

    async def test_missing_response_field(self):
        transport = RecordingTransport(response=httpx.Response(200, json={"answer": "hi"}))
        client = self.make_client(transport)

        exchange = await client.send_message("hello")

        self.assertIn("response", exchange.error_message)
        self.assertIsNone(exchange.response_text)

    async def test_token_failure_skips_http_call(self):
        """サイレント取得のネットワークエラーはポップアップなしでエラーになる"""
        self.provider.acquire_token_silent.side_effect = TokenAcquisitionException(
            create_auth_error(ErrorCode.AUTH_TOKEN_ACQUISITION_FAILED, "network unreachable")
        )
        transport = RecordingTransport()
        client = self.make_client(transport)

        exchange = await client.send_message("hello")

        self.assertEqual(exchange.error_message, "network unreachable")
        self.assertIsNone(exchange.response_text)
        self.assertFalse(exchange.is_pending)
        self.assertEqual(transport.requests, [])
        self.provider.acquire_token_interactive.assert_not_awaited()

    async def test_interactive_fallback_token_is_used(self):
        self.provider.acquire_token_silent.side_effect = InteractionRequiredException(
            create_auth_error(ErrorCode.AUTH_INTERACTION_REQUIRED, "consent_required")
        )
        self.provider.acquire_token_interactive.return_value = make_token("fresh")
        transport = RecordingTransport()
        client = self.make_client(transport)

        exchange = await client.send_message("hello")

        self.assertEqual(exchange.response_text, "hi there")
        self.assertEqual(transport.requests[0].headers["Authorization"], "Bearer fresh")

    async def test_unauthenticated_session_is_noop(self):
        await self.manager.logout()
        transport = RecordingTransport()
        client = self.make_client(transport)

        result = await client.send_message("hello")

        self.assertIsNone(result)
        self.assertEqual(transport.requests, [])
        self.provider.acquire_token_silent.assert_not_awaited()

    async def test_empty_message_is_noop(self):
        transport = RecordingTransport()
        client = self.make_client(transport)

        self.assertIsNone(await client.send_message("   "))
        self.assertEqual(transport.requests, [])

    async def test_second_send_while_pending_is_noop(self):
        """保留中の送信がある間、2回目の送信は何もしない"""
        release = asyncio.Event()
        requests = []

        async def handler(request):
            requests.append(request)
            await release.wait()
            return httpx.Response(200, json={"response": "first"})

        client = self.make_client(handler)

        first = asyncio.create_task(client.send_message("one"))
        for _ in range(100):
            if requests:
                break
            await asyncio.sleep(0)
        self.assertTrue(client.is_pending)
        self.assertTrue(client.exchange.is_pending)

        second = await client.send_message("two")
        self.assertIsNone(second)

        release.set()
        exchange = await first

        self.assertEqual(exchange.response_text, "first")
        self.assertEqual(len(requests), 1)
        self.assertFalse(client.is_pending)

    async def test_untyped_token_failure_becomes_error(self):
        """型付けされていないサイレント取得の失敗もエラーとして報告される"""
        self.provider.acquire_token_silent.side_effect = ConnectionError("network unreachable")
        transport = RecordingTransport()
        client = self.make_client(transport)

        exchange = await client.send_message("hello")

        self.assertEqual(exchange.error_message, "network unreachable")
        self.assertIsNone(exchange.response_text)
        self.assertFalse(exchange.is_pending)
        self.assertFalse(client.is_pending)
        self.assertEqual(transport.requests, [])
        self.provider.acquire_token_interactive.assert_not_awaited()

    async def test_pending_cleared_on_unexpected_error(self):
        manager = MagicMock()
        manager.is_authenticated = True
        manager.get_access_token = AsyncMock(side_effect=RuntimeError())
        http_client = AsyncMock()
        client = ChatClient(API_URL, manager, http_client=http_client)

        exchange = await client.send_message("hello")

        self.assertEqual(exchange.error_message, "RuntimeError")
        self.assertFalse(client.is_pending)
        self.assertFalse(exchange.is_pending)
        http_client.post.assert_not_awaited()

    async def test_new_send_clears_previous_error(self):
        responses = [httpx.Response(503), httpx.Response(200, json={"response": "ok"})]
        client = self.make_client(lambda request: responses.pop(0))

        failed = await client.send_message("hello")
        succeeded = await client.send_message("hello again")

        self.assertIn("503", failed.error_message)
        self.assertIsNone(succeeded.error_message)
        self.assertEqual(succeeded.response_text, "ok")
        self.assertIs(client.exchange, succeeded)


class TestChatClientNoAuth(unittest.IsolatedAsyncioTestCase):
    async def test_no_authorization_header(self):
        manager = SessionManager(None, require_auth=False)
        transport = RecordingTransport()
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
        self.addAsyncCleanup(http_client.aclose)
        client = ChatClient(API_URL, manager, http_client=http_client)

        exchange = await client.send_message("hello")

        self.assertEqual(exchange.response_text, "hi there")
        self.assertNotIn("Authorization", transport.requests[0].headers)

    async def test_owned_client_is_closed(self):
        manager = SessionManager(None, require_auth=False)
        async with ChatClient(API_URL, manager) as client:
            self.assertEqual(client.chat_url, "https://chat.example.com/chat")
        self.assertTrue(client._client.is_closed)


if __name__ == "__main__":
    unittest.main()
