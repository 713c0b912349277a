"""OAuth 2.0 / OpenID Connect (Authorization Code + PKCE) IDプロバイダ。"""

from __future__ import annotations

import asyncio
import base64
import hashlib
from http.server import BaseHTTPRequestHandler, HTTPServer
import logging
import secrets
import threading
import time
from typing import Any, Callable, Sequence
from urllib.parse import parse_qs, urlparse
import webbrowser

import httpx
import jwt

from authchat.auth.base import AccessToken, Account, AuthContext, IdentityProvider
from authchat.auth.cache import CacheEntry, TokenCache
from authchat.errors import (
    AuthenticationException,
    ErrorCode,
    InteractionRequiredException,
    TokenAcquisitionException,
    create_auth_error,
)

logger = logging.getLogger(__name__)

# 常に要求するOIDCのスコープ。アクセストークンのスコープ判定からは除外する。
OIDC_SCOPES = ("openid", "profile", "offline_access")

# トークンエンドポイントがこれらを返した場合はユーザー操作が必要
INTERACTION_REQUIRED_ERRORS = frozenset(
    {"invalid_grant", "interaction_required", "login_required", "consent_required"}
)

# 期限直前のトークンは使わない
EXPIRY_SKEW_SECONDS = 300.0


class _AuthCallbackServer(HTTPServer):
    def __init__(self, server_address: tuple[str, int], callback_path: str) -> None:
        super().__init__(server_address, _AuthCallbackHandler)
        self.callback_path = callback_path
        self.auth_code: str | None = None
        self.auth_state: str | None = None
        self.auth_error: str | None = None
        self.auth_error_description: str | None = None
        self.event = threading.Event()


class _AuthCallbackHandler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        server = self.server
        if not isinstance(server, _AuthCallbackServer) or parsed.path != server.callback_path:
            self.send_response(404)
            self.end_headers()
            self.wfile.write(b"Not Found")
            return

        query = parse_qs(parsed.query)
        server.auth_code = query.get("code", [None])[0]
        server.auth_state = query.get("state", [None])[0]
        server.auth_error = query.get("error", [None])[0]
        server.auth_error_description = query.get("error_description", [None])[0]
        server.event.set()

        self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.end_headers()
        if server.auth_error:
            self.wfile.write(b"Authentication failed. You can close this window.")
        else:
            self.wfile.write(b"Authentication successful. You can close this window.")

    def log_message(self, format: str, *args: object) -> None:  # noqa: A003
        return


class OIDCIdentityProvider(IdentityProvider):
    """ブラウザとループバックサーバーでOIDC認証を行うIDプロバイダ。

    トークンはプロセス内の TokenCache にのみ保持する。
    サイレント取得はキャッシュ済みのアクセストークンを優先し、
    期限切れの場合はリフレッシュトークンで更新する。
    """

    def __init__(
        self,
        context: AuthContext,
        cache: TokenCache | None = None,
        *,
        timeout_seconds: float = 180.0,
        request_timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        open_browser: Callable[[str], Any] = webbrowser.open,
    ) -> None:
        """OIDCIdentityProviderを初期化する。

        Args:
            context: 認証に必要な設定情報。
            cache: トークンキャッシュ。
            timeout_seconds: コールバック待機タイムアウト。
            request_timeout: トークンエンドポイントへのリクエストタイムアウト。
            http_client: トークンエンドポイント呼び出しに使うクライアント。
            open_browser: 認可URLを開く関数。
        """

        self._context = context
        self._cache = cache or TokenCache()
        self._timeout_seconds = timeout_seconds
        self._request_timeout = request_timeout
        self._http_client = http_client
        self._open_browser = open_browser

    @property
    def authorize_url(self) -> str:
        return f"{self._context.authority}/oauth2/v2.0/authorize"

    @property
    def token_url(self) -> str:
        return f"{self._context.authority}/oauth2/v2.0/token"

    @property
    def logout_url(self) -> str:
        return f"{self._context.authority}/oauth2/v2.0/logout"

    async def discover_cached_account(self) -> Account | None:
        """キャッシュ済みのアカウントを返す。"""

        accounts = self._cache.accounts()
        if not accounts:
            return None
        if len(accounts) > 1:
            logger.warning("Multiple cached accounts found; using the first one")
        return accounts[0]

    async def login_interactive(self, scopes: Sequence[str]) -> Account:
        """ブラウザでログインし、アカウントとトークンをキャッシュする。"""

        payload = await self._run_authorization_flow(scopes, prompt="select_account")
        account = self._account_from_payload(payload)
        if account is None:
            raise AuthenticationException(
                create_auth_error(
                    ErrorCode.AUTH_LOGIN_FAILED,
                    "IDトークンからアカウント情報を取得できませんでした。",
                )
            )

        self._cache.clear()
        self._cache.set_entry(
            CacheEntry(
                account=account,
                access_token=self._access_token_from_payload(payload, scopes),
                refresh_token=payload.get("refresh_token"),
            )
        )
        logger.info("Signed in as %s", account.username)
        return account

    async def logout_interactive(self) -> None:
        """サインアウトURLをブラウザで開き、キャッシュを破棄する。"""

        entry = self._current_entry()
        self._cache.clear()

        params: dict[str, str] = {"post_logout_redirect_uri": self._context.redirect_uri}
        if entry is not None and entry.account.username:
            params["logout_hint"] = entry.account.username
        url = f"{self.logout_url}?{httpx.QueryParams(params)}"
        try:
            await asyncio.to_thread(self._open_browser, url)
        except Exception as exc:
            raise AuthenticationException(
                create_auth_error(
                    ErrorCode.AUTH_LOGOUT_FAILED,
                    "サインアウト画面を開けませんでした。",
                    details={"reason": str(exc)},
                )
            ) from exc

    async def acquire_token_silent(self, account: Account, scopes: Sequence[str]) -> AccessToken:
        """キャッシュまたはリフレッシュトークンでアクセストークンを取得する。

        Raises:
            InteractionRequiredException: 再ログインや同意が必要な場合。
            TokenAcquisitionException: 通信エラーなどそれ以外の失敗。
        """

        entry = self._cache.get_entry(account.identifier)
        if entry is None:
            raise self._interaction_required("アカウントのトークンがキャッシュにありません。")

        cached = entry.access_token
        if (
            cached is not None
            and not cached.is_expired(skew_seconds=EXPIRY_SKEW_SECONDS)
            and self._covers(cached, scopes)
        ):
            return cached

        if not entry.refresh_token:
            raise self._interaction_required("リフレッシュトークンがありません。")

        data = {
            "grant_type": "refresh_token",
            "refresh_token": entry.refresh_token,
            "client_id": self._context.client_id,
            "scope": self._scope_param(scopes),
        }
        payload = await self._request_token(data)
        token = self._access_token_from_payload(payload, scopes)
        self._cache.update_tokens(account.identifier, token, payload.get("refresh_token"))
        logger.debug("Access token refreshed for %s", account.username)
        return token

    async def acquire_token_interactive(self, scopes: Sequence[str]) -> AccessToken:
        """ブラウザで再認証し、アクセストークンを取得する。"""

        entry = self._current_entry()
        login_hint = entry.account.username if entry is not None else None
        payload = await self._run_authorization_flow(scopes, login_hint=login_hint)
        token = self._access_token_from_payload(payload, scopes)

        account = self._account_from_payload(payload) or (entry.account if entry else None)
        if account is None:
            raise TokenAcquisitionException(
                create_auth_error(
                    ErrorCode.AUTH_TOKEN_ACQUISITION_FAILED,
                    "アカウント情報を特定できませんでした。",
                )
            )
        self._cache.set_entry(
            CacheEntry(
                account=account,
                access_token=token,
                refresh_token=payload.get("refresh_token") or (entry.refresh_token if entry else None),
            )
        )
        return token

    async def _run_authorization_flow(
        self,
        scopes: Sequence[str],
        *,
        prompt: str | None = None,
        login_hint: str | None = None,
    ) -> dict[str, Any]:
        verifier = self._generate_verifier()
        challenge = self._generate_challenge(verifier)
        state = secrets.token_urlsafe(16)

        parsed = urlparse(self._context.redirect_uri)
        host = parsed.hostname or "127.0.0.1"
        port = parsed.port if parsed.port is not None else 0
        server = _AuthCallbackServer((host, port), parsed.path or "/")

        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()

        try:
            # ポート省略時は実際に待ち受けたポートをredirect_uriに反映する
            port = server.server_address[1]
            scheme = parsed.scheme or "http"
            path = parsed.path or "/"
            redirect_uri = f"{scheme}://{host}:{port}{path}"
            auth_url = self._build_auth_url(
                redirect_uri, challenge, state, scopes, prompt=prompt, login_hint=login_hint
            )
            await asyncio.to_thread(self._open_browser, auth_url)

            received = await asyncio.to_thread(server.event.wait, self._timeout_seconds)
            if not received:
                raise AuthenticationException(
                    create_auth_error(
                        ErrorCode.AUTH_TIMEOUT,
                        "認証のコールバックがタイムアウトしました。",
                        details={"timeout": self._timeout_seconds},
                    )
                )
            if server.auth_error:
                raise AuthenticationException(
                    create_auth_error(
                        ErrorCode.AUTH_LOGIN_FAILED,
                        server.auth_error_description or f"認証エラーが返されました: {server.auth_error}",
                        details={"error": server.auth_error},
                    )
                )
            if server.auth_state != state:
                raise AuthenticationException(
                    create_auth_error(
                        ErrorCode.AUTH_LOGIN_FAILED,
                        "認証レスポンスのstateが一致しません。",
                    )
                )
            if not server.auth_code:
                raise AuthenticationException(
                    create_auth_error(
                        ErrorCode.AUTH_LOGIN_FAILED,
                        "認証コードが取得できませんでした。",
                    )
                )
            code = server.auth_code
        finally:
            server.shutdown()
            server.server_close()
            thread.join(timeout=1)

        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self._context.client_id,
            "code_verifier": verifier,
            "redirect_uri": redirect_uri,
            "scope": self._scope_param(scopes),
        }
        try:
            return await self._request_token(data)
        except InteractionRequiredException as exc:
            # 認可コード交換での invalid_grant はログイン失敗として扱う
            raise AuthenticationException(exc.error) from exc

    def _build_auth_url(
        self,
        redirect_uri: str,
        challenge: str,
        state: str,
        scopes: Sequence[str],
        *,
        prompt: str | None = None,
        login_hint: str | None = None,
    ) -> str:
        params = {
            "response_type": "code",
            "response_mode": "query",
            "client_id": self._context.client_id,
            "redirect_uri": redirect_uri,
            "scope": self._scope_param(scopes),
            "state": state,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
        }
        if prompt:
            params["prompt"] = prompt
        if login_hint:
            params["login_hint"] = login_hint
        return f"{self.authorize_url}?{httpx.QueryParams(params)}"

    async def _request_token(self, data: dict[str, str]) -> dict[str, Any]:
        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    self.token_url, data=data, headers={"Accept": "application/json"}
                )
            else:
                async with httpx.AsyncClient(timeout=self._request_timeout) as client:
                    response = await client.post(
                        self.token_url, data=data, headers={"Accept": "application/json"}
                    )
        except httpx.TimeoutException as exc:
            raise TokenAcquisitionException(
                create_auth_error(
                    ErrorCode.AUTH_TIMEOUT,
                    "トークンエンドポイントへのリクエストがタイムアウトしました。",
                    details={"url": self.token_url},
                )
            ) from exc
        except httpx.HTTPError as exc:
            raise TokenAcquisitionException(
                create_auth_error(
                    ErrorCode.AUTH_TOKEN_ACQUISITION_FAILED,
                    f"トークンエンドポイントに接続できませんでした: {exc}",
                    details={"url": self.token_url},
                )
            ) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_error:
            error = payload.get("error") if isinstance(payload, dict) else None
            description = payload.get("error_description") if isinstance(payload, dict) else None
            logger.error("Token request failed: status=%s error=%s", response.status_code, error)
            if error in INTERACTION_REQUIRED_ERRORS:
                raise self._interaction_required(description or f"ユーザー操作が必要です: {error}", error)
            raise TokenAcquisitionException(
                create_auth_error(
                    ErrorCode.AUTH_TOKEN_ACQUISITION_FAILED,
                    description or f"トークンの取得に失敗しました (status {response.status_code})",
                    details={"status": response.status_code, "error": error},
                )
            )

        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise TokenAcquisitionException(
                create_auth_error(
                    ErrorCode.AUTH_TOKEN_ACQUISITION_FAILED,
                    "アクセストークンがレスポンスに含まれていません。",
                )
            )
        return payload

    def _access_token_from_payload(self, payload: dict[str, Any], scopes: Sequence[str]) -> AccessToken:
        expires_in = payload.get("expires_in")
        try:
            lifetime = float(expires_in) if expires_in is not None else 3600.0
        except (TypeError, ValueError):
            lifetime = 3600.0

        granted = payload.get("scope")
        if isinstance(granted, str) and granted.strip():
            token_scopes = tuple(granted.split())
        else:
            token_scopes = tuple(scopes)

        return AccessToken(
            access_token=str(payload["access_token"]),
            expires_at=time.time() + lifetime,
            scopes=token_scopes,
        )

    def _account_from_payload(self, payload: dict[str, Any]) -> Account | None:
        id_token = payload.get("id_token")
        if not isinstance(id_token, str):
            return None
        claims = decode_id_token_claims(id_token)
        if not claims:
            return None

        object_id = claims.get("oid") or claims.get("sub")
        if not object_id:
            return None
        tenant = claims.get("tid")
        identifier = f"{object_id}.{tenant}" if tenant else str(object_id)
        username = str(claims.get("preferred_username") or claims.get("email") or "")
        display_name = str(claims.get("name") or username)
        return Account(identifier=identifier, display_name=display_name, username=username)

    def _current_entry(self) -> CacheEntry | None:
        accounts = self._cache.accounts()
        if not accounts:
            return None
        return self._cache.get_entry(accounts[0].identifier)

    def _covers(self, token: AccessToken, scopes: Sequence[str]) -> bool:
        requested = {scope.lower() for scope in scopes if scope not in OIDC_SCOPES}
        granted = {scope.lower() for scope in token.scopes}
        return requested.issubset(granted)

    def _interaction_required(self, message: str, error: str | None = None) -> InteractionRequiredException:
        return InteractionRequiredException(
            create_auth_error(
                ErrorCode.AUTH_INTERACTION_REQUIRED,
                message,
                details={"error": error} if error else None,
            )
        )

    def _scope_param(self, scopes: Sequence[str]) -> str:
        ordered = list(OIDC_SCOPES)
        for scope in scopes:
            if scope not in ordered:
                ordered.append(scope)
        return " ".join(ordered)

    def _generate_verifier(self) -> str:
        return self._base64_url_encode(secrets.token_bytes(32))

    def _generate_challenge(self, verifier: str) -> str:
        digest = hashlib.sha256(verifier.encode("utf-8")).digest()
        return self._base64_url_encode(digest)

    def _base64_url_encode(self, raw: bytes) -> str:
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_id_token_claims(id_token: str) -> dict[str, Any]:
    """IDトークンのペイロード部をデコードする。

    署名は検証しない。トークンエンドポイントから直接受け取ったものにだけ使うこと。
    不正な形式の場合は空の辞書を返す。
    """

    try:
        claims = jwt.decode(
            id_token,
            options={"verify_signature": False, "verify_aud": False},
        )
    except jwt.PyJWTError:
        return {}
    return claims if isinstance(claims, dict) else {}
