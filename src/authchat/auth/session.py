"""
SessionManagerの実装
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence

from authchat.auth.base import AccessToken, Account, IdentityProvider
from authchat.errors import (
    AuthchatException,
    ErrorCode,
    InteractionRequiredException,
    NoActiveAccountException,
    TokenAcquisitionException,
    create_auth_error,
)

logger = logging.getLogger(__name__)

ANONYMOUS_ACCOUNT = Account(identifier="anonymous", display_name="Anonymous", username="")

_UNSET: Any = object()


class SessionState(str, Enum):
    """認証セッションの状態"""
    UNAUTHENTICATED = "UNAUTHENTICATED"
    AUTHENTICATING = "AUTHENTICATING"
    AUTHENTICATED = "AUTHENTICATED"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"


@dataclass
class Session:
    """実行中のインスタンスにつき1つだけ存在する認証セッション"""
    state: SessionState = SessionState.UNAUTHENTICATED
    account: Optional[Account] = None
    last_error: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED and self.account is not None


StateListener = Callable[[SessionState, Session], None]


class SessionManager:
    """
    認証セッションの状態遷移とトークン取得を管理するクラス。

    login / logout / get_access_token は1つのロックで直列化する。
    require_auth=False の場合は匿名アカウントで常に認証済みとして振る舞う。
    """

    def __init__(
        self,
        identity_provider: Optional[IdentityProvider],
        scopes: Sequence[str] = (),
        require_auth: bool = True,
    ):
        if require_auth and identity_provider is None:
            raise ValueError("require_auth=True では identity_provider が必須です")

        self.identity_provider = identity_provider
        self.scopes = list(scopes)
        self.require_auth = require_auth
        self.session = Session()
        self._listeners: List[StateListener] = []
        self._lock = asyncio.Lock()

        if not require_auth:
            self.session = Session(state=SessionState.AUTHENTICATED, account=ANONYMOUS_ACCOUNT)

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def is_authenticated(self) -> bool:
        return self.session.is_authenticated

    def add_listener(self, listener: StateListener) -> None:
        """状態遷移の通知先を登録する。"""
        self._listeners.append(listener)

    async def initialize(self) -> Session:
        """
        起動時の状態を決定する。

        IDプロバイダのキャッシュにアカウントがあれば、対話なしで認証済みにする。
        """
        if not self.require_auth:
            return self.session

        async with self._lock:
            try:
                account = await self.identity_provider.discover_cached_account()
            except Exception:
                logger.exception("Cached account discovery failed")
                account = None

            if account is not None:
                self._transition(SessionState.AUTHENTICATED, account=account)
                logger.info("Restored cached account: %s", account.username)
            else:
                self._transition(SessionState.UNAUTHENTICATED, account=None)
            return self.session

    async def login(self) -> Session:
        """
        対話的なログインを行う。

        失敗しても例外は送出せず、last_error に理由を残して未認証に戻す。
        """
        if not self.require_auth:
            return self.session

        async with self._lock:
            if self.session.is_authenticated:
                return self.session

            self._transition(SessionState.AUTHENTICATING)
            try:
                account = await self.identity_provider.login_interactive(self.scopes)
            except Exception as e:
                reason = self._describe(e)
                logger.warning("Login failed: %s", reason)
                self._transition(SessionState.AUTHENTICATION_FAILED, account=None, last_error=reason)
                self._transition(SessionState.UNAUTHENTICATED, account=None, last_error=reason)
                return self.session

            self._transition(SessionState.AUTHENTICATED, account=account, last_error=None)
            logger.info("Login succeeded: %s", account.username)
            return self.session

    async def logout(self) -> Session:
        """
        サインアウトする。

        リモートのサインアウトの成否に関わらず、ローカルの状態は必ず破棄する。
        """
        if not self.require_auth:
            return self.session

        async with self._lock:
            last_error = None
            try:
                await self.identity_provider.logout_interactive()
            except Exception as e:
                last_error = self._describe(e)
                logger.warning("Remote sign-out failed: %s", last_error)
            finally:
                self._transition(SessionState.UNAUTHENTICATED, account=None, last_error=last_error)
            return self.session

    async def get_access_token(self) -> Optional[AccessToken]:
        """
        直後のリクエストで使うアクセストークンを取得する。

        サイレント取得がユーザー操作を要求した場合に限り、対話的取得を1回だけ行う。
        それ以外のサイレント取得の失敗はそのまま送出する。

        Returns:
            AccessToken。require_auth=False の場合は None。

        Raises:
            NoActiveAccountException: 認証済みのアカウントがない場合
            TokenAcquisitionException: トークンを取得できなかった場合
            AuthchatException: サイレント取得のその他の失敗
        """
        if not self.require_auth:
            return None

        async with self._lock:
            account = self.session.account
            if not self.session.is_authenticated or account is None:
                raise NoActiveAccountException(
                    create_auth_error(
                        ErrorCode.AUTH_NO_ACTIVE_ACCOUNT,
                        "ログインしていません。",
                    )
                )

            try:
                token = await self.identity_provider.acquire_token_silent(account, self.scopes)
            except InteractionRequiredException as e:
                logger.info("Silent token acquisition requires interaction: %s", e.error.message)
                token = await self._acquire_interactive()

            if not token.access_token:
                raise TokenAcquisitionException(
                    create_auth_error(
                        ErrorCode.AUTH_TOKEN_ACQUISITION_FAILED,
                        "空のアクセストークンが返されました。",
                    )
                )
            return token

    async def _acquire_interactive(self) -> AccessToken:
        try:
            return await self.identity_provider.acquire_token_interactive(self.scopes)
        except TokenAcquisitionException:
            raise
        except Exception as e:
            raise TokenAcquisitionException(
                create_auth_error(
                    ErrorCode.AUTH_TOKEN_ACQUISITION_FAILED,
                    self._describe(e),
                )
            ) from e

    def _transition(
        self,
        state: SessionState,
        *,
        account: Optional[Account] = _UNSET,
        last_error: Optional[str] = _UNSET,
    ) -> None:
        """
        Sessionを丸ごと置き換えて状態を遷移させ、通知先に知らせる。
        """
        self.session = Session(
            state=state,
            account=self.session.account if account is _UNSET else account,
            last_error=self.session.last_error if last_error is _UNSET else last_error,
        )
        for listener in list(self._listeners):
            try:
                listener(state, self.session)
            except Exception:
                logger.exception("Session listener failed")

    @staticmethod
    def _describe(error: Exception) -> str:
        if isinstance(error, AuthchatException):
            return error.error.message
        return str(error) or error.__class__.__name__
