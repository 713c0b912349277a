"""認証プロバイダ基盤。

IDプロバイダのSDKに依存しないよう、セッション管理が必要とする
最小限の機能だけをインターフェースとして定義する。
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence


@dataclass(frozen=True, slots=True)
class Account:
    """IDプロバイダが返すアカウントのスナップショット。

    ログインのたびに丸ごと置き換え、内容を書き換えることはない。
    """

    identifier: str
    display_name: str
    username: str


@dataclass(frozen=True, slots=True)
class AccessToken:
    """直後の1リクエストで使うアクセストークン。"""

    access_token: str
    expires_at: float
    scopes: tuple[str, ...] = ()

    def is_expired(self, now: float | None = None, skew_seconds: float = 0.0) -> bool:
        """有効期限切れかどうかを返す。

        Args:
            now: 判定時刻（UNIX秒）。省略時は現在時刻。
            skew_seconds: 期限の手前で切れたとみなす猶予秒数。
        """

        current = time.time() if now is None else now
        return current >= self.expires_at - skew_seconds


@dataclass(slots=True)
class AuthContext:
    """認証に必要な設定情報。"""

    client_id: str
    authority: str
    redirect_uri: str
    scopes: list[str] = field(default_factory=list)


class IdentityProvider(ABC):
    """IDプロバイダの抽象基底クラス。

    サイレント取得の失敗は、ユーザー操作が必要な場合に限り
    InteractionRequiredException として通知しなければならない。
    それ以外の失敗は別の AuthchatException として送出する。
    """

    @abstractmethod
    async def discover_cached_account(self) -> Account | None:
        """セッション内キャッシュに残っているアカウントを返す。"""

    @abstractmethod
    async def login_interactive(self, scopes: Sequence[str]) -> Account:
        """対話的なログインを実行し、アカウントを返す。"""

    @abstractmethod
    async def logout_interactive(self) -> None:
        """対話的なサインアウトを実行する。"""

    @abstractmethod
    async def acquire_token_silent(self, account: Account, scopes: Sequence[str]) -> AccessToken:
        """ユーザー操作なしでアクセストークンを取得する。"""

    @abstractmethod
    async def acquire_token_interactive(self, scopes: Sequence[str]) -> AccessToken:
        """対話的にアクセストークンを取得する。"""
