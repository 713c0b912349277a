"""認証セッションとIDプロバイダの公開API。"""

from __future__ import annotations

from authchat.auth.base import AccessToken, Account, AuthContext, IdentityProvider
from authchat.auth.cache import CacheEntry, TokenCache
from authchat.auth.oidc import OIDCIdentityProvider
from authchat.auth.session import Session, SessionManager, SessionState

__all__ = [
    "AccessToken",
    "Account",
    "AuthContext",
    "CacheEntry",
    "IdentityProvider",
    "OIDCIdentityProvider",
    "Session",
    "SessionManager",
    "SessionState",
    "TokenCache",
    "build_session_manager",
]


def build_session_manager(settings) -> SessionManager:
    """設定からSessionManagerを組み立てる。

    Args:
        settings: ChatSettings インスタンス。

    Returns:
        SessionManager。require_auth=False の場合はIDプロバイダを持たない。
    """

    if not settings.require_auth:
        return SessionManager(None, require_auth=False)

    context = AuthContext(
        client_id=settings.client_id,
        authority=settings.authority,
        redirect_uri=settings.redirect_uri,
        scopes=list(settings.scopes),
    )
    provider = OIDCIdentityProvider(
        context,
        timeout_seconds=settings.auth_timeout,
        request_timeout=settings.request_timeout,
    )
    return SessionManager(provider, scopes=settings.scopes, require_auth=True)
