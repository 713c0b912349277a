"""セッション内に限定したトークンキャッシュ。

プロセス終了とともに破棄され、ディスクには書き出さない。
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import threading

from authchat.auth.base import AccessToken, Account


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """アカウントごとに保持するトークン一式。"""

    account: Account
    access_token: AccessToken | None = None
    refresh_token: str | None = None


class TokenCache:
    """アカウントとトークンの保存と取得を管理する。"""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def set_entry(self, entry: CacheEntry) -> None:
        """エントリを保存する。同じアカウントの既存エントリは置き換える。"""

        with self._lock:
            self._entries[entry.account.identifier] = entry

    def get_entry(self, identifier: str) -> CacheEntry | None:
        """アカウント識別子に対応するエントリを返す。"""

        with self._lock:
            return self._entries.get(identifier)

    def update_tokens(
        self,
        identifier: str,
        access_token: AccessToken,
        refresh_token: str | None = None,
    ) -> CacheEntry | None:
        """アクセストークンを差し替える。

        Args:
            identifier: アカウント識別子。
            access_token: 新しいアクセストークン。
            refresh_token: 新しいリフレッシュトークン。Noneなら既存のものを維持する。

        Returns:
            更新後のエントリ。アカウントが存在しない場合はNone。
        """

        with self._lock:
            entry = self._entries.get(identifier)
            if entry is None:
                return None
            updated = replace(
                entry,
                access_token=access_token,
                refresh_token=refresh_token or entry.refresh_token,
            )
            self._entries[identifier] = updated
            return updated

    def accounts(self) -> list[Account]:
        """保持しているアカウントを保存順に返す。"""

        with self._lock:
            return [entry.account for entry in self._entries.values()]

    def clear(self) -> None:
        """全エントリを削除する。"""

        with self._lock:
            self._entries.clear()
