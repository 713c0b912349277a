import time
import unittest

from authchat.auth.base import AccessToken, Account
from authchat.auth.cache import CacheEntry, TokenCache

ADA = Account(identifier="ada", display_name="Ada", username="ada@example.com")
GRACE = Account(identifier="grace", display_name="Grace", username="grace@example.com")


class TestTokenCache(unittest.TestCase):
    def setUp(self):
        self.cache = TokenCache()

    def test_set_and_get(self):
        entry = CacheEntry(account=ADA, refresh_token="r1")
        self.cache.set_entry(entry)

        self.assertIs(self.cache.get_entry("ada"), entry)
        self.assertIsNone(self.cache.get_entry("grace"))
        self.assertEqual(self.cache.accounts(), [ADA])

    def test_update_tokens_keeps_refresh_token(self):
        self.cache.set_entry(CacheEntry(account=ADA, refresh_token="r1"))
        token = AccessToken("a1", time.time() + 60)

        updated = self.cache.update_tokens("ada", token)

        self.assertEqual(updated.access_token, token)
        self.assertEqual(updated.refresh_token, "r1")
        self.assertEqual(self.cache.update_tokens("ada", token, "r2").refresh_token, "r2")

    def test_update_unknown_account(self):
        self.assertIsNone(self.cache.update_tokens("nobody", AccessToken("a", 0)))

    def test_clear(self):
        self.cache.set_entry(CacheEntry(account=ADA))
        self.cache.set_entry(CacheEntry(account=GRACE))
        self.assertEqual(self.cache.accounts(), [ADA, GRACE])

        self.cache.clear()
        self.assertEqual(self.cache.accounts(), [])


class TestAccessToken(unittest.TestCase):
    def test_is_expired(self):
        token = AccessToken("a", expires_at=1000.0)

        self.assertFalse(token.is_expired(now=900.0))
        self.assertTrue(token.is_expired(now=1000.0))
        self.assertTrue(token.is_expired(now=900.0, skew_seconds=200.0))

    def test_account_is_immutable(self):
        with self.assertRaises(AttributeError):
            ADA.username = "changed"


if __name__ == "__main__":
    unittest.main()
