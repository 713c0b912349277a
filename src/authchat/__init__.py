"""authchat - OAuth2/OIDC認証付きチャットクライアント"""

__version__ = "0.1.0"
