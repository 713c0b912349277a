"""チャットAPIクライアント"""

from authchat.chat.client import ChatClient, ChatExchange

__all__ = ["ChatClient", "ChatExchange"]
