"""設定管理 - 設定の読み込みと管理"""

from authchat.config.manager import ConfigManager
from authchat.config.settings import DEFAULT_AUTHORITY_HOST, ChatSettings

__all__ = [
    "ChatSettings",
    "ConfigManager",
    "DEFAULT_AUTHORITY_HOST",
]
