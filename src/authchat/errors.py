"""
エラー定義

authchatで使用されるエラーコードと例外クラス
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """エラーコード

    カテゴリ別にエラーコードを定義:
    - CONFIG_xxx: 設定エラー
    - AUTH_xxx: 認証エラー
    - API_xxx: チャットAPIエラー
    """
    # 設定エラー
    CONFIG_MISSING_VALUE = "CONFIG_001"
    CONFIG_INVALID_VALUE = "CONFIG_002"

    # 認証エラー
    AUTH_LOGIN_FAILED = "AUTH_001"
    AUTH_LOGOUT_FAILED = "AUTH_002"
    AUTH_INTERACTION_REQUIRED = "AUTH_003"
    AUTH_TOKEN_ACQUISITION_FAILED = "AUTH_004"
    AUTH_NO_ACTIVE_ACCOUNT = "AUTH_005"
    AUTH_TIMEOUT = "AUTH_006"

    # APIエラー
    API_TIMEOUT = "API_001"
    API_HTTP_ERROR = "API_002"
    API_INVALID_RESPONSE = "API_003"
    API_ERROR = "API_004"


@dataclass
class AuthchatError:
    """authchatエラー情報

    Attributes:
        code: エラーコード文字列
        message: エラーメッセージ（利用者に表示できる短い文）
        details: 追加のエラー詳細情報
        recoverable: 復旧可能かどうか
    """
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    recoverable: bool = False
    log_level: int = logging.ERROR


class AuthchatException(Exception):
    """authchat例外クラス

    AuthchatErrorをラップする例外クラス
    """

    def __init__(self, error: AuthchatError):
        """AuthchatExceptionを初期化

        Args:
            error: AuthchatErrorインスタンス
        """
        self.error = error
        self.log_level = error.log_level
        super().__init__(f"[{error.code}] {error.message}")


class ConfigurationException(AuthchatException):
    """設定例外（起動時に致命的）"""


class AuthenticationException(AuthchatException):
    """認証例外（ログイン/ログアウト/トークン取得）"""


class InteractionRequiredException(AuthenticationException):
    """サイレント取得にユーザー操作が必要な場合の例外"""


class TokenAcquisitionException(AuthenticationException):
    """トークンが取得できなかった場合の例外"""


class NoActiveAccountException(AuthenticationException):
    """アクティブなアカウントが存在しない場合の例外"""


class ChatApiException(AuthchatException):
    """チャットAPI呼び出しの例外"""


ERROR_CODE_LOG_LEVEL: Dict[ErrorCode, int] = {
    ErrorCode.AUTH_INTERACTION_REQUIRED: logging.INFO,
    ErrorCode.AUTH_NO_ACTIVE_ACCOUNT: logging.WARNING,
    ErrorCode.AUTH_LOGOUT_FAILED: logging.WARNING,
    ErrorCode.API_HTTP_ERROR: logging.WARNING,
}


# よく使用されるエラーのファクトリ関数
def create_config_error(
    message: str,
    details: Optional[Dict[str, Any]] = None,
    code: ErrorCode = ErrorCode.CONFIG_MISSING_VALUE,
) -> AuthchatError:
    """設定エラーを作成

    Args:
        message: エラーメッセージ
        details: 追加詳細
        code: エラーコード

    Returns:
        AuthchatError: 設定エラー
    """
    return AuthchatError(
        code=code.value,
        message=message,
        details=details,
        recoverable=False,
        log_level=logging.ERROR,
    )


def create_auth_error(
    code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    log_level: Optional[int] = None,
) -> AuthchatError:
    """認証エラーを作成

    認証エラーは利用者が再試行できるため常に復旧可能とする。

    Args:
        code: エラーコード
        message: エラーメッセージ
        details: 追加詳細

    Returns:
        AuthchatError: 認証エラー
    """
    return AuthchatError(
        code=code.value,
        message=message,
        details=details,
        recoverable=True,
        log_level=log_level or ERROR_CODE_LOG_LEVEL.get(code, logging.ERROR),
    )


def create_api_error(
    code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    recoverable: bool = True,
    log_level: Optional[int] = None,
) -> AuthchatError:
    """APIエラーを作成

    Args:
        code: エラーコード
        message: エラーメッセージ
        details: 追加詳細
        recoverable: 復旧可能かどうか

    Returns:
        AuthchatError: APIエラー
    """
    return AuthchatError(
        code=code.value,
        message=message,
        details=details,
        recoverable=recoverable,
        log_level=log_level or ERROR_CODE_LOG_LEVEL.get(code, logging.ERROR),
    )
