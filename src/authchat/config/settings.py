"""Pydantic V2 ベースの統合設定モデル"""

import re
from typing import Annotated, Any, List, Literal, Tuple

from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_AUTHORITY_HOST = "https://login.microsoftonline.com"


class ChatSettings(BaseSettings):
    """authchat の統合設定"""

    model_config = SettingsConfigDict(
        env_prefix="AUTHCHAT_",
        env_file=".env",
        extra="forbid",
    )

    # チャットAPI 設定
    api_url: str = Field(..., min_length=1, description="チャットAPIのベースURL")
    request_timeout: float = Field(default=30.0, gt=0)

    # 認証設定
    require_auth: bool = True
    client_id: str = ""
    tenant_id: str = ""
    redirect_uri: str = ""
    scopes: Annotated[List[str], NoDecode] = Field(default_factory=list)
    authority_host: str = DEFAULT_AUTHORITY_HOST
    auth_timeout: float = Field(default=180.0, gt=0)

    # ログ設定
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ) -> Tuple[Any, ...]:
        """設定ソースの優先順位をカスタマイズ（env > dotenv > init）"""
        return (
            env_settings,
            dotenv_settings,
            init_settings,
            file_secret_settings,
        )

    @field_validator("scopes", mode="before")
    @classmethod
    def split_scopes(cls, value: Any) -> Any:
        """カンマまたは空白区切りの文字列をスコープのリストに変換"""
        if isinstance(value, str):
            return [scope for scope in re.split(r"[,\s]+", value) if scope]
        return value

    @field_validator("api_url", "authority_host")
    @classmethod
    def strip_trailing_slash(cls, value: str, info: ValidationInfo) -> str:
        """URL末尾のスラッシュを除去"""
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"{info.field_name} は http:// または https:// で始まる必要があります")
        return value.rstrip("/")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value

    @model_validator(mode="after")
    def validate_auth_settings(self) -> "ChatSettings":
        """require_auth=True では認証設定を必須化"""
        if not self.require_auth:
            return self

        missing = [
            name
            for name in ("client_id", "tenant_id", "redirect_uri")
            if not getattr(self, name).strip()
        ]
        if not self.scopes:
            missing.append("scopes")
        if missing:
            raise ValueError(
                "require_auth=True では次の設定が必須です: " + ", ".join(missing)
            )
        return self

    @property
    def authority(self) -> str:
        """テナントを含む認可サーバーのURL"""
        return f"{self.authority_host}/{self.tenant_id}"

    def dump_masked(self) -> dict:
        """機微情報をマスクした設定を返却する"""
        data = self.model_dump()
        client_id = data.get("client_id")
        if client_id:
            data["client_id"] = (
                f"{client_id[:8]}...{client_id[-4:]}" if len(client_id) > 12 else "***"
            )
        return data
