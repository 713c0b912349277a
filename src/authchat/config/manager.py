"""
設定管理

設定ファイルと環境変数からChatSettingsを組み立てる
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from authchat.config.settings import ChatSettings
from authchat.errors import ConfigurationException, ErrorCode, create_config_error

logger = logging.getLogger(__name__)


class ConfigManager:
    """設定の読み込みと管理

    設定ファイル（YAML）と環境変数から設定を読み込む。
    環境変数は設定ファイルの値を上書きする。
    """

    def __init__(self):
        """ConfigManagerを初期化"""
        self._settings: Optional[ChatSettings] = None

    def load(
        self,
        config_path: Optional[Path] = None,
        force_reload: bool = False
    ) -> ChatSettings:
        """設定を読み込む

        Args:
            config_path: 設定ファイルのパス（省略時はデフォルトパスを検索）
            force_reload: キャッシュを無視して再読み込みするかどうか

        Returns:
            ChatSettings: 読み込んだ設定

        Raises:
            ConfigurationException: 必須設定の欠落や不正な値がある場合
        """
        if self._settings is not None and not force_reload:
            return self._settings

        file_config = self._load_from_file(config_path)

        try:
            self._settings = ChatSettings(**file_config)
        except ValidationError as exc:
            errors = self._format_errors(exc)
            raise ConfigurationException(
                create_config_error(
                    "設定が不正です: " + "; ".join(errors),
                    details={"errors": errors},
                    code=self._classify(exc),
                )
            ) from exc

        logger.debug("Configuration loaded (require_auth=%s)", self._settings.require_auth)
        return self._settings

    def _load_from_file(self, config_path: Optional[Path] = None) -> Dict[str, Any]:
        """設定ファイルから読み込み

        Args:
            config_path: 設定ファイルのパス

        Returns:
            Dict[str, Any]: 読み込んだ設定値
        """
        if config_path is None:
            for path in self._get_default_config_paths():
                if path.exists():
                    config_path = path
                    break

        if config_path is None or not config_path.exists():
            return {}

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationException(
                create_config_error(
                    f"設定ファイルを解析できません: {config_path}",
                    details={"path": str(config_path), "reason": str(exc)},
                    code=ErrorCode.CONFIG_INVALID_VALUE,
                )
            ) from exc

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationException(
                create_config_error(
                    f"設定ファイルの形式が不正です: {config_path}",
                    details={"path": str(config_path)},
                    code=ErrorCode.CONFIG_INVALID_VALUE,
                )
            )
        return data

    def _get_default_config_paths(self) -> List[Path]:
        """デフォルトの設定ファイルパスを取得

        Returns:
            List[Path]: 検索する設定ファイルパスのリスト
        """
        home = Path.home()
        return [
            Path.cwd() / "authchat.yaml",
            Path.cwd() / "authchat.yml",
            home / ".config" / "authchat" / "config.yaml",
            home / ".config" / "authchat" / "config.yml",
        ]

    @staticmethod
    def _format_errors(exc: ValidationError) -> List[str]:
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ())) or "settings"
            messages.append(f"{location}: {error.get('msg', 'invalid value')}")
        return messages

    @staticmethod
    def _classify(exc: ValidationError) -> ErrorCode:
        if any(error.get("type") == "missing" for error in exc.errors()):
            return ErrorCode.CONFIG_MISSING_VALUE
        if any("必須" in str(error.get("msg", "")) for error in exc.errors()):
            return ErrorCode.CONFIG_MISSING_VALUE
        return ErrorCode.CONFIG_INVALID_VALUE
