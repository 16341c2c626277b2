"""
配置管理器 - 统一管理应用配置
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from cardbutler.parsers.bank_directory import BankDirectory

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/config.yaml"


class ConfigManager:
    """配置管理器"""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        self.config_path = Path(config_path)
        self._config: Optional[Dict] = None

    def load(self) -> Dict[str, Any]:
        """加载配置"""
        if self._config is not None:
            return self._config

        # 如果配置文件不存在，从示例创建
        if not self.config_path.exists():
            example_path = self.config_path.parent / "config.example.yaml"
            if example_path.exists():
                shutil.copy(example_path, self.config_path)
                logger.info("[i] 从示例创建配置文件: %s", self.config_path)

        if self.config_path.exists():
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._config = yaml.safe_load(f) or {}
        else:
            self._config = {}

        self._apply_env_overrides()

        return self._config

    def save(self, config: Dict[str, Any]) -> None:
        """保存配置"""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(config, f, default_flow_style=False, allow_unicode=True)
        self._config = config

    def get(self, key_path: str, default: Any = None) -> Any:
        """获取配置项 (支持点号路径，如 'server.port')"""
        current: Any = self.load()
        for key in key_path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def set(self, key_path: str, value: Any) -> None:
        """设置配置项并写回文件"""
        config = self.load()
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value
        self.save(config)

    def settings(self) -> 'AppSettings':
        return AppSettings.from_config(self.load())

    def _apply_env_overrides(self) -> None:
        """应用环境变量覆盖"""
        data_dir = os.environ.get('CARDBUTLER_DATA_DIR') or os.environ.get('DATA_DIR')
        if data_dir:
            self._set_path(('database', 'path'), str(Path(data_dir) / 'cards.db'))

        env_mappings = {
            'CARDBUTLER_DB_PATH': ('database', 'path'),
            'CARDBUTLER_IMAP_HOST': ('mail', 'default_imap_host'),
            'PORT': ('server', 'port'),
        }
        for env_var, path in env_mappings.items():
            value = os.environ.get(env_var)
            if value:
                self._set_path(path, value)

    def _set_path(self, path: Tuple[str, ...], value: Any) -> None:
        current = self._config
        for key in path[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[path[-1]] = value


@dataclass(frozen=True)
class AppSettings:
    """运行时设置（启动时从配置生成，之后不再变化）"""
    db_path: str = "./data/cards.db"
    host: str = "0.0.0.0"
    port: int = 8080
    fetch_limit: int = 100
    excerpt_limit: int = 2000
    default_imap_host: str = "imap.qq.com:993"
    cors_origins: Tuple[str, ...] = ("*",)
    ingest_interval_minutes: int = 60
    bank_directory: BankDirectory = field(default_factory=BankDirectory)

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> 'AppSettings':
        config = config or {}
        database = config.get('database') or {}
        server = config.get('server') or {}
        mail = config.get('mail') or {}
        scheduler = config.get('scheduler') or {}

        origins = server.get('cors_origins') or list(cls.cors_origins)
        if isinstance(origins, str):
            origins = [o.strip() for o in origins.split(',') if o.strip()]

        return cls(
            db_path=str(database.get('path') or cls.db_path),
            host=str(server.get('host') or cls.host),
            port=int(server.get('port') or cls.port),
            fetch_limit=int(mail.get('fetch_limit') or cls.fetch_limit),
            excerpt_limit=int(mail.get('excerpt_limit') or cls.excerpt_limit),
            default_imap_host=str(mail.get('default_imap_host') or cls.default_imap_host),
            cors_origins=tuple(origins),
            ingest_interval_minutes=int(scheduler.get('ingest_interval_minutes')
                                        or cls.ingest_interval_minutes),
            bank_directory=BankDirectory.from_config(config.get('banks')),
        )
