"""
邮箱数据源基类
定义账单拉取所需的邮箱接口与错误分类
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from cardbutler.models.mail import RawMessage


class MailSource(ABC):
    """
    邮箱数据源抽象基类

    一次会话只服务一个已配置的邮箱；会话结束（包括异常退出）必须登出。
    """

    @property
    @abstractmethod
    def source_name(self) -> str:
        """
        人类可读的数据源名称

        Returns:
            如 'IMAP(imap.qq.com:993)'
        """
        pass

    @abstractmethod
    def check_login(self) -> None:
        """
        仅建立连接并登录，用于测试邮箱配置

        Raises:
            MailConnectionError: 连接失败
            MailAuthenticationError: 登录失败
        """
        pass

    @abstractmethod
    def fetch_recent(self, limit: int = 100) -> List[RawMessage]:
        """
        拉取收件箱中最近的邮件（核心方法）

        Args:
            limit: 最多拉取的邮件数

        Returns:
            按邮箱序号升序排列的 RawMessage 列表，空邮箱返回空列表
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """登出并释放连接，可重复调用"""
        pass

    def __enter__(self) -> 'MailSource':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class MailDataSourceError(Exception):
    """邮箱数据源基础异常"""

    def __init__(self, message: str, retryable: bool = False, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.retryable = retryable
        self.details = details or {}


class MailConnectionError(MailDataSourceError):
    """连接错误 - 可重试"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, retryable=True, details=details)


class MailAuthenticationError(MailDataSourceError):
    """认证错误 - 需人工介入"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, retryable=False, details=details)


class MessageParseError(MailDataSourceError):
    """解析错误 - 记录日志，跳过"""

    def __init__(self, message: str, raw_data: Optional[bytes] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, retryable=False, details=details)
        self.raw_data = raw_data
