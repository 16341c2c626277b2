"""
领域错误定义
输入校验错误与配置错误，与数据源（邮箱）错误分开
"""

from typing import Any, Dict, Optional


class RecordValidationError(ValueError):
    """
    输入校验错误 - 直接返回调用方，不产生任何副作用

    用于同步请求中的畸形卡片数据，以及创建/更新卡片时缺失必填字段。
    """

    def __init__(self, message: str, field: Optional[str] = None, index: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.index = index
        self.details = details or {}

    def __str__(self) -> str:
        if self.index is not None:
            return f"第 {self.index} 条记录: {self.message}"
        return self.message


class MailConfigMissingError(RuntimeError):
    """配置错误 - 未配置邮箱凭据，需要用户在设置中补充"""

    def __init__(self, message: str = "未配置邮箱，请先在设置中配置邮箱授权码"):
        super().__init__(message)
        self.message = message
