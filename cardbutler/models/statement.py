"""
账单数据模型 - 提取字段、匹配结果与入库的账单记录
"""

from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Any, Dict, Optional

from cardbutler.models.account import AccountRecord


@dataclass
class ExtractedFields:
    """
    从邮件中提取的账单字段

    所有字段都可能为空；未找到不是错误。
    """
    bank_name: str = ""
    full_card_number: str = ""       # 完整卡号（若有）
    last_four: str = ""              # 尾号4位（完整卡号推导或掩码卡号）
    holder_name: str = ""
    amount: Optional[Decimal] = None
    min_payment: Optional[Decimal] = None
    currency: str = "CNY"
    statement_date: str = ""         # YYYY-MM-DD
    due_date: str = ""               # YYYY-MM-DD

    def is_empty(self) -> bool:
        return not (self.full_card_number or self.last_four or self.holder_name
                    or self.amount is not None or self.min_payment is not None
                    or self.statement_date or self.due_date)


@dataclass(frozen=True)
class MatchResult:
    """账单与卡片的匹配结果"""
    account: Optional[AccountRecord] = None
    matched_by: str = ""
    confidence: str = ""

    @property
    def found(self) -> bool:
        return self.account is not None


@dataclass
class Statement:
    """入库的账单记录，每个 mail_message_id 只保存一条"""
    account_sync_id: str
    mail_message_id: str
    bank_name: str = ""
    amount: Optional[Decimal] = None
    currency: str = "CNY"
    min_payment: Optional[Decimal] = None
    statement_date: str = ""
    due_date: str = ""
    source_format: str = ""
    matched_by: str = ""
    match_confidence: str = ""
    raw_excerpt: str = ""
    fetched_at: int = 0
    id: Optional[int] = None

    def to_dict(self, include_excerpt: bool = False) -> Dict[str, Any]:
        """转换为接口返回格式"""
        data = asdict(self)
        result = {
            'id': data['id'],
            'cardSyncId': data['account_sync_id'],
            'mailMessageId': data['mail_message_id'],
            'bank': data['bank_name'],
            'amount': float(self.amount) if self.amount is not None else None,
            'currency': data['currency'],
            'minPayment': float(self.min_payment) if self.min_payment is not None else None,
            'billDate': data['statement_date'],
            'dueDate': data['due_date'],
            'statementType': data['source_format'],
            'matchedBy': data['matched_by'],
            'matchConfidence': data['match_confidence'],
            'fetchedAt': data['fetched_at'],
        }
        if include_excerpt:
            result['rawContent'] = data['raw_excerpt']
        return result


# ==================== 常量定义 ====================

class MatchedBy:
    """匹配依据"""
    FULL_CARD = "full_card"
    LAST_FOUR = "last_four"
    NAME = "name"


class MatchConfidence:
    """匹配置信度"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    AMBIGUOUS = "ambiguous"
