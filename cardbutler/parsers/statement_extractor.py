"""
信用卡账单字段提取器
以一组有序的 (提示词, 取值) 规则从邮件正文/主题中提取账单字段

支持的账单要素：
1. 银行：发件人域名优先，其次标题关键词
2. 卡号：完整卡号 6225 8888 1234 5678，或掩码尾号 ****5678 / 尾号5678
3. 金额：本期应还款额：¥1,234.56、最低还款额：123.45
4. 日期：账单日：2024年01月05日、到期还款日 2024/1/25
5. 持卡人：亲爱的张三，您好
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, List, Optional, Sequence, Tuple

from cardbutler.models.statement import ExtractedFields
from cardbutler.parsers.bank_directory import BankDirectory

# 所有规则都使用 ASCII 语义：汉字与数字相邻视为边界，\s 不含全角空白
_FLAGS = re.ASCII

# 提示词与数值之间允许出现的分隔符、货币标记
_AMOUNT_GAP = r'(?:[\s:：¥￥()（）]|人民币|RMB|CNY|为|是)*'
_AMOUNT_VALUE = r'([0-9][0-9,]*(?:\.\d{1,2})?)'
_DATE_GAP = r'[\s:：为是]*'
_DATE_VALUE = r'(\d{4})\s*[-/年]\s*(\d{1,2})\s*[-/月]\s*(\d{1,2})'

NAME_BLOCKLIST: Tuple[str, ...] = ("您", "您已", "请", "温馨")


@dataclass(frozen=True)
class FieldRule:
    """
    单条提取规则

    pattern 第一个分组（或日期的三个分组）是取值；convert 返回 None 表示该候选无效，
    继续尝试下一个匹配。sources 决定依次在正文、主题中查找。
    skip_if 中的字段已有值时跳过本规则。
    """
    field: str
    pattern: re.Pattern
    convert: Callable[[re.Match], Optional[Any]]
    sources: Tuple[str, ...] = ('text',)
    skip_if: Tuple[str, ...] = ()

    def apply(self, text: str, subject: str) -> Optional[Any]:
        contents = {'text': text or '', 'subject': subject or ''}
        for source in self.sources:
            for match in self.pattern.finditer(contents[source]):
                value = self.convert(match)
                if value is not None:
                    return value
        return None


# ==================== 取值转换 ====================

def convert_card_number(match: re.Match) -> Optional[str]:
    """去掉分隔符，只接受 15-19 位"""
    digits = re.sub(r'[\s\-]', '', match.group(1))
    if 15 <= len(digits) <= 19:
        return digits
    return None


def convert_last_four(match: re.Match) -> Optional[str]:
    return match.group(1)


def convert_amount(match: re.Match) -> Optional[Decimal]:
    """去掉千分位逗号后解析金额"""
    raw = match.group(1).replace(',', '')
    try:
        return Decimal(raw)
    except InvalidOperation:
        return None


def convert_date(match: re.Match) -> Optional[str]:
    """统一为补零的 YYYY-MM-DD"""
    year, month, day = (int(g) for g in match.groups()[-3:])
    if not (1 <= month <= 12 and 1 <= day <= 31):
        return None
    return f"{year:04d}-{month:02d}-{day:02d}"


def convert_holder_name(match: re.Match) -> Optional[str]:
    """过滤明显不是姓名的词"""
    name = match.group(1).strip()
    if any(fragment in name for fragment in NAME_BLOCKLIST):
        return None
    return name


# ==================== 默认规则 ====================

def default_rules() -> List[FieldRule]:
    """默认规则表，顺序即执行顺序"""
    return [
        # 完整卡号：15-19位数字（可能有空格/连字符分隔）
        FieldRule(
            field='full_card_number',
            pattern=re.compile(r'\b(\d{4}[\s\-]?\d{4}[\s\-]?\d{4}[\s\-]?\d{2,7})\b', _FLAGS),
            convert=convert_card_number,
        ),
        # 掩码卡号尾号：****1234 / 尾号1234 / xx1234，正文找不到再找标题
        FieldRule(
            field='last_four',
            pattern=re.compile(r'(?:尾号|末四位|后四位|\*{2,}|[xX]{2,})[\s*xX]*(\d{4})\b', _FLAGS),
            convert=convert_last_four,
            sources=('text', 'subject'),
            skip_if=('full_card_number',),
        ),
        # 账单金额（排除“最低应还款额”中的子串）
        FieldRule(
            field='amount',
            pattern=re.compile(
                r'(?<!最低)(?:应还款额|本期应还款|本期应还|应还金额|账单金额|本期账单|'
                r'总欠款|账单总额|还款总额)' + _AMOUNT_GAP + _AMOUNT_VALUE,
                _FLAGS,
            ),
            convert=convert_amount,
        ),
        # 最低还款额
        FieldRule(
            field='min_payment',
            pattern=re.compile(
                r'(?:最低还款额|最低应还款额|最低应还|最低还款)' + _AMOUNT_GAP + _AMOUNT_VALUE,
                _FLAGS,
            ),
            convert=convert_amount,
        ),
        # 账单日期
        FieldRule(
            field='statement_date',
            pattern=re.compile(r'(?:账单日期?|出账日期?)' + _DATE_GAP + _DATE_VALUE, _FLAGS),
            convert=convert_date,
        ),
        # 还款截止日期
        FieldRule(
            field='due_date',
            pattern=re.compile(
                r'(?:到期还款日|最后还款日|还款截止日?|还款日期?)' + _DATE_GAP + _DATE_VALUE,
                _FLAGS,
            ),
            convert=convert_date,
        ),
        # 持卡人姓名
        FieldRule(
            field='holder_name',
            pattern=re.compile(
                r'(?:尊敬的客户|亲爱的|持卡人|您好)[，,：:\s]*'
                r'([^\s　，,。！!：:；;、？?]{2,8})(?=[，,。！!：:；;\s　]|$)',
                _FLAGS,
            ),
            convert=convert_holder_name,
        ),
    ]


class StatementExtractor:
    """
    账单字段提取器

    银行识别表与规则表都由外部注入，便于用不同的表单独测试。
    提取不会因为“没找到”而报错，只返回空字段。
    """

    def __init__(self, bank_directory: Optional[BankDirectory] = None,
                 rules: Optional[Sequence[FieldRule]] = None):
        self.bank_directory = bank_directory or BankDirectory()
        self.rules: Tuple[FieldRule, ...] = tuple(rules if rules is not None else default_rules())

    def extract(self, text: str, subject: str = "", sender: str = "") -> ExtractedFields:
        """
        提取账单字段

        Args:
            text: 解码后的正文
            subject: 邮件主题
            sender: 发件人地址

        Returns:
            ExtractedFields，未找到的字段保持默认值
        """
        fields = ExtractedFields()
        fields.bank_name = self.bank_directory.detect(sender, subject)

        for rule in self.rules:
            if any(getattr(fields, name) for name in rule.skip_if):
                continue
            value = rule.apply(text, subject)
            if value is not None:
                setattr(fields, rule.field, value)

        # 完整卡号的后四位就是尾号
        if fields.full_card_number:
            fields.last_four = fields.full_card_number[-4:]

        return fields


# 便捷函数
def extract_statement_fields(text: str, subject: str = "", sender: str = "") -> ExtractedFields:
    """便捷函数：使用默认表提取账单字段"""
    return StatementExtractor().extract(text, subject, sender)
