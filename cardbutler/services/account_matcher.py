"""
账单-卡片匹配器
按证据强度分层匹配：完整卡号 > 掩码尾号 > 持卡人姓名
"""

import re
from typing import List, Sequence

from cardbutler.models.account import AccountRecord
from cardbutler.models.statement import (
    ExtractedFields, MatchResult, MatchedBy, MatchConfidence
)

_WHITESPACE_RE = re.compile(r'\s+')


def normalize_name(name: str) -> str:
    """姓名归一化：转大写并去掉所有空白"""
    return _WHITESPACE_RE.sub('', name or '').upper()


class AccountMatcher:
    """
    账单与卡片匹配

    只读取卡片列表，不做任何写入。按优先级逐层尝试，某一层得出结果后不再继续：
    1. 完整卡号：后四位精确匹配 -> high
    2. 掩码尾号：唯一 -> medium，多张 -> ambiguous
    3. 持卡人姓名：唯一 -> low，多张 -> ambiguous
    歧义时取卡片列表中的第一张（列表顺序由存储层保证稳定）。
    """

    def match(self, fields: ExtractedFields, accounts: Sequence[AccountRecord]) -> MatchResult:
        active = [account for account in accounts if not account.is_deleted]

        # 优先级1：完整卡号后4位精确匹配
        if fields.full_card_number:
            last4 = fields.full_card_number[-4:]
            for account in active:
                if account.last_four_digits and account.last_four_digits == last4:
                    return MatchResult(account, MatchedBy.FULL_CARD, MatchConfidence.HIGH)

        # 优先级2：掩码卡号尾号匹配
        if fields.last_four:
            candidates = [
                account for account in active
                if account.last_four_digits and account.last_four_digits == fields.last_four
            ]
            result = self._pick(candidates, MatchedBy.LAST_FOUR, MatchConfidence.MEDIUM)
            if result.found:
                return result

        # 优先级3：姓名匹配（低置信度）
        if fields.holder_name:
            target = normalize_name(fields.holder_name)
            candidates = [
                account for account in active
                if account.holder_name and normalize_name(account.holder_name) == target
            ]
            result = self._pick(candidates, MatchedBy.NAME, MatchConfidence.LOW)
            if result.found:
                return result

        return MatchResult()

    @staticmethod
    def _pick(candidates: List[AccountRecord], matched_by: str, unique_confidence: str) -> MatchResult:
        if not candidates:
            return MatchResult()
        if len(candidates) == 1:
            return MatchResult(candidates[0], matched_by, unique_confidence)
        # 多张卡同尾号/同名，标为歧义，仍关联第一张
        return MatchResult(candidates[0], matched_by, MatchConfidence.AMBIGUOUS)
