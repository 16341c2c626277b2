"""
银行识别表
发件人域名 -> 银行、标题关键词 -> 银行，按顺序匹配，先到先得
"""

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Tuple


# cmbchina 必须排在 cmbc 前面，否则招行邮件会被识别为民生银行
DEFAULT_DOMAIN_BANKS: Tuple[Tuple[str, str], ...] = (
    ("cmbchina", "招商银行"),
    ("icbc", "工商银行"),
    ("ccb", "建设银行"),
    ("abchina", "农业银行"),
    ("bankcomm", "交通银行"),
    ("spdb", "浦发银行"),
    ("cib", "兴业银行"),
    ("cmbc", "民生银行"),
    ("cgbchina", "广发银行"),
    ("pingan", "平安银行"),
    ("citic", "中信银行"),
    ("hxb", "华夏银行"),
    ("boc", "中国银行"),
    ("psbc", "邮储银行"),
)

DEFAULT_KEYWORD_BANKS: Tuple[Tuple[str, str], ...] = (
    ("招商", "招商银行"),
    ("工商", "工商银行"),
    ("建设", "建设银行"),
    ("农业", "农业银行"),
    ("交通", "交通银行"),
    ("浦发", "浦发银行"),
    ("兴业", "兴业银行"),
    ("民生", "民生银行"),
    ("广发", "广发银行"),
    ("平安", "平安银行"),
    ("中信", "中信银行"),
    ("华夏", "华夏银行"),
    ("中国银行", "中国银行"),
    ("邮储", "邮储银行"),
)


@dataclass(frozen=True)
class BankDirectory:
    """不可变的银行识别表，注入到字段提取器中"""
    domains: Tuple[Tuple[str, str], ...] = DEFAULT_DOMAIN_BANKS
    keywords: Tuple[Tuple[str, str], ...] = DEFAULT_KEYWORD_BANKS

    def by_sender(self, sender: str) -> str:
        """按发件人域名识别银行"""
        if not sender:
            return ""
        domain = sender.rsplit('@', 1)[-1].lower()
        for key, bank in self.domains:
            if key in domain:
                return bank
        return ""

    def by_subject(self, subject: str) -> str:
        """按标题关键词识别银行"""
        if not subject:
            return ""
        for key, bank in self.keywords:
            if key in subject:
                return bank
        return ""

    def detect(self, sender: str, subject: str) -> str:
        """先发件人域名，再标题关键词；都不命中返回空"""
        return self.by_sender(sender) or self.by_subject(subject)

    @classmethod
    def from_config(cls, config: Optional[Mapping[str, Any]]) -> 'BankDirectory':
        """
        从配置构建识别表

        Args:
            config: {'domains': {域名关键词: 银行}, 'keywords': {标题关键词: 银行}}，
                未提供的部分使用默认表
        """
        config = config or {}
        domains = _as_pairs(config.get('domains')) or DEFAULT_DOMAIN_BANKS
        keywords = _as_pairs(config.get('keywords')) or DEFAULT_KEYWORD_BANKS
        return cls(domains=domains, keywords=keywords)


def _as_pairs(raw: Any) -> Tuple[Tuple[str, str], ...]:
    if not raw:
        return ()
    items: Iterable[Any] = raw.items() if isinstance(raw, dict) else raw
    return tuple((str(key), str(bank)) for key, bank in items)
