"""
账单拉取服务 - 邮箱 -> 解码 -> 字段提取 -> 卡片匹配 -> 入库
"""

import logging
import sqlite3
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

from cardbutler.adapters.base import MailSource
from cardbutler.adapters.imap_session import IMAPMailSession
from cardbutler.models.account import AccountRecord, now_ts
from cardbutler.models.mail import DecodedMessage, MailCredentials, RawMessage, SourceFormat
from cardbutler.models.statement import Statement
from cardbutler.parsers.message_decoder import MessageDecoder
from cardbutler.parsers.statement_extractor import StatementExtractor
from cardbutler.services.account_matcher import AccountMatcher
from cardbutler.storage.card_repository import CardRepository
from cardbutler.storage.mail_config_repository import MailConfigRepository
from cardbutler.storage.statement_repository import StatementRepository

logger = logging.getLogger(__name__)

DEFAULT_FETCH_LIMIT = 100

SessionFactory = Callable[[MailCredentials], MailSource]


def default_session_factory(credentials: MailCredentials) -> MailSource:
    return IMAPMailSession(credentials.email, credentials.secret, host=credentials.imap_host)


@dataclass
class IngestionSummary:
    """一次拉取的统计"""
    total: int = 0
    saved: int = 0
    skipped: int = 0          # 含 duplicate 与 failed
    duplicate: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class StatementIngestor:
    """账单拉取器"""

    def __init__(
        self,
        cards: CardRepository,
        statements: StatementRepository,
        mail_config: MailConfigRepository,
        extractor: Optional[StatementExtractor] = None,
        matcher: Optional[AccountMatcher] = None,
        decoder: Optional[MessageDecoder] = None,
        session_factory: SessionFactory = default_session_factory,
        clock: Callable[[], int] = now_ts,
        fetch_limit: int = DEFAULT_FETCH_LIMIT,
    ):
        self.cards = cards
        self.statements = statements
        self.mail_config = mail_config
        self.extractor = extractor or StatementExtractor()
        self.matcher = matcher or AccountMatcher()
        self.decoder = decoder or MessageDecoder()
        self.session_factory = session_factory
        self.clock = clock
        self.fetch_limit = fetch_limit

    def run(self) -> IngestionSummary:
        """
        执行一次拉取

        Returns:
            IngestionSummary

        Raises:
            MailConfigMissingError: 未配置邮箱
            MailDataSourceError: 连接或登录失败，此时不会保存任何账单
        """
        credentials = self.mail_config.load()
        logger.info("[→] 开始拉取账单邮件: %s", credentials.email)

        # 会话在处理之前关闭，处理阶段不占用连接
        with self.session_factory(credentials) as session:
            messages = session.fetch_recent(self.fetch_limit)

        accounts = self.cards.list_active()
        summary = IngestionSummary(total=len(messages))

        for message in messages:
            self._process(message, accounts, summary)

        logger.info(
            "[✓] 拉取完成: 共 %d 封, 保存 %d, 跳过 %d (重复 %d, 失败 %d)",
            summary.total, summary.saved, summary.skipped,
            summary.duplicate, summary.failed,
        )
        return summary

    def _process(self, message: RawMessage, accounts: List[AccountRecord],
                 summary: IngestionSummary) -> None:
        try:
            statement = self.build_statement(self.decoder.decode(message), accounts)
        except Exception:
            # 单封邮件出错不影响本批其余邮件
            summary.skipped += 1
            logger.exception("[✗] 处理邮件失败 uid=%s", message.uid)
            return

        if statement is None:
            summary.skipped += 1
            return

        try:
            inserted = self.statements.save(statement)
        except sqlite3.Error as e:
            summary.skipped += 1
            summary.failed += 1
            logger.error("[✗] 保存账单失败 uid=%s: %s", message.uid, e)
            return

        if inserted:
            summary.saved += 1
        else:
            summary.skipped += 1
            summary.duplicate += 1
            logger.debug("邮件 uid=%s 已入库，跳过", message.uid)

    def build_statement(self, decoded: DecodedMessage,
                        accounts: List[AccountRecord]) -> Optional[Statement]:
        """解码后的邮件 -> 账单；无法识别或匹配不到卡片时返回 None"""
        if decoded.format == SourceFormat.PDF and not decoded.text.strip():
            # PDF 附件不解析
            logger.debug("邮件 uid=%s 仅含 PDF，跳过", decoded.uid)
            return None

        fields = self.extractor.extract(decoded.text, decoded.subject, decoded.sender)
        match = self.matcher.match(fields, accounts)
        if not match.found:
            logger.debug("邮件 uid=%s 未匹配到卡片: %s", decoded.uid, decoded.subject)
            return None

        return Statement(
            account_sync_id=match.account.sync_id,
            mail_message_id=decoded.uid,
            bank_name=fields.bank_name or match.account.bank_name,
            amount=fields.amount,
            currency=fields.currency,
            min_payment=fields.min_payment,
            statement_date=fields.statement_date,
            due_date=fields.due_date,
            source_format=decoded.format,
            matched_by=match.matched_by,
            match_confidence=match.confidence,
            raw_excerpt=decoded.text,
            fetched_at=self.clock(),
        )

    def test_connection(self, email: str, secret: str, imap_host: Optional[str] = None) -> Dict[str, Any]:
        """用临时凭据连接并登录，不保存配置"""
        credentials = MailCredentials(
            email=email,
            secret=secret,
            imap_host=imap_host or self.mail_config.default_host,
        )
        with self.session_factory(credentials) as session:
            session.check_login()
        logger.info("[✓] 邮箱连接测试成功: %s", email)
        return {'success': True, 'message': '连接成功'}
