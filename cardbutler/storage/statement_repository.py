"""
账单仓库
每个邮件 UID 只保存一条账单，重复拉取时静默跳过
"""

import logging
import sqlite3
from decimal import Decimal
from typing import Any, List, Optional

from cardbutler.models.statement import Statement
from cardbutler.storage.database import Database

logger = logging.getLogger(__name__)

DEFAULT_EXCERPT_LIMIT = 2000
DEFAULT_LIST_LIMIT = 200


def truncate_chars(text: str, limit: int) -> str:
    """按字符（而非字节）截断，不会截断多字节字符"""
    if limit <= 0:
        return ""
    return text if len(text) <= limit else text[:limit]


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == '':
        return None
    return Decimal(str(value))


class StatementRepository:
    """账单数据仓库"""

    def __init__(self, database: Database, excerpt_limit: int = DEFAULT_EXCERPT_LIMIT):
        self.database = database
        self.excerpt_limit = excerpt_limit

    def save(self, statement: Statement) -> bool:
        """
        保存账单

        mail_message_id 已存在时不插入（不是错误），这是多次拉取
        覆盖同一批邮件时唯一的去重手段。

        Returns:
            是否插入了新行

        Raises:
            sqlite3.Error: 存储失败，由调用方记录并跳过
        """
        excerpt = truncate_chars(statement.raw_excerpt or '', self.excerpt_limit)

        with self.database.connect() as conn:
            try:
                cursor = conn.execute(
                    '''
                    INSERT OR IGNORE INTO bill_statements (
                        card_sync_id, mail_message_id, bank, amount, currency,
                        bill_date, due_date, min_payment, statement_type,
                        raw_content, matched_by, match_confidence, fetched_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ''',
                    (
                        statement.account_sync_id,
                        statement.mail_message_id,
                        statement.bank_name,
                        str(statement.amount) if statement.amount is not None else None,
                        statement.currency or 'CNY',
                        statement.statement_date,
                        statement.due_date,
                        str(statement.min_payment) if statement.min_payment is not None else None,
                        statement.source_format,
                        excerpt,
                        statement.matched_by,
                        statement.match_confidence,
                        statement.fetched_at,
                    ),
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            return cursor.rowcount > 0

    def list_recent(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Statement]:
        """最近拉取的账单，按拉取时间降序"""
        with self.database.connect() as conn:
            rows = conn.execute(
                '''
                SELECT * FROM bill_statements
                ORDER BY fetched_at DESC, id DESC
                LIMIT ?
                ''',
                (limit,),
            ).fetchall()
            return [self._row_to_statement(row) for row in rows]

    def get_by_message_id(self, mail_message_id: str) -> Optional[Statement]:
        with self.database.connect() as conn:
            row = conn.execute(
                'SELECT * FROM bill_statements WHERE mail_message_id = ?',
                (mail_message_id,),
            ).fetchone()
            return self._row_to_statement(row) if row else None

    def count(self) -> int:
        with self.database.connect() as conn:
            return conn.execute('SELECT COUNT(*) FROM bill_statements').fetchone()[0]

    @staticmethod
    def _row_to_statement(row: sqlite3.Row) -> Statement:
        return Statement(
            id=row['id'],
            account_sync_id=row['card_sync_id'],
            mail_message_id=str(row['mail_message_id']),
            bank_name=row['bank'] or '',
            amount=_to_decimal(row['amount']),
            currency=row['currency'] or 'CNY',
            min_payment=_to_decimal(row['min_payment']),
            statement_date=row['bill_date'] or '',
            due_date=row['due_date'] or '',
            source_format=row['statement_type'] or '',
            matched_by=row['matched_by'] or '',
            match_confidence=row['match_confidence'] or '',
            raw_excerpt=row['raw_content'] or '',
            fetched_at=row['fetched_at'],
        )
