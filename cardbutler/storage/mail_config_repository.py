"""
邮箱配置仓库
只保存一条配置（id = 1），读取时由调用方决定是否暴露授权码
"""

import logging
import sqlite3
from typing import Optional

from cardbutler.models.errors import MailConfigMissingError
from cardbutler.models.mail import MailCredentials
from cardbutler.storage.database import Database

logger = logging.getLogger(__name__)


class MailConfigRepository:
    """邮箱配置仓库"""

    def __init__(self, database: Database, default_host: str = "imap.qq.com:993"):
        self.database = database
        self.default_host = default_host

    def save(self, email: str, secret: str, imap_host: Optional[str] = None) -> MailCredentials:
        """保存（覆盖）唯一的一条邮箱配置"""
        credentials = MailCredentials(
            email=email,
            secret=secret,
            imap_host=imap_host or self.default_host,
        )
        with self.database.connect() as conn:
            try:
                conn.execute(
                    '''
                    INSERT INTO email_config (id, email, password, imap_host)
                    VALUES (1, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        email = excluded.email,
                        password = excluded.password,
                        imap_host = excluded.imap_host
                    ''',
                    (credentials.email, credentials.secret, credentials.imap_host),
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
        logger.info("[✓] 邮箱配置已保存: %s (%s)", credentials.email, credentials.imap_host)
        return credentials

    def find(self) -> Optional[MailCredentials]:
        with self.database.connect() as conn:
            row = conn.execute(
                'SELECT id, email, password, imap_host FROM email_config WHERE id = 1'
            ).fetchone()
        if not row:
            return None
        return MailCredentials(
            id=row['id'],
            email=row['email'],
            secret=row['password'],
            imap_host=row['imap_host'] or self.default_host,
        )

    def load(self) -> MailCredentials:
        """
        读取邮箱配置

        Raises:
            MailConfigMissingError: 尚未配置
        """
        credentials = self.find()
        if credentials is None or not credentials.email or not credentials.secret:
            raise MailConfigMissingError()
        return credentials
