"""
数据库访问层
SQLite 连接管理与表结构初始化，各仓库共用
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from cardbutler.storage.schema import (
    CARDS_TABLE_SQL, STATEMENTS_TABLE_SQL, EMAIL_CONFIG_TABLE_SQL,
    INDEXES_SQL, MIGRATION_COLUMNS,
)

logger = logging.getLogger(__name__)


class Database:
    """
    SQLite 数据库

    每次操作打开独立连接，并发请求之间不共享连接；
    写入冲突由 SQLite 锁与 busy_timeout 排队处理。
    """

    def __init__(self, db_path: Union[str, Path] = "./data/cards.db", timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self._init_database()

    def _init_database(self) -> None:
        """初始化数据库表结构"""
        with self.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(CARDS_TABLE_SQL)
            cursor.execute(STATEMENTS_TABLE_SQL)
            cursor.execute(EMAIL_CONFIG_TABLE_SQL)
            for sql in INDEXES_SQL:
                cursor.execute(sql)
            conn.commit()

        self._ensure_columns()
        logger.info("[✓] 数据库初始化完成: %s", self.db_path)

    def _ensure_columns(self) -> None:
        """确保旧库存在必要字段（幂等）"""
        with self.connect() as conn:
            cursor = conn.cursor()
            for table, column, column_type in MIGRATION_COLUMNS:
                cursor.execute(f"PRAGMA table_info({table})")
                cols = [r[1] for r in cursor.fetchall()]
                if column not in cols:
                    logger.info("[→] 迁移: %s 表新增列 %s", table, column)
                    cursor.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
            conn.commit()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """获取数据库连接（上下文管理器）"""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()
