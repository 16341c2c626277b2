"""
卡片仓库 - 账户记录存储
以 sync_id 为身份，updated_at 决定合并先后，删除只做软删除
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional, Tuple

from cardbutler.models.account import AccountRecord
from cardbutler.storage.database import Database

logger = logging.getLogger(__name__)

# 表列名 <-> 记录属性名
_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ('sync_id', 'sync_id'),
    ('name', 'display_name'),
    ('bank', 'bank_name'),
    ('card_number', 'card_number'),
    ('cvv', 'cvv'),
    ('expiry_date', 'expiry_date'),
    ('cardholder_name', 'holder_name'),
    ('credit_limit', 'credit_limit'),
    ('billing_day', 'billing_day'),
    ('payment_due_day', 'payment_due_day'),
    ('color', 'color_tag'),
    ('card_front_image', 'front_image'),
    ('card_back_image', 'back_image'),
    ('notes', 'notes'),
    ('iv', 'iv'),
    ('owner', 'owner_label'),
    ('last_four', 'last_four_digits'),
    ('is_deleted', 'is_deleted'),
    ('created_at', 'created_at'),
    ('updated_at', 'updated_at'),
)

_IMMUTABLE_COLUMNS = ('sync_id', 'created_at')
_UPDATE_COLUMNS = tuple(col for col, _ in _COLUMNS if col not in _IMMUTABLE_COLUMNS)

_INSERT_COLUMNS = ', '.join(col for col, _ in _COLUMNS)
_INSERT_PLACEHOLDERS = ', '.join('?' for _ in _COLUMNS)

# 整条“比较并覆盖”在一条语句里完成，避免并发同步丢失更新
_UPSERT_SQL = f'''
    INSERT INTO cards ({_INSERT_COLUMNS})
    VALUES ({_INSERT_PLACEHOLDERS})
    ON CONFLICT(sync_id) DO UPDATE SET
        {', '.join(f'{col} = excluded.{col}' for col in _UPDATE_COLUMNS)}
    WHERE excluded.updated_at > cards.updated_at
'''

_SELECT_SQL = f'SELECT id, {_INSERT_COLUMNS} FROM cards'


def _record_to_params(record: AccountRecord) -> List[Any]:
    params = []
    for column, attr in _COLUMNS:
        value = getattr(record, attr)
        if column == 'is_deleted':
            value = 1 if value else 0
        params.append(value)
    return params


def _row_to_record(row: sqlite3.Row) -> AccountRecord:
    values: Dict[str, Any] = {'row_id': row['id']}
    for column, attr in _COLUMNS:
        value = row[column]
        if column == 'is_deleted':
            value = bool(value)
        elif value is None:
            value = 0 if attr in ('credit_limit', 'billing_day', 'payment_due_day',
                                  'created_at', 'updated_at') else ''
        values[attr] = value
    return AccountRecord(**values)


class CardRepository:
    """卡片数据仓库"""

    def __init__(self, database: Database):
        self.database = database

    def upsert_if_newer(self, record: AccountRecord) -> bool:
        """
        合并一条记录（后写者胜）

        不存在则插入；存在时仅当 record.updated_at 严格大于已存储的值才整体覆盖，
        相等的时间戳不覆盖，重试的请求不会产生多余写入。

        Returns:
            是否产生了写入
        """
        if not record.sync_id:
            raise ValueError("sync_id 不能为空")

        with self.database.connect() as conn:
            try:
                cursor = conn.execute(_UPSERT_SQL, _record_to_params(record))
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            return cursor.rowcount > 0

    def create(self, record: AccountRecord) -> AccountRecord:
        """插入一条新记录，返回带本地主键的记录"""
        with self.database.connect() as conn:
            try:
                cursor = conn.execute(
                    f'INSERT INTO cards ({_INSERT_COLUMNS}) VALUES ({_INSERT_PLACEHOLDERS})',
                    _record_to_params(record),
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            return record.copy(row_id=cursor.lastrowid)

    def update(self, identifier: str, record: AccountRecord, now: int) -> Optional[AccountRecord]:
        """
        服务端编辑：覆盖可变字段并推进 updated_at

        updated_at 取 max(now, 原值 + 1)，保证同一 sync_id 的时间戳只增不减，
        即使客户端时钟比服务器快，这次编辑也能被同步出去。

        Returns:
            更新后的记录；找不到时返回 None
        """
        assignments = ', '.join(
            f'{col} = ?' for col in _UPDATE_COLUMNS if col != 'updated_at'
        )
        params = [
            value for (column, _), value in zip(_COLUMNS, _record_to_params(record))
            if column in _UPDATE_COLUMNS and column != 'updated_at'
        ]
        row_id, sync_id = self._parse_identifier(identifier)

        with self.database.connect() as conn:
            try:
                cursor = conn.execute(
                    f'''
                    UPDATE cards
                    SET {assignments},
                        updated_at = CASE WHEN ? > updated_at THEN ? ELSE updated_at + 1 END
                    WHERE sync_id = ? OR id = ?
                    ''',
                    params + [now, now, sync_id, row_id],
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            if cursor.rowcount == 0:
                return None
        return self.find(identifier)

    def soft_delete(self, identifier: str, now: int) -> bool:
        """软删除（保留记录以便同步传播）"""
        row_id, sync_id = self._parse_identifier(identifier)
        with self.database.connect() as conn:
            try:
                cursor = conn.execute(
                    '''
                    UPDATE cards
                    SET is_deleted = 1,
                        updated_at = CASE WHEN ? > updated_at THEN ? ELSE updated_at + 1 END
                    WHERE sync_id = ? OR id = ?
                    ''',
                    (now, now, sync_id, row_id),
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            return cursor.rowcount > 0

    def find(self, identifier: str) -> Optional[AccountRecord]:
        """按 sync_id 或本地主键查找"""
        row_id, sync_id = self._parse_identifier(identifier)
        with self.database.connect() as conn:
            row = conn.execute(
                f'{_SELECT_SQL} WHERE sync_id = ? OR id = ?', (sync_id, row_id)
            ).fetchone()
            return _row_to_record(row) if row else None

    def get_since(self, watermark: int) -> List[AccountRecord]:
        """返回 updated_at > watermark 的全部记录（含已删除），按 updated_at 降序"""
        with self.database.connect() as conn:
            rows = conn.execute(
                f'{_SELECT_SQL} WHERE updated_at > ? ORDER BY updated_at DESC, id DESC',
                (watermark,),
            ).fetchall()
            return [_row_to_record(row) for row in rows]

    def list_active(self) -> List[AccountRecord]:
        """全部未删除卡片，按创建顺序排列（账单匹配用，顺序稳定）"""
        with self.database.connect() as conn:
            rows = conn.execute(
                f'{_SELECT_SQL} WHERE is_deleted = 0 ORDER BY created_at ASC, id ASC'
            ).fetchall()
            return [_row_to_record(row) for row in rows]

    def list_recent(self) -> List[AccountRecord]:
        """全部未删除卡片，最近修改的在前"""
        with self.database.connect() as conn:
            rows = conn.execute(
                f'{_SELECT_SQL} WHERE is_deleted = 0 ORDER BY updated_at DESC, id DESC'
            ).fetchall()
            return [_row_to_record(row) for row in rows]

    @staticmethod
    def _parse_identifier(identifier: str) -> Tuple[int, str]:
        """标识可以是 sync_id，也可以是本地数字主键"""
        identifier = str(identifier)
        row_id = int(identifier) if identifier.isdigit() else -1
        return row_id, identifier
