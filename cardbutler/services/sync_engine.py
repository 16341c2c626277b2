"""
同步引擎 - 客户端卡片集合与服务端存储的合并
规则：后写者胜（按 updated_at 严格大于），返回水位线之后的全部变更
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Sequence

from cardbutler.models.account import AccountRecord, now_ts
from cardbutler.models.errors import RecordValidationError
from cardbutler.storage.card_repository import CardRepository

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """一次同步的结果"""
    cards: List[AccountRecord]
    server_time: int
    applied: int = 0          # 插入或覆盖的条数
    stale: int = 0            # 时间戳不新于已存储版本而忽略的条数
    failed: int = 0           # 存储失败的条数
    assigned_ids: Dict[int, str] = field(default_factory=dict)  # 请求序号 -> 新分配的 sync_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cards': [card.to_dict() for card in self.cards],
            'serverTime': self.server_time,
        }


class SyncEngine:
    """
    同步引擎

    对每条上行记录做“比较并覆盖”，全部应用之后再读取增量，
    因此客户端刚发上来的修改不会被当作别人的修改回传（除非后写者胜本身如此）。
    """

    def __init__(self, cards: CardRepository, clock: Callable[[], int] = now_ts):
        self.cards = cards
        self.clock = clock

    def parse_cards(self, payload: Any) -> List[AccountRecord]:
        """
        全量校验上行卡片，任何一条畸形都拒绝整个请求

        Raises:
            RecordValidationError: 带出错记录的序号
        """
        if not isinstance(payload, list):
            raise RecordValidationError("cards 必须是数组", field='cards')

        records = []
        for index, item in enumerate(payload):
            try:
                records.append(AccountRecord.from_dict(item))
            except RecordValidationError as e:
                raise RecordValidationError(e.message, field=e.field, index=index)
        return records

    def sync(self, incoming: Sequence[AccountRecord], since_watermark: int,
             device_id: str = "") -> SyncResult:
        """
        执行同步

        Args:
            incoming: 客户端全部记录（已校验）
            since_watermark: 客户端上次同步拿到的服务器时间
            device_id: 设备标识，目前只记录日志

        Returns:
            SyncResult，cards 为 updated_at > since_watermark 的全部记录（含已删除）
        """
        # 在读取增量之前取服务器时间，并发提交的记录下次同步仍会被带上
        server_time = self.clock()
        result = SyncResult(cards=[], server_time=server_time)

        for index, record in enumerate(incoming):
            if not record.sync_id:
                record = record.copy().ensure_sync_id()
                result.assigned_ids[index] = record.sync_id
                record = self._stamp(record, server_time)
            elif record.updated_at <= 0:
                record = self._stamp(record, server_time)

            try:
                if self.cards.upsert_if_newer(record):
                    result.applied += 1
                else:
                    result.stale += 1
            except sqlite3.Error as e:
                # 单条失败不影响其余记录
                result.failed += 1
                logger.error("[✗] 合并卡片失败 sync_id=%s: %s", record.sync_id, e)

        result.cards = self.cards.get_since(since_watermark)

        logger.info(
            "[✓] 同步完成 device=%s: 上行 %d 条（写入 %d, 忽略 %d, 失败 %d），下行 %d 条",
            device_id or '-', len(incoming), result.applied, result.stale,
            result.failed, len(result.cards),
        )
        return result

    @staticmethod
    def _stamp(record: AccountRecord, server_time: int) -> AccountRecord:
        """服务端代为写入：updated_at 取服务器时间，否则增量读不到这条记录"""
        return record.copy(
            updated_at=max(record.updated_at, server_time),
            created_at=record.created_at or server_time,
        )

    def sync_request(self, payload: Dict[str, Any]) -> SyncResult:
        """
        处理同步请求体 {cards, lastSyncAt, deviceId}

        先完成全部校验再开始写入，校验失败时不产生任何副作用。
        """
        if not isinstance(payload, dict):
            raise RecordValidationError("请求体必须是 JSON 对象")

        since = payload.get('lastSyncAt', 0)
        if since is None:
            since = 0
        if isinstance(since, float) and since.is_integer():
            since = int(since)
        if isinstance(since, bool) or not isinstance(since, int) or since < 0:
            raise RecordValidationError("lastSyncAt 必须是非负整数", field='lastSyncAt')

        device_id = payload.get('deviceId') or ''
        if not isinstance(device_id, str):
            raise RecordValidationError("deviceId 必须是字符串", field='deviceId')

        records = self.parse_cards(payload.get('cards') or [])
        return self.sync(records, since, device_id=device_id)
