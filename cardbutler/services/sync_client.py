"""
客户端同步 - 本地卡片库与服务器的双向同步

本地库只需实现 LocalCardStore 的五个操作；HTTP 传输使用 httpx.Client，
测试中可以直接传入 FastAPI 的 TestClient。
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from cardbutler.models.account import MUTABLE_FIELDS, AccountRecord, new_sync_id
from cardbutler.models.errors import RecordValidationError

logger = logging.getLogger(__name__)

SYNC_PATH = "/api/v1/sync"
HEALTH_PATH = "/api/v1/health"


class LocalCardStore(ABC):
    """设备本地卡片库，记录以 row_id 为本地主键"""

    @abstractmethod
    def get_all(self) -> List[AccountRecord]:
        """全部记录（含已删除）"""
        pass

    @abstractmethod
    def get(self, sync_id: str) -> Optional[AccountRecord]:
        pass

    @abstractmethod
    def insert(self, record: AccountRecord) -> AccountRecord:
        """插入记录，返回带 row_id 的记录"""
        pass

    @abstractmethod
    def update_fields(self, row_id: int, changes: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def soft_delete(self, row_id: int, updated_at: int) -> None:
        pass


class MemoryCardStore(LocalCardStore):
    """内存实现，适用于脚本与测试"""

    def __init__(self, records: Optional[List[AccountRecord]] = None):
        self._records: Dict[int, AccountRecord] = {}
        self._next_id = 1
        for record in records or []:
            self.insert(record)

    def get_all(self) -> List[AccountRecord]:
        return [record.copy() for record in self._records.values()]

    def get(self, sync_id: str) -> Optional[AccountRecord]:
        for record in self._records.values():
            if sync_id and record.sync_id == sync_id:
                return record.copy()
        return None

    def insert(self, record: AccountRecord) -> AccountRecord:
        stored = record.copy(row_id=self._next_id)
        self._records[self._next_id] = stored
        self._next_id += 1
        return stored.copy()

    def update_fields(self, row_id: int, changes: Dict[str, Any]) -> None:
        if row_id not in self._records:
            raise KeyError(row_id)
        self._records[row_id] = self._records[row_id].copy(**changes)

    def soft_delete(self, row_id: int, updated_at: int) -> None:
        self.update_fields(row_id, {'is_deleted': True, 'updated_at': updated_at})


@dataclass
class SyncOutcome:
    """一次客户端同步的结果"""
    success: bool
    error: Optional[str] = None
    uploaded: int = 0
    inserted: int = 0
    updated: int = 0


class SyncClient:
    """同步客户端"""

    def __init__(self, store: LocalCardStore, http: httpx.Client,
                 device_id: str = "", last_sync_at: int = 0):
        self.store = store
        self.http = http
        self.device_id = device_id or f"device_{new_sync_id()}"
        self.last_sync_at = last_sync_at
        self._syncing = threading.Lock()

    @property
    def is_syncing(self) -> bool:
        return self._syncing.locked()

    def test_connection(self) -> bool:
        """检查服务器是否可用"""
        try:
            response = self.http.get(HEALTH_PATH)
            return response.json().get('status') == 'ok'
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("[✗] 连接测试失败: %s", e)
            return False

    def sync(self) -> SyncOutcome:
        """执行一次同步；已有同步进行中时直接返回失败"""
        if not self._syncing.acquire(blocking=False):
            return SyncOutcome(success=False, error="同步进行中")
        try:
            return self._sync()
        finally:
            self._syncing.release()

    def force_full_sync(self) -> SyncOutcome:
        """清空水位线后同步，拉取服务器上的全部记录"""
        self.last_sync_at = 0
        return self.sync()

    def _sync(self) -> SyncOutcome:
        local_cards = self.store.get_all()

        # 首次同步前创建的记录先分配 sync_id 并写回本地
        for card in local_cards:
            if not card.sync_id:
                card.sync_id = new_sync_id()
                self.store.update_fields(card.row_id, {'sync_id': card.sync_id})

        payload = {
            'cards': [self._to_wire(card) for card in local_cards],
            'lastSyncAt': self.last_sync_at,
            'deviceId': self.device_id,
        }

        try:
            response = self.http.post(
                SYNC_PATH, json=payload, headers={'X-Device-ID': self.device_id}
            )
            if response.status_code >= 400:
                return SyncOutcome(success=False, error=f"服务器错误: {response.status_code}")
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("[✗] 同步请求失败: %s", e)
            return SyncOutcome(success=False, error=str(e) or "同步失败")

        if not isinstance(body, dict):
            return SyncOutcome(success=False, error="同步失败")
        data = body.get('data')
        if not body.get('success') or not isinstance(data, dict):
            return SyncOutcome(success=False, error=body.get('error') or "同步失败")

        outcome = SyncOutcome(success=True, uploaded=len(local_cards))
        for item in data.get('cards') or []:
            try:
                server_card = AccountRecord.from_dict(item)
            except RecordValidationError as e:
                logger.warning("[✗] 忽略服务器返回的无效记录: %s", e)
                continue
            self._merge(server_card, outcome)

        self.last_sync_at = int(data.get('serverTime') or self.last_sync_at)
        logger.info(
            "[✓] 同步完成: 上传 %d, 新增 %d, 更新 %d, 水位线 %d",
            outcome.uploaded, outcome.inserted, outcome.updated, self.last_sync_at,
        )
        return outcome

    def _merge(self, server_card: AccountRecord, outcome: SyncOutcome) -> None:
        local = self.store.get(server_card.sync_id)
        if local is None:
            self.store.insert(server_card.copy(row_id=None))
            outcome.inserted += 1
        elif server_card.updated_at > local.updated_at:
            self.store.update_fields(
                local.row_id,
                {name: getattr(server_card, name) for name in MUTABLE_FIELDS},
            )
            outcome.updated += 1

    @staticmethod
    def _to_wire(card: AccountRecord) -> Dict[str, Any]:
        data = card.to_dict()
        # 本地主键对服务器没有意义
        data.pop('id', None)
        return data
