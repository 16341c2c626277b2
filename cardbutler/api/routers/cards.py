import logging

from fastapi import APIRouter, Body, Depends, HTTPException

from cardbutler.api.dependencies import Services, get_services
from cardbutler.api.responses import ok
from cardbutler.api.schemas import SyncRequest
from cardbutler.models.account import AccountRecord, new_sync_id, now_ts

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/sync")
def sync_cards(request: SyncRequest, services: Services = Depends(get_services)):
    """双向同步：合并上行卡片，返回 lastSyncAt 之后的全部变更"""
    result = services.sync_engine.sync_request(request.model_dump())
    return ok(result.to_dict())


@router.get("/cards")
def list_cards(services: Services = Depends(get_services)):
    cards = services.cards.list_recent()
    return ok([card.to_dict() for card in cards])


@router.post("/cards", status_code=201)
def create_card(payload: dict = Body(...), services: Services = Depends(get_services)):
    """新建卡片，syncId 与时间戳一律由服务端分配，请求中的 syncId 被忽略"""
    record = AccountRecord.from_dict(payload, strict=True)
    now = now_ts()
    record = record.copy(
        sync_id=new_sync_id(),
        is_deleted=False,
        created_at=now,
        updated_at=now,
    )
    created = services.cards.create(record)
    logger.info("[✓] 新建卡片: %s %s", created.bank_name, created.sync_id)
    return ok(created.to_dict())


@router.put("/cards/{identifier}")
def update_card(identifier: str, payload: dict = Body(...),
                services: Services = Depends(get_services)):
    """按 syncId 或本地 id 更新卡片"""
    record = AccountRecord.from_dict(payload, strict=True)
    updated = services.cards.update(identifier, record, now_ts())
    if updated is None:
        raise HTTPException(status_code=404, detail="卡片不存在")
    return ok(updated.to_dict())


@router.delete("/cards/{identifier}")
def delete_card(identifier: str, services: Services = Depends(get_services)):
    """软删除，删除标记随下次同步传播到其他设备"""
    if not services.cards.soft_delete(identifier, now_ts()):
        raise HTTPException(status_code=404, detail="卡片不存在")
    return ok()
