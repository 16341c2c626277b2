from typing import Any, Dict, List, Optional

from pydantic import BaseModel


# ─── Sync Schemas ─────────────────────────────────────────────────────────────

class SyncRequest(BaseModel):
    # 卡片逐条由 AccountRecord.from_dict 校验，这里只约束外层结构
    cards: List[Dict[str, Any]] = []
    lastSyncAt: Optional[int] = 0
    deviceId: Optional[str] = ""


# ─── Email Config Schemas ─────────────────────────────────────────────────────

class EmailConfigRequest(BaseModel):
    email: str
    password: str
    imapHost: Optional[str] = None
