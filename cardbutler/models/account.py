"""
信用卡账户记录模型 - 同步协议与账单匹配共用的数据结构

线上 JSON 字段沿用移动端客户端的命名（name/bank/cardholderName/lastFour 等），
Python 侧使用语义化的属性名。
"""

import re
import time
import uuid
from dataclasses import dataclass, asdict, replace
from typing import Any, Dict, Optional

from cardbutler.models.errors import RecordValidationError


# Python 属性名 -> 线上 JSON 字段名
WIRE_FIELDS: Dict[str, str] = {
    'sync_id': 'syncId',
    'display_name': 'name',
    'bank_name': 'bank',
    'card_number': 'cardNumber',
    'cvv': 'cvv',
    'expiry_date': 'expiryDate',
    'holder_name': 'cardholderName',
    'credit_limit': 'creditLimit',
    'billing_day': 'billingDay',
    'payment_due_day': 'paymentDueDay',
    'color_tag': 'color',
    'front_image': 'cardFrontImage',
    'back_image': 'cardBackImage',
    'notes': 'notes',
    'iv': 'iv',
    'owner_label': 'owner',
    'last_four_digits': 'lastFour',
    'is_deleted': 'isDeleted',
    'created_at': 'createdAt',
    'updated_at': 'updatedAt',
}

TEXT_FIELDS = (
    'sync_id', 'display_name', 'bank_name', 'card_number', 'cvv', 'expiry_date',
    'holder_name', 'color_tag', 'front_image', 'back_image', 'notes', 'iv',
    'owner_label', 'last_four_digits',
)

# 合并时允许覆盖的字段（created_at 与 sync_id 不可变）
MUTABLE_FIELDS = tuple(
    name for name in WIRE_FIELDS if name not in ('sync_id', 'created_at')
)

_PLAIN_CARD_RE = re.compile(r'^\d{12,19}$')


def now_ts() -> int:
    """当前时间（epoch 秒）"""
    return int(time.time())


def new_sync_id() -> str:
    """生成全局唯一的同步 ID"""
    return str(uuid.uuid4())


def derive_last_four(card_number: str) -> str:
    """
    从明文卡号推导后四位

    卡号字段可能是密文，只有纯数字（允许空格/连字符分隔）时才推导。
    """
    digits = re.sub(r'[\s\-]', '', card_number or '')
    if _PLAIN_CARD_RE.match(digits):
        return digits[-4:]
    return ''


@dataclass
class AccountRecord:
    """
    信用卡账户记录

    sync_id 是跨设备的稳定身份；row_id 只是服务端本地自增主键。
    updated_at 是合并时唯一的先后依据。
    """

    sync_id: str = ''
    display_name: str = ''
    bank_name: str = ''
    card_number: str = ''               # 完整卡号或密文，可为空
    cvv: str = ''
    expiry_date: str = ''
    holder_name: str = ''
    credit_limit: int = 0
    billing_day: int = 0                # 1-28
    payment_due_day: int = 0            # 1-28
    color_tag: str = ''
    front_image: str = ''
    back_image: str = ''
    notes: str = ''
    iv: str = ''                        # 加密字段的 IV，服务端原样存储
    owner_label: str = ''
    last_four_digits: str = ''          # 明文后四位，仅用于账单匹配
    is_deleted: bool = False
    created_at: int = 0
    updated_at: int = 0
    row_id: Optional[int] = None

    def ensure_sync_id(self) -> 'AccountRecord':
        """若 sync_id 为空则分配新的（首次同步前在客户端创建的记录）"""
        if not self.sync_id:
            self.sync_id = new_sync_id()
        return self

    def copy(self, **changes: Any) -> 'AccountRecord':
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """转换为线上 JSON 格式"""
        data: Dict[str, Any] = {}
        if self.row_id is not None:
            data['id'] = self.row_id
        values = asdict(self)
        for attr, key in WIRE_FIELDS.items():
            data[key] = values[attr]
        return data

    @classmethod
    def from_dict(cls, data: Any, strict: bool = False) -> 'AccountRecord':
        """
        从线上 JSON 构建记录，并做结构校验

        Args:
            data: 客户端发来的卡片字典
            strict: 创建/更新卡片时为 True，要求名称、银行必填且数值字段在有效范围内

        Raises:
            RecordValidationError: 数据畸形
        """
        if not isinstance(data, dict):
            raise RecordValidationError("卡片数据必须是 JSON 对象")

        values: Dict[str, Any] = {}
        for attr in TEXT_FIELDS:
            key = WIRE_FIELDS[attr]
            raw = data.get(key)
            if raw is None:
                values[attr] = ''
            elif isinstance(raw, str):
                values[attr] = raw
            else:
                raise RecordValidationError(f"字段 {key} 必须是字符串", field=key)

        values['credit_limit'] = _parse_int(data, 'creditLimit', default=0)
        values['billing_day'] = _parse_int(data, 'billingDay', default=0)
        values['payment_due_day'] = _parse_int(data, 'paymentDueDay', default=0)

        if 'updatedAt' not in data and not strict:
            raise RecordValidationError("缺少 updatedAt", field='updatedAt')
        values['updated_at'] = _parse_int(data, 'updatedAt', default=0)
        values['created_at'] = _parse_int(data, 'createdAt', default=values['updated_at'])

        is_deleted = data.get('isDeleted', False)
        if is_deleted is None:
            is_deleted = False
        if isinstance(is_deleted, bool):
            values['is_deleted'] = is_deleted
        elif isinstance(is_deleted, int) and is_deleted in (0, 1):
            values['is_deleted'] = bool(is_deleted)
        else:
            raise RecordValidationError("字段 isDeleted 必须是布尔值", field='isDeleted')

        for key, attr in (('updatedAt', 'updated_at'), ('createdAt', 'created_at'),
                          ('creditLimit', 'credit_limit')):
            if values[attr] < 0:
                raise RecordValidationError(f"字段 {key} 不能为负数", field=key)

        # 同步时允许 0 表示旧数据未填写；严格模式要求 1-28
        low = 1 if strict else 0
        for key, attr in (('billingDay', 'billing_day'), ('paymentDueDay', 'payment_due_day')):
            if not low <= values[attr] <= 28:
                raise RecordValidationError(f"字段 {key} 必须在 {low}-28 之间", field=key)

        if strict:
            for key, attr in (('name', 'display_name'), ('bank', 'bank_name')):
                if not values[attr].strip():
                    raise RecordValidationError(f"缺少必填字段 {key}", field=key)
            if values['credit_limit'] <= 0:
                raise RecordValidationError("字段 creditLimit 必须是正整数", field='creditLimit')

        if not values['last_four_digits']:
            values['last_four_digits'] = derive_last_four(values['card_number'])

        return cls(**values)


def _parse_int(data: Dict[str, Any], key: str, default: int) -> int:
    """解析整数字段，接受整数值的浮点数（JS 客户端常见）"""
    raw = data.get(key)
    if raw is None:
        return default
    if isinstance(raw, bool):
        raise RecordValidationError(f"字段 {key} 必须是整数", field=key)
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    raise RecordValidationError(f"字段 {key} 必须是整数", field=key)
