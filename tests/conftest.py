from email.message import EmailMessage
from pathlib import Path
from typing import List, Optional

import pytest

from cardbutler.adapters.base import MailSource
from cardbutler.models.account import AccountRecord
from cardbutler.models.mail import RawMessage
from cardbutler.storage.card_repository import CardRepository
from cardbutler.storage.database import Database


def build_email(subject: str, body: str = "", sender: str = "ccsvc@message.cmbchina.com",
                html: Optional[str] = None, pdf: Optional[bytes] = None) -> bytes:
    msg = EmailMessage()
    msg['From'] = f"招商银行信用卡 <{sender}>"
    msg['To'] = "me@qq.com"
    msg['Subject'] = subject
    if body:
        msg.set_content(body)
    if html is not None:
        if body:
            msg.add_alternative(html, subtype='html')
        else:
            msg.set_content(html, subtype='html')
    if pdf is not None:
        if not body and html is None:
            msg.set_content("")
        msg.add_attachment(pdf, maintype='application', subtype='pdf', filename='bill.pdf')
    return msg.as_bytes()


def raw_message(uid: str, subject: str, body: str = "", sender: str = "ccsvc@message.cmbchina.com",
                **kwargs) -> RawMessage:
    return RawMessage(
        seq=int(uid) if uid.isdigit() else 0,
        uid=uid,
        sender=sender,
        subject=subject,
        raw=build_email(subject, body, sender=sender, **kwargs),
    )


class FakeMailSource(MailSource):
    """内存中的邮箱，记录是否被关闭"""

    def __init__(self, messages: List[RawMessage], error: Optional[Exception] = None):
        self.messages = messages
        self.error = error
        self.closed = False
        self.logged_in = False

    @property
    def source_name(self) -> str:
        return "fake"

    def check_login(self) -> None:
        if self.error:
            raise self.error
        self.logged_in = True

    def fetch_recent(self, limit: int = 100) -> List[RawMessage]:
        if self.error:
            raise self.error
        return self.messages[-limit:]

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def database(tmp_path: Path) -> Database:
    return Database(tmp_path / "cards.db")


@pytest.fixture
def card_repo(database: Database) -> CardRepository:
    return CardRepository(database)


@pytest.fixture
def make_card():
    def _make(sync_id: str = "card-1", updated_at: int = 100, **fields) -> AccountRecord:
        values = dict(
            sync_id=sync_id,
            display_name="招行经典白",
            bank_name="招商银行",
            holder_name="张三",
            credit_limit=50000,
            billing_day=5,
            payment_due_day=23,
            last_four_digits="5678",
            created_at=updated_at,
            updated_at=updated_at,
        )
        values.update(fields)
        return AccountRecord(**values)

    return _make
