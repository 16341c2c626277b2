from decimal import Decimal

import pytest

from cardbutler.models.errors import MailConfigMissingError
from cardbutler.models.statement import Statement
from cardbutler.storage.mail_config_repository import MailConfigRepository
from cardbutler.storage.statement_repository import StatementRepository, truncate_chars


# ==================== 卡片 ====================

def test_card_create_and_find_by_row_id(card_repo, make_card):
    created = card_repo.create(make_card("card-1"))

    assert created.row_id is not None
    assert card_repo.find(str(created.row_id)).sync_id == "card-1"
    assert card_repo.find("card-1").row_id == created.row_id
    assert card_repo.find("missing") is None


def test_card_update_advances_timestamp_monotonically(card_repo, make_card):
    card_repo.create(make_card("card-1", updated_at=5000))

    # 服务器时钟落后于客户端写入的时间戳，仍然要前进
    updated = card_repo.update("card-1", make_card("card-1", notes="改过"), now=1000)

    assert updated.notes == "改过"
    assert updated.updated_at == 5001
    assert updated.created_at == 5000


def test_card_update_unknown_returns_none(card_repo, make_card):
    assert card_repo.update("nope", make_card("nope"), now=1000) is None


def test_soft_delete_keeps_row_for_sync(card_repo, make_card):
    card_repo.create(make_card("card-1", updated_at=100))

    assert card_repo.soft_delete("card-1", now=200) is True
    assert card_repo.soft_delete("missing", now=200) is False

    assert card_repo.list_recent() == []
    delta = card_repo.get_since(150)
    assert len(delta) == 1
    assert delta[0].is_deleted is True
    assert delta[0].updated_at == 200


def test_list_active_is_in_creation_order(card_repo, make_card):
    card_repo.create(make_card("b", updated_at=300, created_at=20))
    card_repo.create(make_card("a", updated_at=100, created_at=10))

    assert [c.sync_id for c in card_repo.list_active()] == ["a", "b"]
    assert [c.sync_id for c in card_repo.list_recent()] == ["b", "a"]


def test_upsert_requires_sync_id(card_repo, make_card):
    with pytest.raises(ValueError):
        card_repo.upsert_if_newer(make_card(""))


def test_database_migrates_missing_columns(tmp_path):
    import sqlite3

    from cardbutler.storage.database import Database

    db_path = tmp_path / "old.db"
    conn = sqlite3.connect(db_path)
    conn.execute(
        "CREATE TABLE cards (id INTEGER PRIMARY KEY AUTOINCREMENT, sync_id TEXT UNIQUE NOT NULL, "
        "name TEXT, bank TEXT, card_number TEXT, cvv TEXT, expiry_date TEXT, cardholder_name TEXT, "
        "credit_limit INTEGER, billing_day INTEGER, payment_due_day INTEGER, color TEXT, "
        "card_front_image TEXT, card_back_image TEXT, notes TEXT, is_deleted INTEGER DEFAULT 0, "
        "created_at INTEGER, updated_at INTEGER)"
    )
    conn.commit()
    conn.close()

    database = Database(db_path)

    with database.connect() as conn:
        cols = [row[1] for row in conn.execute("PRAGMA table_info(cards)")]
    assert {"iv", "owner", "last_four"} <= set(cols)


# ==================== 账单 ====================

def _statement(uid="1001", **fields):
    values = dict(
        account_sync_id="card-1",
        mail_message_id=uid,
        bank_name="招商银行",
        amount=Decimal("1234.56"),
        source_format="text",
        matched_by="last_four",
        match_confidence="medium",
        raw_excerpt="本期应还款额：¥1,234.56",
        fetched_at=1000,
    )
    values.update(fields)
    return Statement(**values)


def test_statement_dedup_by_message_id(database):
    repo = StatementRepository(database)

    assert repo.save(_statement("1001")) is True
    assert repo.save(_statement("1001", amount=Decimal("1.00"))) is False

    assert repo.count() == 1
    assert repo.get_by_message_id("1001").amount == Decimal("1234.56")


def test_statement_excerpt_truncated_by_characters(database):
    repo = StatementRepository(database, excerpt_limit=5)
    repo.save(_statement("1001", raw_excerpt="一二三四五六七"))

    assert repo.get_by_message_id("1001").raw_excerpt == "一二三四五"


def test_statement_list_recent_newest_first(database):
    repo = StatementRepository(database)
    repo.save(_statement("1", fetched_at=100))
    repo.save(_statement("2", fetched_at=300, amount=None))
    repo.save(_statement("3", fetched_at=200))

    statements = repo.list_recent()

    assert [s.mail_message_id for s in statements] == ["2", "3", "1"]
    assert statements[0].amount is None
    assert 'rawContent' not in statements[0].to_dict()
    assert statements[1].to_dict(include_excerpt=True)['rawContent'].startswith("本期")


def test_truncate_chars():
    assert truncate_chars("abc", 10) == "abc"
    assert truncate_chars("abcdef", 3) == "abc"
    assert truncate_chars("abc", 0) == ""


# ==================== 邮箱配置 ====================

def test_mail_config_single_row(database):
    repo = MailConfigRepository(database)

    with pytest.raises(MailConfigMissingError):
        repo.load()
    assert repo.find() is None

    repo.save("a@qq.com", "secret-1")
    repo.save("b@qq.com", "secret-2", "imap.163.com:993")

    credentials = repo.load()
    assert credentials.email == "b@qq.com"
    assert credentials.secret == "secret-2"
    assert credentials.imap_host == "imap.163.com:993"
    assert credentials.public_view() == {'id': 1, 'email': "b@qq.com", 'imapHost': "imap.163.com:993"}
    assert "secret" not in repr(credentials)


def test_mail_config_default_host(database):
    repo = MailConfigRepository(database)
    repo.save("a@qq.com", "x")

    assert repo.load().imap_host == "imap.qq.com:993"
