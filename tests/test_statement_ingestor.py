import sqlite3
from decimal import Decimal

import pytest

from cardbutler.adapters.base import MailConnectionError
from cardbutler.models.errors import MailConfigMissingError
from cardbutler.models.mail import RawMessage
from cardbutler.services.statement_ingestor import StatementIngestor
from cardbutler.storage.mail_config_repository import MailConfigRepository
from cardbutler.storage.statement_repository import StatementRepository

from conftest import FakeMailSource, raw_message


BILL_BODY = """亲爱的张三，您好！
您尾号5678的信用卡本期应还款额：¥1,234.56，最低还款额：123.45
账单日：2024年01月05日 到期还款日：2024年01月23日"""


def _ingestor(database, card_repo, source, configured=True):
    mail_config = MailConfigRepository(database)
    if configured:
        mail_config.save("me@qq.com", "auth-code")
    sessions = []

    def factory(credentials):
        sessions.append(credentials)
        return source

    ingestor = StatementIngestor(
        card_repo,
        StatementRepository(database),
        mail_config,
        session_factory=factory,
        clock=lambda: 1700000000,
    )
    return ingestor, sessions


def test_run_saves_matched_statement(database, card_repo, make_card):
    card_repo.create(make_card("card-1", last_four_digits="5678"))
    source = FakeMailSource([
        raw_message("1001", "招商银行信用卡电子账单", BILL_BODY),
        raw_message("1002", "会员活动通知", "欢迎参加本月活动", sender="promo@shop.com"),
    ])
    ingestor, sessions = _ingestor(database, card_repo, source)

    summary = ingestor.run()

    assert summary.to_dict() == {'total': 2, 'saved': 1, 'skipped': 1, 'duplicate': 0, 'failed': 0}
    assert source.closed
    assert sessions[0].email == "me@qq.com"

    statement = ingestor.statements.get_by_message_id("1001")
    assert statement.account_sync_id == "card-1"
    assert statement.bank_name == "招商银行"
    assert statement.amount == Decimal("1234.56")
    assert statement.min_payment == Decimal("123.45")
    assert statement.statement_date == "2024-01-05"
    assert statement.due_date == "2024-01-23"
    assert statement.source_format == "text"
    assert statement.matched_by == "last_four"
    assert statement.match_confidence == "medium"
    assert statement.fetched_at == 1700000000


def test_second_run_counts_duplicates(database, card_repo, make_card):
    card_repo.create(make_card("card-1", last_four_digits="5678"))
    source = FakeMailSource([raw_message("1001", "信用卡账单", BILL_BODY)])
    ingestor, _ = _ingestor(database, card_repo, source)

    ingestor.run()
    summary = ingestor.run()

    assert summary.saved == 0
    assert summary.skipped == 1
    assert summary.duplicate == 1
    assert ingestor.statements.count() == 1


def test_pdf_only_message_is_skipped(database, card_repo, make_card):
    card_repo.create(make_card("card-1"))
    source = FakeMailSource([raw_message("1001", "电子账单 尾号5678", pdf=b"%PDF-1.4")])
    ingestor, _ = _ingestor(database, card_repo, source)

    summary = ingestor.run()

    assert summary.saved == 0
    assert summary.skipped == 1


def test_deleted_cards_are_not_matched(database, card_repo, make_card):
    card_repo.create(make_card("card-1", is_deleted=True))
    ingestor, _ = _ingestor(
        database, card_repo, FakeMailSource([raw_message("1001", "信用卡账单", BILL_BODY)])
    )

    assert ingestor.run().saved == 0


def test_missing_config_is_reported_before_connecting(database, card_repo):
    source = FakeMailSource([])
    ingestor, sessions = _ingestor(database, card_repo, source, configured=False)

    with pytest.raises(MailConfigMissingError):
        ingestor.run()
    assert sessions == []


def test_connection_error_propagates_and_closes_session(database, card_repo):
    source = FakeMailSource([], error=MailConnectionError("timeout"))
    ingestor, _ = _ingestor(database, card_repo, source)

    with pytest.raises(MailConnectionError):
        ingestor.run()
    assert source.closed
    assert ingestor.statements.count() == 0


def test_storage_failure_is_counted_and_run_continues(database, card_repo, make_card):
    card_repo.create(make_card("card-1", last_four_digits="5678"))
    source = FakeMailSource([
        raw_message("1001", "信用卡账单", BILL_BODY),
        raw_message("1002", "信用卡账单", BILL_BODY),
    ])
    ingestor, _ = _ingestor(database, card_repo, source)
    original_save = ingestor.statements.save

    def flaky_save(statement):
        if statement.mail_message_id == "1001":
            raise sqlite3.OperationalError("database is locked")
        return original_save(statement)

    ingestor.statements.save = flaky_save

    summary = ingestor.run()

    assert summary.failed == 1
    assert summary.saved == 1
    assert summary.skipped == 1


def test_broken_message_is_skipped_and_run_continues(database, card_repo, make_card):
    card_repo.create(make_card("card-1", last_four_digits="5678"))
    source = FakeMailSource([
        RawMessage(seq=1, uid="1001", sender="a@[", subject="x",
                   raw=b"From: a@[\r\nSubject: x\r\n\r\nbody"),
        raw_message("1002", "信用卡账单", BILL_BODY),
    ])
    ingestor, _ = _ingestor(database, card_repo, source)
    original_decode = ingestor.decoder.decode

    def broken_decode(message):
        if message.uid == "1001":
            raise AttributeError("'InvalidHeaderDefect' object has no attribute 'all_defects'")
        return original_decode(message)

    ingestor.decoder.decode = broken_decode

    summary = ingestor.run()

    assert summary.saved == 1
    assert summary.skipped == 1
    assert summary.failed == 0
    assert ingestor.statements.get_by_message_id("1002").account_sync_id == "card-1"


def test_test_connection_uses_transient_credentials(database, card_repo):
    source = FakeMailSource([])
    ingestor, sessions = _ingestor(database, card_repo, source, configured=False)

    result = ingestor.test_connection("other@163.com", "code", None)

    assert result['success'] is True
    assert source.logged_in
    assert sessions[0].imap_host == "imap.qq.com:993"
    assert ingestor.mail_config.find() is None
