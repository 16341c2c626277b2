"""
服务容器 - 应用启动时构建一次，挂在 app.state 上供各路由使用
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from cardbutler.parsers.statement_extractor import StatementExtractor
from cardbutler.services.config_manager import AppSettings
from cardbutler.services.statement_ingestor import (
    SessionFactory,
    StatementIngestor,
    default_session_factory,
)
from cardbutler.services.sync_engine import SyncEngine
from cardbutler.storage.card_repository import CardRepository
from cardbutler.storage.database import Database
from cardbutler.storage.mail_config_repository import MailConfigRepository
from cardbutler.storage.statement_repository import StatementRepository


@dataclass
class Services:
    settings: AppSettings
    database: Database
    cards: CardRepository
    statements: StatementRepository
    mail_config: MailConfigRepository
    sync_engine: SyncEngine
    ingestor: StatementIngestor


def build_services(settings: AppSettings,
                   session_factory: Optional[SessionFactory] = None) -> Services:
    """按设置组装仓库与服务"""
    database = Database(settings.db_path)
    cards = CardRepository(database)
    statements = StatementRepository(database, excerpt_limit=settings.excerpt_limit)
    mail_config = MailConfigRepository(database, default_host=settings.default_imap_host)
    ingestor = StatementIngestor(
        cards,
        statements,
        mail_config,
        extractor=StatementExtractor(bank_directory=settings.bank_directory),
        session_factory=session_factory or default_session_factory,
        fetch_limit=settings.fetch_limit,
    )
    return Services(
        settings=settings,
        database=database,
        cards=cards,
        statements=statements,
        mail_config=mail_config,
        sync_engine=SyncEngine(cards),
        ingestor=ingestor,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
