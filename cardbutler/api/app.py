"""
HTTP 服务 - 卡片同步与账单拉取接口，全部挂在 /api/v1 下
"""

import logging
import sqlite3
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from cardbutler.adapters.base import MailDataSourceError
from cardbutler.api.dependencies import build_services
from cardbutler.api.responses import fail
from cardbutler.api.routers import bills, cards, email_config
from cardbutler.models.account import now_ts
from cardbutler.models.errors import MailConfigMissingError, RecordValidationError
from cardbutler.services.config_manager import AppSettings
from cardbutler.services.statement_ingestor import SessionFactory

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
VERSION = "1.0.0"


def create_app(settings: Optional[AppSettings] = None,
               session_factory: Optional[SessionFactory] = None) -> FastAPI:
    """
    创建应用

    Args:
        settings: 运行时设置，缺省使用默认值
        session_factory: 邮箱会话工厂，测试时注入假的 IMAP 会话
    """
    settings = settings or AppSettings()

    app = FastAPI(
        title="CardButler",
        version=VERSION,
        description="信用卡多设备同步与邮箱账单拉取",
    )
    app.state.services = build_services(settings, session_factory=session_factory)
    logger.info("[✓] 数据库就绪: %s", settings.db_path)

    # ─── CORS ─────────────────────────────────────────────────────────────────

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ─── Routers ──────────────────────────────────────────────────────────────

    app.include_router(cards.router, prefix=API_PREFIX, tags=["Cards"])
    app.include_router(bills.router, prefix=API_PREFIX, tags=["Bills"])
    app.include_router(email_config.router, prefix=API_PREFIX, tags=["Email Config"])

    @app.get(f"{API_PREFIX}/health")
    def health_check():
        return {"status": "ok", "timestamp": now_ts(), "version": VERSION}

    _register_error_handlers(app)
    return app


def _register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(RecordValidationError)
    async def handle_validation(request: Request, exc: RecordValidationError):
        logger.warning("[✗] 请求数据无效 %s: %s", request.url.path, exc)
        return fail(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            location = '.'.join(str(part) for part in errors[0].get('loc', ()) if part != 'body')
            message = f"{location}: {errors[0].get('msg')}" if location else errors[0].get('msg')
        else:
            message = "请求格式错误"
        return fail(400, message)

    @app.exception_handler(MailConfigMissingError)
    async def handle_missing_config(request: Request, exc: MailConfigMissingError):
        return fail(400, exc.message)

    @app.exception_handler(MailDataSourceError)
    async def handle_mail_source(request: Request, exc: MailDataSourceError):
        logger.error("[✗] 邮箱访问失败: %s", exc.message)
        return fail(502, exc.message)

    @app.exception_handler(sqlite3.Error)
    async def handle_storage(request: Request, exc: sqlite3.Error):
        logger.error("[✗] 数据库错误 %s: %s", request.url.path, exc)
        return fail(500, "数据库错误")

    @app.exception_handler(StarletteHTTPException)
    async def handle_http(request: Request, exc: StarletteHTTPException):
        return fail(exc.status_code, str(exc.detail))
