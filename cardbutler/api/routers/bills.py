import logging

from fastapi import APIRouter, Depends

from cardbutler.api.dependencies import Services, get_services
from cardbutler.api.responses import ok
from cardbutler.storage.statement_repository import DEFAULT_LIST_LIMIT

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/bills/fetch")
def fetch_bills(services: Services = Depends(get_services)):
    """
    从邮箱拉取最近的账单邮件并入库

    未配置邮箱返回 400，IMAP 连接或登录失败返回 502（由全局异常处理器转换）。
    """
    summary = services.ingestor.run()
    return ok(summary.to_dict())


@router.get("/bills")
def list_bills(services: Services = Depends(get_services)):
    statements = services.statements.list_recent(DEFAULT_LIST_LIMIT)
    return ok([statement.to_dict() for statement in statements])
