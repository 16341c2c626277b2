import logging

from fastapi import APIRouter, Depends

from cardbutler.adapters.base import MailAuthenticationError, MailDataSourceError
from cardbutler.api.dependencies import Services, get_services
from cardbutler.api.responses import ok
from cardbutler.api.schemas import EmailConfigRequest
from cardbutler.models.account import now_ts

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/email-config")
def get_email_config(services: Services = Depends(get_services)):
    """当前邮箱配置，从不返回授权码"""
    credentials = services.mail_config.find()
    return ok(credentials.public_view() if credentials else None)


@router.post("/email-config")
def save_email_config(request: EmailConfigRequest, services: Services = Depends(get_services)):
    credentials = services.mail_config.save(request.email, request.password, request.imapHost)
    return ok(credentials.public_view())


@router.post("/email-config/test")
def test_email_config(request: EmailConfigRequest, services: Services = Depends(get_services)):
    """用请求中的凭据临时连接并登录，不保存"""
    try:
        result = services.ingestor.test_connection(
            request.email, request.password, request.imapHost
        )
    except MailAuthenticationError as e:
        logger.warning("[✗] 邮箱登录测试失败: %s", e)
        return {"success": False, "error": "登录失败，请检查邮箱和授权码", "timestamp": now_ts()}
    except MailDataSourceError as e:
        logger.warning("[✗] 邮箱连接测试失败: %s", e)
        return {"success": False, "error": f"连接IMAP服务器失败: {e.message}", "timestamp": now_ts()}
    return ok({"message": result['message']})
