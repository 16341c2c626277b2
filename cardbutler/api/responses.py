from typing import Any, Dict

from fastapi.responses import JSONResponse

from cardbutler.models.account import now_ts


def ok(data: Any = None) -> Dict[str, Any]:
    """统一的成功响应"""
    return {"success": True, "data": data, "timestamp": now_ts()}


def fail(status_code: int, message: str) -> JSONResponse:
    """统一的错误响应"""
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})
