import logging
import time

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from editorial_flow.core.errors import WorkflowError

# === 结构化日志配置 ===
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("editorialflow")


def _error_body(exc: HTTPException) -> dict:
    code = exc.code if isinstance(exc, WorkflowError) else "http_exception"
    return {"detail": exc.detail, "type": code}


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    """
    路由内抛出的流程错误统一渲染为 {"detail", "type"}。
    """
    if exc.status_code >= 500:
        logger.warning("Method: %s Path: %s Error: %s %s", request.method, request.url.path, exc.code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc))


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """
    统一异常捕获中间件：访问日志 + 兜底 500。
    """
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
            process_time = time.time() - start_time
            logger.info(
                "Method: %s Path: %s Status: %s Time: %.4fs",
                request.method,
                request.url.path,
                response.status_code,
                process_time,
            )
            return response
        except HTTPException as exc:
            return JSONResponse(status_code=exc.status_code, content=_error_body(exc))
        except Exception as e:
            logger.error("Unhandled Exception: %s", e, exc_info=True)
            return JSONResponse(
                status_code=500,
                content={"detail": "内部系统错误，请联系管理员", "type": "server_error"},
            )
