from __future__ import annotations

from typing import Any

from fastapi import HTTPException


class WorkflowError(HTTPException):
    """
    流程引擎错误基类。

    中文注释:
    - 继承 HTTPException：服务层直接抛出，路由层无需再转换；中间件按 `code` 输出 type 字段。
    - detail 必须足够让调用方修正输入（校验/鉴权类错误同步返回）。
    """

    status_code = 500
    code = "workflow_error"

    def __init__(self, detail: Any = None, *, status_code: int | None = None) -> None:
        super().__init__(status_code=status_code or self.status_code, detail=detail or self.code)


class Unauthorized(WorkflowError):
    status_code = 401
    code = "unauthorized"


class Forbidden(WorkflowError):
    status_code = 403
    code = "forbidden"


class NotFound(WorkflowError):
    status_code = 404
    code = "not_found"


class DraftNotFound(NotFound):
    code = "draft_not_found"


class ValidationError(WorkflowError):
    status_code = 422
    code = "validation_error"


class CapacityExceeded(WorkflowError):
    status_code = 409
    code = "capacity_exceeded"


class DuplicateAssignment(WorkflowError):
    status_code = 409
    code = "duplicate_assignment"


class InvalidTransition(WorkflowError):
    status_code = 409
    code = "invalid_transition"


class DependencyFailure(WorkflowError):
    """
    副作用（通知/审计/排队动作）失败。

    中文注释: 只在副作用执行器内部抛出，由 dispatcher 捕获并记日志，永远不作为主操作的失败返回。
    """

    status_code = 502
    code = "dependency_failure"


def is_unique_violation(err: Exception) -> bool:
    """
    判断 PostgREST 错误是否为唯一约束冲突（23505）。

    中文注释: postgrest APIError 在不同版本里字段不完全一致，这里同时看 code 与字符串兜底。
    """
    code = str(getattr(err, "code", "") or "").lower()
    if code == "23505":
        return True
    text = str(err).lower()
    return "23505" in text or "duplicate key" in text


def is_foreign_key_violation(err: Exception) -> bool:
    code = str(getattr(err, "code", "") or "").lower()
    if code == "23503":
        return True
    text = str(err).lower()
    return "23503" in text or "foreign key" in text
