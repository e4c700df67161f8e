import logging

from fastapi import Depends

from editorial_flow.core.auth_utils import get_current_user
from editorial_flow.core.errors import Forbidden, Unauthorized
from editorial_flow.lib.api_client import supabase_admin
from editorial_flow.models.user import Identity

logger = logging.getLogger("editorialflow.auth")

_KNOWN_ROLES = {"author", "reviewer", "editor", "admin"}


async def get_current_identity(current_user: dict = Depends(get_current_user)) -> Identity:
    """
    由 token 身份 + profiles.role 组装 Identity。

    中文注释:
    1) 角色以 profiles 表为准；没有 profile 的用户按 author 处理（首次注册场景）。
    2) 未知角色直接拒绝，不做“降级为 author”的静默纠正。
    """
    user_id = str(current_user.get("id") or "")
    if not user_id:
        raise Unauthorized("Invalid identity payload")

    try:
        resp = supabase_admin.table("profiles").select("id,role").eq("id", user_id).limit(1).execute()
        rows = getattr(resp, "data", None) or []
    except Exception as e:
        # 中文注释: 与 token 校验失败一致按 401 处理，身份无法确认时不放行
        logger.error("[Auth] profile lookup failed: %s", e)
        raise Unauthorized("Unable to resolve identity") from e

    role = str((rows[0] if rows else {}).get("role") or "author").strip().lower()
    if role not in _KNOWN_ROLES:
        raise Forbidden(f"Unknown role: {role}")
    return Identity(user_id=user_id, role=role)
