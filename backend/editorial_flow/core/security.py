from __future__ import annotations

from fastapi import Header

from editorial_flow.core.config import get_admin_api_key
from editorial_flow.core.errors import Unauthorized


async def require_admin_key(x_admin_key: str | None = Header(default=None, alias="X-Admin-Key")) -> None:
    """
    内部接口鉴权依赖

    中文注释:
    - 该 Key 不属于用户体系（不是 JWT），仅用于过期清扫 cron 与支付回调转发。
    - 若未配置 ADMIN_API_KEY，则直接拒绝，避免误开放“内部接口”。
    """

    expected = get_admin_api_key()
    if not expected:
        raise Unauthorized("Admin key not configured")
    if not x_admin_key or x_admin_key != expected:
        raise Unauthorized("Invalid admin key")
