import logging
import os

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from editorial_flow.core.errors import Unauthorized
from editorial_flow.lib.api_client import supabase

logger = logging.getLogger("editorialflow.auth")

# === Auth 核心配置 ===
# 中文注释:
# 1. 密钥来源于 Supabase Project Settings 中的 JWT Secret。
# 2. 我们使用 HTTPBearer 作为验证头；缺失头部时统一返回 401 而不是 403。
SUPABASE_JWT_SECRET = os.environ.get("SUPABASE_JWT_SECRET", "mock-secret-replace-later")
ALGORITHM = "HS256"

security = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict:
    """
    解码并验证 Supabase JWT Token，返回 {"id", "email"}。
    """
    try:
        # 中文注释:
        # 1. Supabase 新版可能使用 JWT Signing Keys（非 HS256），需要走 Auth API 获取用户。
        # 2. 若仍为 HS256，则用本地密钥校验以减少外部请求。
        header = jwt.get_unverified_header(token)
        if header.get("alg") == ALGORITHM and SUPABASE_JWT_SECRET:
            payload = jwt.decode(token, SUPABASE_JWT_SECRET, algorithms=[ALGORITHM], audience="authenticated")
            user_id = payload.get("sub")
            if user_id is None:
                raise Unauthorized("Invalid identity payload")
            return {"id": str(user_id), "email": payload.get("email")}
    except JWTError as e:
        logger.info("JWT verification failed: %s", e)
        raise Unauthorized("Token invalid or expired") from e

    # fallback: 通过 Supabase Auth API 校验并获取用户信息
    try:
        response = supabase.auth.get_user(token)
        user = response.user if response else None
    except Exception as e:
        # 中文注释: 若 Supabase 配置缺失/网络异常，不应返回 500 泄露内部错误，统一视为鉴权失败
        logger.warning("JWT fallback verification failed: %s", e)
        raise Unauthorized("Token invalid or expired") from e

    if not user:
        raise Unauthorized("Invalid identity payload")
    return {"id": str(user.id), "email": user.email}


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Missing bearer token")
    return decode_token(credentials.credentials)
