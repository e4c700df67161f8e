import os
from typing import Any, Callable, Optional

from supabase import Client, create_client

from editorial_flow.core.config import app_config

# 中文注释: anon key 只用于 Auth API 校验 token；流程引擎的读写统一走 service_role。
_ANON_ENV_KEYS = ("SUPABASE_ANON_KEY", "SUPABASE_KEY")


def _anon_key() -> str:
    for name in _ANON_ENV_KEYS:
        value = (os.environ.get(name) or "").strip()
        if value:
            return value
    return ""


def _credentials(role: str) -> tuple[str, str]:
    if not app_config.supabase_url:
        raise RuntimeError("SUPABASE_URL is required")
    if role == "service":
        secret = app_config.supabase_key or _anon_key()
        missing = "SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_KEY) is required"
    else:
        secret = _anon_key()
        missing = "SUPABASE_ANON_KEY or SUPABASE_KEY is required"
    if not secret:
        raise RuntimeError(missing)
    return app_config.supabase_url, secret


class _LazySupabaseClient:
    """
    首次访问属性时才创建 Supabase Client。

    中文注释: 缺少环境变量时 import 不报错；测试会整体替换 client，运行时第一次调用才给出明确异常。
    """

    def __init__(self, factory: Callable[[], Client], *, name: str):
        self._factory = factory
        self._name = name
        self._client: Optional[Client] = None

    def __getattr__(self, item: str) -> Any:
        if self._client is None:
            self._client = self._factory()
        return getattr(self._client, item)

    def __repr__(self) -> str:
        return f"<_LazySupabaseClient {self._name} ({'ready' if self._client is not None else 'pending'})>"


def _factory_for(role: str) -> Callable[[], Client]:
    def _create() -> Client:
        return create_client(*_credentials(role))

    return _create


# Auth 校验
supabase: Client = _LazySupabaseClient(_factory_for("anon"), name="supabase")  # type: ignore[assignment]

# 流程引擎读写
supabase_admin: Client = _LazySupabaseClient(_factory_for("service"), name="supabase_admin")  # type: ignore[assignment]
