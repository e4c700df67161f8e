from typing import Any

from editorial_flow.core.config import SentryConfig

_SENSITIVE_KEYS = {
    "password",
    "access_token",
    "refresh_token",
    "token",
    "jwt",
    "authorization",
    "cookie",
    "set-cookie",
    "x-admin-key",
    "supabase_key",
    "service_role_key",
    "payment_reference",
}

# 中文注释: 审稿意见/决策信正文属于保密内容，不应出现在错误上报中
_CONFIDENTIAL_KEYS = {
    "form_data",
    "confidential_comments",
    "internal_notes",
    "decision_letter",
    "author_letter",
    "components",
}

_REDACTED_KEYS = _SENSITIVE_KEYS | _CONFIDENTIAL_KEYS
_FILTERED = "[Filtered]"


def _scrub(value: Any) -> Any:
    """递归清洗 extra/contexts：敏感字段、审稿保密字段、超长文本一律替换。"""
    if isinstance(value, dict):
        return {
            str(k): (_FILTERED if str(k).strip().lower() in _REDACTED_KEYS else _scrub(v))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_scrub(v) for v in value]
    if isinstance(value, str) and len(value) > 5000:
        return _FILTERED
    return value


def _scrub_request(request: dict[str, Any]) -> dict[str, Any]:
    # 中文注释: 请求体整体不上报，header 只去掉凭证类字段
    headers = request.get("headers")
    if isinstance(headers, dict):
        request["headers"] = {k: v for k, v in headers.items() if str(k).strip().lower() not in _SENSITIVE_KEYS}
    for field in ("cookies", "data", "body"):
        if field in request:
            request[field] = _FILTERED
    return request


def _before_send(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    if isinstance(event.get("request"), dict):
        event["request"] = _scrub_request(event["request"])
    for section in ("extra", "contexts"):
        if isinstance(event.get(section), dict):
            event[section] = _scrub(event[section])
    return event


def init_sentry() -> bool:
    """未配置 DSN 或显式关闭时返回 False；初始化异常由 main.py 捕获，不阻塞启动。"""
    cfg = SentryConfig.from_env()
    if not cfg.enabled or not cfg.dsn:
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=cfg.dsn,
        environment=cfg.environment,
        traces_sample_rate=cfg.traces_sample_rate,
        integrations=[FastApiIntegration()],
        send_default_pii=False,
        max_request_body_size="never",
        before_send=_before_send,
    )
    return True
