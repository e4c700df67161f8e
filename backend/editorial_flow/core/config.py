import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    return lowered in {"1", "true", "yes", "y", "on"}


def _env_int(key: str, default: int, *, min_value: int = 0) -> int:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(min_value, value)


def _env_float(key: str, default: float) -> float:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class AppConfig:
    """
    运行环境配置
    """
    env: str  # 'development', 'staging', 'production'
    is_staging: bool
    supabase_url: str
    supabase_key: str

    @staticmethod
    def from_env() -> "AppConfig":
        env = (os.environ.get("APP_ENV") or "development").strip().lower()
        supabase_url = (os.environ.get("SUPABASE_URL") or "").strip()
        supabase_key = (os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or "").strip()

        return AppConfig(
            env=env,
            is_staging=env == "staging",
            supabase_url=supabase_url,
            supabase_key=supabase_key,
        )


# Global Config Instance
app_config = AppConfig.from_env()


@dataclass(frozen=True)
class WorkflowConfig:
    """
    编辑流程引擎的策略参数

    中文注释:
    1) 修回轮次上限必须显式可配；0 表示不限制（与历史行为一致）。
    2) 负载/可用性估算用到的缓冲天数同样集中在这里，避免散落为魔法数字。
    """

    max_revision_rounds: int
    default_turnaround_days: int
    default_max_reviews_per_month: int
    expiry_grace_days: int
    next_available_buffer_days: int
    leave_fallback_days: int
    metrics_window_days: int

    @property
    def revision_rounds_bounded(self) -> bool:
        return self.max_revision_rounds > 0

    @staticmethod
    def from_env() -> "WorkflowConfig":
        return WorkflowConfig(
            max_revision_rounds=_env_int("WORKFLOW_MAX_REVISION_ROUNDS", 3),
            default_turnaround_days=_env_int("REVIEW_DEFAULT_TURNAROUND_DAYS", 21, min_value=1),
            default_max_reviews_per_month=_env_int("REVIEW_DEFAULT_MAX_PER_MONTH", 3, min_value=1),
            expiry_grace_days=_env_int("REVIEW_EXPIRY_GRACE_DAYS", 7),
            next_available_buffer_days=_env_int("REVIEWER_NEXT_AVAILABLE_BUFFER_DAYS", 7),
            leave_fallback_days=_env_int("REVIEWER_LEAVE_FALLBACK_DAYS", 30, min_value=1),
            metrics_window_days=_env_int("REVIEWER_METRICS_WINDOW_DAYS", 183, min_value=1),
        )


@dataclass(frozen=True)
class SentryConfig:
    """
    Sentry 配置（默认关闭）
    """

    enabled: bool
    dsn: Optional[str]
    environment: str
    traces_sample_rate: float

    @staticmethod
    def from_env() -> "SentryConfig":
        dsn = (os.environ.get("SENTRY_DSN") or "").strip() or None
        enabled = _env_bool("SENTRY_ENABLED", bool(dsn))
        environment = (
            os.environ.get("SENTRY_ENVIRONMENT") or os.environ.get("APP_ENV") or "development"
        ).strip()
        rate = _env_float("SENTRY_TRACES_SAMPLE_RATE", 0.0)
        rate = min(1.0, max(0.0, rate))
        return SentryConfig(enabled=enabled, dsn=dsn, environment=environment, traces_sample_rate=rate)


def get_admin_api_key() -> Optional[str]:
    """
    内部接口鉴权 Key

    中文注释:
    - 仅用于 `/api/v1/internal/*`（过期清扫 cron、支付回调转发），不对公网用户开放。
    """

    raw = os.environ.get("ADMIN_API_KEY")
    return raw.strip() if raw else None
