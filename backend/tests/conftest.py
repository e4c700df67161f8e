import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from editorial_flow.core.config import WorkflowConfig
from editorial_flow.models.user import Identity
from fake_supabase import FakeSupabase
from main import app

# === 全局测试配置 ===
# 中文注释:
# 1. 显式使用 pytest_asyncio.fixture 解决 STRICT 模式下的生成器问题。
# 2. 服务层统一注入内存版 FakeSupabase，不依赖真实数据库。
# 3. JWT 令牌生成用于 HTTP 层认证测试。

API_PREFIX = "/api/v1"

AUTHOR_ID = "00000000-0000-0000-0000-0000000000a1"
OTHER_AUTHOR_ID = "00000000-0000-0000-0000-0000000000a2"
EDITOR_ID = "00000000-0000-0000-0000-0000000000e1"
OTHER_EDITOR_ID = "00000000-0000-0000-0000-0000000000e2"
REVIEWER_ID = "00000000-0000-0000-0000-0000000000b1"
REVIEWER_2_ID = "00000000-0000-0000-0000-0000000000b2"
ADMIN_ID = "00000000-0000-0000-0000-0000000000ad"


def auth_headers(token: str | None = None) -> dict[str, str]:
    if not token:
        return {}
    return {"Authorization": f"Bearer {token}"}


def generate_test_token(user_id: str = AUTHOR_ID, *, expires_in: timedelta = timedelta(hours=1)) -> str:
    """
    生成用于测试的 JWT 令牌（HS256 + SUPABASE_JWT_SECRET）。
    """
    secret = os.environ.get("SUPABASE_JWT_SECRET", "mock-secret-replace-later")
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": "test@example.com",
        "aud": "authenticated",
        "exp": now + expires_in,
        "iat": now,
        "role": "authenticated",
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest_asyncio.fixture
async def client() -> AsyncGenerator:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def workflow_config() -> WorkflowConfig:
    return WorkflowConfig(
        max_revision_rounds=3,
        default_turnaround_days=21,
        default_max_reviews_per_month=3,
        expiry_grace_days=7,
        next_available_buffer_days=7,
        leave_fallback_days=30,
        metrics_window_days=183,
    )


@pytest.fixture
def author() -> Identity:
    return Identity(user_id=AUTHOR_ID, role="author")


@pytest.fixture
def editor() -> Identity:
    return Identity(user_id=EDITOR_ID, role="editor")


@pytest.fixture
def other_editor() -> Identity:
    return Identity(user_id=OTHER_EDITOR_ID, role="editor")


@pytest.fixture
def reviewer() -> Identity:
    return Identity(user_id=REVIEWER_ID, role="reviewer")


@pytest.fixture
def admin() -> Identity:
    return Identity(user_id=ADMIN_ID, role="admin")


def make_manuscript(db: FakeSupabase, **overrides) -> dict:
    now = datetime.now(timezone.utc)
    row = {
        "id": str(uuid.uuid4()),
        "submission_number": "CJ-2026-ABC123",
        "title": "Deep Learning for Protein Folding",
        "abstract": "An abstract.",
        "keywords": ["proteins"],
        "field_of_study": "biology",
        "status": "with_editor",
        "editor_id": EDITOR_ID,
        "author_id": AUTHOR_ID,
        "priority": "normal",
        "revision_round": 0,
        "has_main_file": True,
        "created_at": (now - timedelta(days=10)).isoformat(),
        "updated_at": now.isoformat(),
        "submitted_at": (now - timedelta(days=10)).isoformat(),
    }
    row.update(overrides)
    return db.seed("manuscripts", row)[0]


def make_assignment(db: FakeSupabase, manuscript_id: str, reviewer_id: str = REVIEWER_ID, **overrides) -> dict:
    now = datetime.now(timezone.utc)
    row = {
        "id": str(uuid.uuid4()),
        "manuscript_id": manuscript_id,
        "reviewer_id": reviewer_id,
        "assigned_by": EDITOR_ID,
        "status": "invited",
        "invited_at": (now - timedelta(days=2)).isoformat(),
        "due_date": (now + timedelta(days=19)).isoformat(),
        "reminder_count": 0,
    }
    row.update(overrides)
    return db.seed("review_assignments", row)[0]
