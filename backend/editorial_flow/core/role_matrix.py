from __future__ import annotations

from typing import Iterable

from editorial_flow.core.errors import Forbidden, Unauthorized
from editorial_flow.models.user import Identity

# 中文注释：
# - 这里集中定义“角色 -> 动作”权限矩阵，避免权限逻辑散落在各服务入口。
# - 资源归属（是否为该稿件的作者/受邀审稿人/负责编辑）由各服务在此基础上再校验。

ADMIN_ROLE = "admin"

ROLE_ACTIONS: dict[str, set[str]] = {
    "author": {
        "manuscript:create",
        "manuscript:resubmit",
        "decision:view_history",
    },
    "reviewer": {
        "assignment:respond",
        "review:write",
        "review:assist",
        "reviewer:update_settings",
        "reviewer:view_availability",
    },
    "editor": {
        "manuscript:assign_editor",
        "manuscript:publish",
        "queue:view",
        "assignment:invite",
        "assignment:remind",
        "assignment:view",
        "reviewer:view_availability",
        "reviewer:rank_candidates",
        "review:assist",
        "review:flag",
        "review:view_quality",
        "decision:process",
        "decision:view_history",
        "decision:view_drafts",
    },
    ADMIN_ROLE: {
        "*",
    },
}


def normalize_roles(roles: Iterable[str] | None) -> set[str]:
    """
    将输入角色归一化（小写、去空）。
    """
    out: set[str] = set()
    for raw in roles or []:
        role = str(raw or "").strip().lower()
        if not role:
            continue
        out.add(role)
    return out


def can_perform_action(*, action: str, roles: Iterable[str] | None) -> bool:
    """
    判定角色集合是否可执行某动作。

    中文注释：
    - admin 拥有全局通配权限；
    - 其余角色按 ROLE_ACTIONS 显式授权。
    """
    normalized = normalize_roles(roles)
    if ADMIN_ROLE in normalized:
        return True

    for role in normalized:
        allowed = ROLE_ACTIONS.get(role) or set()
        if "*" in allowed or action in allowed:
            return True
    return False


def require_action(identity: Identity | None, action: str) -> Identity:
    """
    引擎入口统一鉴权：无身份 -> Unauthorized；角色不允许 -> Forbidden。
    """
    if identity is None or not identity.user_id:
        raise Unauthorized("Missing caller identity")
    if not can_perform_action(action=action, roles=[identity.role]):
        raise Forbidden(f"Role '{identity.role}' may not perform '{action}'")
    return identity
