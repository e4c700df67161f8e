from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["author", "reviewer", "editor", "admin"]


class Identity(BaseModel):
    """
    调用方身份（显式传入每个引擎入口，不依赖全局会话）。
    """

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_editor(self) -> bool:
        return self.role in {"editor", "admin"}
