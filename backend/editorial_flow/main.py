"""
兼容入口：部分工具会使用 `editorial_flow.main:app` 作为 ASGI 入口。

真实 FastAPI 实例定义在 `backend/main.py`（模块名为 `main`）中，这里仅做转发。
"""

from main import app

__all__ = ["app"]
