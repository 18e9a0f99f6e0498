"""
FastAPI Depends.

Сюда выносим:
- доступ к собранному Runtime (реестр очередей, продьюсер, health)
"""

from __future__ import annotations

from fastapi import Request

from clientflow_automation.runtime import Runtime, build_runtime


def get_runtime(request: Request) -> Runtime:
    """
    Runtime создаётся один раз на приложение и хранится в app.state.
    В тестах подменяется через app.dependency_overrides.
    """
    rt = getattr(request.app.state, "runtime", None)
    if rt is None:
        rt = build_runtime()
        request.app.state.runtime = rt
    return rt
