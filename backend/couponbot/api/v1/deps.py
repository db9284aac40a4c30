"""
Request dependencies.

WHAT: Access to the runtime built during application startup
WHY: Endpoints stay thin and tests can swap the runtime on app.state
HOW: FastAPI dependency reading request.app.state.runtime
"""

from fastapi import Request

from ...core.container import Runtime


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime
