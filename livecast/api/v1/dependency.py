from typing import Annotated

from fastapi import Depends, Request, WebSocket

from livecast.domain.captioning.registry import SessionRegistry
from livecast.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


def _registry_from_state(state) -> SessionRegistry:
    registry = getattr(state, "session_registry", None)
    if registry is None:
        raise AppError(
            errcode=AppErrorCode.E_INTERNAL_ERROR,
            errmesg="Session registry is not initialized",
            status_code=HttpStatusCode.SERVICE_UNAVAILABLE,
        )
    return registry


def get_session_registry(request: Request) -> SessionRegistry:
    return _registry_from_state(request.app.state)


def get_ws_session_registry(websocket: WebSocket) -> SessionRegistry:
    return _registry_from_state(websocket.app.state)


Registry = Annotated[SessionRegistry, Depends(get_session_registry)]
WsRegistry = Annotated[SessionRegistry, Depends(get_ws_session_registry)]
