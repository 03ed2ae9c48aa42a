"""
Dashboard API - FastAPI routes for device control, telemetry, voice commands
and the backend session, user and history surface.
"""

import logging
from typing import Any, Callable, List, Optional, Union

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from error_handler import BackendError, DeviceNotFound, InvalidCommand
from json_helpers import prepare_for_json
from settings_store import normalize_server_url

logger = logging.getLogger(__name__)


# ============================================================================
# MODELS
# ============================================================================

class ChannelCommandRequest(BaseModel):
    channel: int = Field(..., description="Output index (digital 0-3, pwm 0-1)")
    value: Union[int, str] = Field(..., description="Bit for digital, 0-255 for pwm")


class VoiceCommandRequest(BaseModel):
    text: str


class ServerUrlRequest(BaseModel):
    url: str


class LoginRequest(BaseModel):
    username: str
    password: str


class DeviceCreateRequest(BaseModel):
    name: str
    ip: str
    location: Optional[str] = None
    output_labels: Optional[List[str]] = None


class DeviceUpdateRequest(BaseModel):
    name: Optional[str] = None
    ip: Optional[str] = None
    location: Optional[str] = None
    output_labels: Optional[List[str]] = None


class UserRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None


# ============================================================================
# REGISTRATION
# ============================================================================

def register_dashboard_routes(app: FastAPI,
                              service_getter: Union[Any, Callable[[], Any]],
                              settings_store=None):
    def get_service():
        svc = service_getter() if callable(service_getter) else service_getter
        if svc is None:
            raise HTTPException(503, "Service not initialised")
        return svc

    def get_device_or_404(svc, device_id: str):
        try:
            return svc.get_device(device_id)
        except DeviceNotFound as e:
            raise HTTPException(404, str(e))

    def send(device_id: str, kind: str, request: ChannelCommandRequest):
        svc = get_service()
        get_device_or_404(svc, device_id)
        try:
            state = svc.dispatch(device_id, kind, request.channel, request.value)
        except InvalidCommand as e:
            raise HTTPException(400, str(e))
        return {"success": True, "id": device_id, "state": state}

    def backend_failure(e: BackendError, action: str) -> HTTPException:
        logger.warning(f"{action} failed: {e}")
        # Backend 4xx answers are passed through, everything else is a bad gateway
        if e.status_code is not None and 400 <= e.status_code < 500:
            return HTTPException(e.status_code, str(e))
        return HTTPException(502, str(e))

    # --- Devices ---

    @app.get("/api/devices", tags=["devices"])
    async def list_devices():
        return prepare_for_json(get_service().get_device_list())

    @app.post("/api/devices/refresh", tags=["devices"])
    async def refresh_devices():
        svc = get_service()
        try:
            await svc.refresh_devices()
        except BackendError as e:
            raise backend_failure(e, "Device refresh")
        return prepare_for_json(svc.get_device_list())

    @app.post("/api/devices", tags=["devices"])
    async def create_device(request: DeviceCreateRequest):
        svc = get_service()
        data = {k: v for k, v in request.model_dump().items() if v is not None}
        try:
            device = await svc.add_device(data)
        except BackendError as e:
            raise backend_failure(e, "Device create")
        return prepare_for_json(device.get_details())

    @app.get("/api/devices/{device_id}", tags=["devices"])
    async def get_device(device_id: str):
        device = get_device_or_404(get_service(), device_id)
        return prepare_for_json(device.get_details())

    @app.put("/api/devices/{device_id}", tags=["devices"])
    async def update_device(device_id: str, request: DeviceUpdateRequest):
        svc = get_service()
        updates = {k: v for k, v in request.model_dump().items() if v is not None}
        try:
            device = await svc.update_device(device_id, updates)
        except BackendError as e:
            raise backend_failure(e, f"Device {device_id} update")
        return prepare_for_json(device.get_details())

    @app.delete("/api/devices/{device_id}", tags=["devices"])
    async def delete_device(device_id: str):
        try:
            await get_service().remove_device(device_id)
        except BackendError as e:
            raise backend_failure(e, f"Device {device_id} delete")
        return {"success": True, "id": device_id}

    @app.post("/api/devices/{device_id}/mount", tags=["devices"])
    async def mount_device(device_id: str):
        svc = get_service()
        try:
            device = svc.mount(device_id)
        except DeviceNotFound as e:
            raise HTTPException(404, str(e))
        return prepare_for_json(device.get_details())

    @app.delete("/api/devices/{device_id}/mount", tags=["devices"])
    async def unmount_device(device_id: str):
        if not get_service().unmount(device_id):
            raise HTTPException(404, f"Device not mounted: {device_id}")
        return {"success": True, "id": device_id}

    # --- Commands ---

    @app.post("/api/devices/{device_id}/digital", tags=["commands"])
    async def set_digital(device_id: str, request: ChannelCommandRequest):
        return send(device_id, "digital", request)

    @app.post("/api/devices/{device_id}/pwm", tags=["commands"])
    async def set_pwm(device_id: str, request: ChannelCommandRequest):
        return send(device_id, "pwm", request)

    @app.post("/api/devices/{device_id}/telemetry", tags=["commands"])
    async def poll_device(device_id: str):
        svc = get_service()
        device = get_device_or_404(svc, device_id)
        merged = await svc.poll_now(device_id)
        return {"success": merged, "id": device_id, "state": device.state.as_dict()}

    @app.post("/api/voice", tags=["commands"])
    async def voice_command(request: VoiceCommandRequest):
        result = get_service().handle_voice(request.text)
        return result.to_dict()

    # --- Session / users / history ---

    @app.post("/api/login", tags=["session"])
    async def login(request: LoginRequest):
        svc = get_service()
        try:
            token = await svc.registry.login(request.username, request.password)
        except BackendError as e:
            raise backend_failure(e, f"Login for {request.username}")
        if not token:
            raise HTTPException(401, "Backend returned no session token")
        if settings_store is not None:
            settings_store.set_session_token(token)
        logger.info(f"Logged in as {request.username}")
        return {"success": True, "username": request.username}

    @app.post("/api/logout", tags=["session"])
    async def logout():
        get_service().registry.token = None
        if settings_store is not None:
            settings_store.set_session_token(None)
        return {"success": True}

    @app.get("/api/history", tags=["session"])
    async def history():
        try:
            return await get_service().registry.get_history()
        except BackendError as e:
            raise backend_failure(e, "History fetch")

    @app.get("/api/users", tags=["users"])
    async def list_users():
        try:
            return await get_service().registry.list_users()
        except BackendError as e:
            raise backend_failure(e, "User list")

    @app.post("/api/users", tags=["users"])
    async def create_user(request: UserRequest):
        data = {k: v for k, v in request.model_dump().items() if v is not None}
        try:
            return await get_service().registry.create_user(data)
        except BackendError as e:
            raise backend_failure(e, "User create")

    @app.put("/api/users/{user_id}", tags=["users"])
    async def update_user(user_id: str, request: UserRequest):
        updates = {k: v for k, v in request.model_dump().items() if v is not None}
        try:
            return await get_service().registry.update_user(user_id, updates)
        except BackendError as e:
            raise backend_failure(e, f"User {user_id} update")

    @app.delete("/api/users/{user_id}", tags=["users"])
    async def delete_user(user_id: str):
        try:
            await get_service().registry.delete_user(user_id)
        except BackendError as e:
            raise backend_failure(e, f"User {user_id} delete")
        return {"success": True, "id": user_id}

    # --- Settings / diagnostics ---

    @app.get("/api/settings/server", tags=["settings"])
    async def get_server_url():
        return {"url": get_service().registry.base_url}

    @app.post("/api/settings/server", tags=["settings"])
    async def set_server_url(request: ServerUrlRequest):
        svc = get_service()
        if settings_store is not None:
            url = settings_store.set_server_url(request.url)
        else:
            url = normalize_server_url(request.url)
        svc.registry.base_url = url
        return {"success": True, "url": url}

    @app.get("/api/errors", tags=["diagnostics"])
    async def error_stats():
        return get_service().error_handler.get_stats()

    logger.info("Dashboard API routes registered")
