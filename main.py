"""
MiCasa Gateway - Main Application
FastAPI-based web server for household node control.
"""
import uvicorn
import os
import logging
from logging.handlers import RotatingFileHandler, QueueHandler, QueueListener
import queue
from contextlib import asynccontextmanager
from pathlib import Path
from fastapi import FastAPI, WebSocket, WebSocketDisconnect


# Import services
from core import DashboardService
from node_client import NodeClient
from registry import DeviceRegistry, DEFAULT_SERVER_URL
from settings_store import get_settings_store
from dashboard_api import register_dashboard_routes
from json_helpers import safe_json_dumps
from yaml_loader import load_yaml_config, get_section

CONFIG_PATH = Path("./config/config.yaml")


# ============================================================================
# CONFIGURATION
# ============================================================================

def load_config():
    """Load configuration from config.yaml, empty when the file is missing."""
    if not CONFIG_PATH.exists():
        return {}
    return load_yaml_config(CONFIG_PATH)


CONFIG = load_config()


def get_conf(section, key, default=None):
    """Get configuration value."""
    return get_section(CONFIG, section).get(key, default)


# ============================================================================
# LOGGING CONFIGURATION (NON-BLOCKING)
# ============================================================================

os.makedirs("logs", exist_ok=True)

# 1. Create a queue for logs
log_queue = queue.Queue(-1)  # Unlimited size

# 2. Setup the actual handlers (File & Console)
file_handler = RotatingFileHandler('logs/micasa.log', maxBytes=1024*1024, backupCount=3)
console_handler = logging.StreamHandler()

formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s')
file_handler.setFormatter(formatter)
console_handler.setFormatter(formatter)

# 3. Create the Listener (Runs in a separate thread)
log_listener = QueueListener(log_queue, file_handler, console_handler)

# 4. Configure the root logger to write to the Queue (Instant)
root_logger = logging.getLogger()
root_logger.setLevel(str(get_conf('logging', 'level', 'INFO')).upper())

# Remove default handlers to avoid duplication
root_logger.handlers = []
root_logger.addHandler(QueueHandler(log_queue))

# httpx logs every request at INFO; nodes are polled every few seconds
logging.getLogger('httpx').setLevel(logging.WARNING)

logger = logging.getLogger('main')


# ============================================================================
# WEBSOCKET CONNECTION MANAGER
# ============================================================================

class ConnectionManager:
    """Manages WebSocket connections for real-time updates."""

    def __init__(self):
        self.active_connections = []

    async def connect(self, ws: WebSocket):
        await ws.accept()
        self.active_connections.append(ws)
        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")

    def disconnect(self, ws: WebSocket):
        if ws in self.active_connections:
            self.active_connections.remove(ws)
        logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    async def broadcast(self, message: dict):
        """Broadcast message to all connected clients with safe JSON serialization."""
        if not self.active_connections:
            return

        json_msg = safe_json_dumps(message)

        disconnected = []

        for connection in self.active_connections:
            try:
                await connection.send_text(json_msg)
            except Exception:
                disconnected.append(connection)

        for ws in disconnected:
            self.disconnect(ws)


manager = ConnectionManager()


async def broadcast_event(event_type: str, data: dict):
    """Helper to broadcast events via WebSocket."""
    await manager.broadcast({"type": event_type, "payload": data})


# ============================================================================
# SERVICES INITIALIZATION
# ============================================================================

settings_store = get_settings_store(get_conf('settings', 'path', 'settings.json'))

registry = DeviceRegistry(
    base_url=settings_store.server_url or get_conf('backend', 'server_url', DEFAULT_SERVER_URL),
    token=settings_store.session_token,
    timeout=get_conf('backend', 'timeout'),
)

node_client = NodeClient(timeout=get_conf('node', 'timeout'))

dashboard_service = DashboardService(
    registry=registry,
    node_client=node_client,
    config=CONFIG,
    event_callback=broadcast_event,
)


# ============================================================================
# APPLICATION LIFECYCLE
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown handling."""
    log_listener.start()
    logger.info(f"Starting MiCasa Gateway (backend: {registry.base_url})...")

    await dashboard_service.start()
    logger.info(f"{len(dashboard_service.devices)} device(s) mounted")

    yield  # Application runs here

    logger.info("Shutting down MiCasa Gateway...")
    await dashboard_service.stop()
    await node_client.close()
    await registry.close()

    log_listener.stop()


# ============================================================================
# FASTAPI APPLICATION
# ============================================================================

app = FastAPI(
    title="MiCasa Gateway",
    description="Household node control: outputs, dimmers, sensors and voice commands",
    version="1.0.0",
    lifespan=lifespan
)

register_dashboard_routes(app, lambda: dashboard_service, settings_store=settings_store)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Push device and voice events; the initial message is the device list."""
    await manager.connect(websocket)
    try:
        await websocket.send_text(safe_json_dumps({
            "type": "devices",
            "payload": dashboard_service.get_device_list(),
        }))
        while True:
            # Clients only listen; incoming text keeps the socket alive
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)


if __name__ == "__main__":
    uvicorn.run(
        app,
        host=get_conf('web', 'host', '0.0.0.0'),
        port=int(get_conf('web', 'port', 8000)),
        log_config=None,
    )
