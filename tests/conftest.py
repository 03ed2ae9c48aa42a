import json

import httpx
import pytest

from device import DeviceRecord, NodeDevice
from error_handler import ErrorHandler
from node_client import NodeClient
from registry import DeviceRegistry

BACKEND_URL = "http://backend.test/api"


class NodeSimulator:
    """Stand-in for the embedded HTTP server on every node."""

    def __init__(self):
        self.requests = []
        self.sensors = {"temp": 24.5, "gas": 12}
        self.sensor_status = 200
        self.raw_sensor_body = None
        self.offline = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("node unreachable", request=request)
        if request.url.path == "/sensors":
            if self.raw_sensor_body is not None:
                return httpx.Response(self.sensor_status, text=self.raw_sensor_body)
            return httpx.Response(self.sensor_status, json=self.sensors)
        return httpx.Response(200, text="OK")

    def commands(self):
        return [
            (r.url.host, r.url.path, dict(r.url.params))
            for r in self.requests if r.url.path != "/sensors"
        ]

    def sensor_reads(self):
        return sum(1 for r in self.requests if r.url.path == "/sensors")


class BackendSimulator:
    """Stand-in for the device registry backend."""

    def __init__(self, devices=None):
        self.devices = devices if devices is not None else [
            {"id": 1, "name": "Sala", "ip": "192.168.1.50", "location": "Planta Baja",
             "status": "0", "output_labels": ["Luz", "Ventilador", "Patio", "Aux"]},
        ]
        self.history = [{"device_id": 1, "action": "status", "value": "1"}]
        self.requests = []
        self.fail_status = None
        self.offline = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("backend unreachable", request=request)
        if self.fail_status:
            return httpx.Response(self.fail_status, json={"error": "boom"})

        path = request.url.path
        if request.method == "GET" and path == "/api/devices":
            return httpx.Response(200, json=self.devices)
        if request.method == "POST" and path == "/api/login":
            if json.loads(request.content).get("password") != "admin":
                return httpx.Response(401, json={"error": "bad credentials"})
            return httpx.Response(200, json={"token": "abc123"})
        if request.method == "GET" and path == "/api/history":
            return httpx.Response(200, json=self.history)
        if request.method == "GET" and path == "/api/users":
            return httpx.Response(200, json=[{"id": 1, "username": "admin", "role": "admin"}])
        if request.method == "POST" and path == "/api/devices":
            body = json.loads(request.content)
            return httpx.Response(201, json={**body, "id": 99})
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(200, json={"ok": True})

    def status_updates(self):
        return [
            (r.url.path, json.loads(r.content))
            for r in self.requests
            if r.method == "PUT" and r.url.path.endswith("/status")
        ]


@pytest.fixture
def node():
    return NodeSimulator()


@pytest.fixture
def backend():
    return BackendSimulator()


@pytest.fixture
def node_client(node):
    return NodeClient(client=httpx.AsyncClient(transport=httpx.MockTransport(node.handler)))


@pytest.fixture
def registry(backend):
    return DeviceRegistry(
        base_url=BACKEND_URL,
        client=httpx.AsyncClient(transport=httpx.MockTransport(backend.handler)),
    )


@pytest.fixture
def error_handler():
    return ErrorHandler()


@pytest.fixture
def record():
    return DeviceRecord.from_dict({
        "id": 1, "name": "Sala", "ip": "192.168.1.50", "status": "0",
        "output_labels": ["Luz", "Ventilador", "Patio", "Aux"],
    })


@pytest.fixture
def device(record, registry):
    registry.records[record.id] = record
    return NodeDevice(None, record)
