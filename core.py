"""
Gateway Service Core
Owns the mounted devices, their telemetry loops, and the command path.
"""
import asyncio
import logging
from typing import Dict, Any, Optional, List

from device import NodeDevice
from dispatcher import CommandDispatcher
from resolver import CommandResolver, ResolveResult
from error_handler import (
    BackendError, DeviceNotFound, ErrorCategory, ErrorHandler, get_error_handler
)

logger = logging.getLogger("core")

DEFAULT_TELEMETRY_INTERVAL = 5


class PollHandle:
    """Cancellation handle for one device's telemetry loop."""

    def __init__(self, device_id: str):
        self.device_id = device_id
        self.task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        """Cancel the loop. Returns False if it was already cancelled."""
        if self._cancelled:
            return False
        self._cancelled = True
        if self.task and not self.task.done():
            self.task.cancel()
        return True


class TelemetryPoller:
    """
    Per-device sensor polling.
    One loop per mounted device, reading /sensors every `interval` seconds.
    """

    def __init__(self, node_client, interval: float = DEFAULT_TELEMETRY_INTERVAL,
                 error_handler: Optional[ErrorHandler] = None):
        self.node_client = node_client
        self.interval = interval
        self.error_handler = error_handler or get_error_handler()
        self._handles: Dict[str, PollHandle] = {}

    def start(self, device: NodeDevice) -> PollHandle:
        """Start polling a device. An existing loop for it is replaced."""
        existing = self._handles.get(device.id)
        if existing:
            self.stop(existing)

        handle = PollHandle(device.id)
        handle.task = asyncio.create_task(self._poll_device_loop(device, handle))
        self._handles[device.id] = handle
        logger.info(f"[{device.id}] Telemetry polling every {self.interval}s")
        return handle

    def stop(self, handle: PollHandle) -> bool:
        """Stop a polling loop. Safe to call more than once."""
        if self._handles.get(handle.device_id) is handle:
            del self._handles[handle.device_id]

        stopped = handle.cancel()
        if stopped:
            logger.info(f"[{handle.device_id}] Telemetry polling stopped")
        return stopped

    def stop_device(self, device_id: str) -> bool:
        handle = self._handles.get(device_id)
        if handle is None:
            return False
        return self.stop(handle)

    def stop_all(self) -> List[asyncio.Task]:
        """Stop all polling tasks and return the cancelled tasks."""
        tasks = []
        for handle in list(self._handles.values()):
            self.stop(handle)
            if handle.task is not None:
                tasks.append(handle.task)
        self._handles.clear()
        logger.info("Telemetry poller stopped")
        return tasks

    def is_polling(self, device_id: str) -> bool:
        return device_id in self._handles

    def get_handle(self, device_id: str) -> Optional[PollHandle]:
        return self._handles.get(device_id)

    async def poll_once(self, device: NodeDevice) -> bool:
        """
        Read the device's sensors once and merge what came back.
        Returns True if a reading was merged. Failures are swallowed.
        """
        readings = await self.error_handler.run_best_effort(
            self.node_client.read_sensors,
            device.ip,
            category=ErrorCategory.MALFORMED_TELEMETRY,
            context=f"{device.id} sensors",
        )
        if not readings:
            return False

        changed = device.merge_telemetry(readings)
        if changed:
            logger.debug(f"[{device.id}] Telemetry merged: {changed}")
        return True

    async def _poll_device_loop(self, device: NodeDevice, handle: PollHandle):
        """Polling loop for a single device."""
        while not handle.cancelled:
            try:
                await asyncio.sleep(self.interval)

                if handle.cancelled:
                    break

                await self.poll_once(device)

            except asyncio.CancelledError:
                break
            except Exception as e:
                # poll_once swallows I/O errors; anything here is a bug in a merge
                logger.error(f"[{device.id}] Polling error: {e}")


class DashboardService:
    """
    Core gateway service.
    Seeds mounted devices from the registry and routes UI and voice commands.
    """

    def __init__(self, registry, node_client, config: Optional[Dict[str, Any]] = None,
                 event_callback=None, error_handler: Optional[ErrorHandler] = None):
        config = config or {}
        self.registry = registry
        self.node_client = node_client
        self.callback = event_callback
        self.error_handler = error_handler or get_error_handler()

        telemetry_cfg = config.get("telemetry") or {}
        resolver_cfg = config.get("resolver") or {}

        self.devices: Dict[str, NodeDevice] = {}

        self.poller = TelemetryPoller(
            node_client,
            interval=telemetry_cfg.get("interval") or DEFAULT_TELEMETRY_INTERVAL,
            error_handler=self.error_handler,
        )
        self.dispatcher = CommandDispatcher(node_client, registry, error_handler=self.error_handler)
        self.resolver = CommandResolver(
            self.dispatcher,
            activate_words=resolver_cfg.get("activate_words"),
            deactivate_words=resolver_cfg.get("deactivate_words"),
            error_handler=self.error_handler,
        )

    async def start(self):
        """Load device records and mount every device."""
        try:
            await self.refresh_devices()
        except BackendError as e:
            logger.warning(f"Backend unavailable at startup, no devices mounted: {e}")

    async def stop(self):
        """Unmount everything and let in-flight commands finish."""
        tasks = self.poller.stop_all()
        for device_id in list(self.devices):
            self.unmount(device_id)
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.dispatcher.drain()
        logger.info("Dashboard service stopped")

    # =========================================================================
    # MOUNTING
    # =========================================================================

    async def refresh_devices(self) -> List[NodeDevice]:
        """
        Reload records from the registry and reconcile the mounted set:
        new records are mounted, vanished ones unmounted, and existing ones
        get the fresh record without touching their runtime state.
        """
        records = await self.registry.refresh()
        seen = set()

        for record in records:
            seen.add(record.id)
            if record.id in self.devices:
                # The poll loop reads device.ip on every tick
                self.devices[record.id].record = record
            else:
                self.mount(record.id)

        for device_id in list(self.devices):
            if device_id not in seen:
                self.unmount(device_id)

        return list(self.devices.values())

    def mount(self, device_id) -> NodeDevice:
        """Make a device visible: create its runtime state and start polling."""
        device_id = str(device_id)
        if device_id in self.devices:
            return self.devices[device_id]

        record = self.registry.get(device_id)
        if record is None:
            raise DeviceNotFound(f"Unknown device: {device_id}")

        device = NodeDevice(self, record)
        self.devices[device_id] = device
        self.poller.start(device)

        self._emit_sync("device_mounted", device.get_details())
        return device

    def unmount(self, device_id) -> bool:
        """Drop a device's runtime state and cancel its poller."""
        device_id = str(device_id)
        device = self.devices.pop(device_id, None)
        if device is None:
            return False

        self.poller.stop_device(device_id)
        logger.info(f"[{device_id}] Device unmounted")
        self._emit_sync("device_unmounted", {"id": device_id})
        return True

    async def add_device(self, data: Dict[str, Any]) -> NodeDevice:
        """Create the record on the backend and mount it."""
        record = await self.registry.create_device(data)
        return self.mount(record.id)

    async def update_device(self, device_id, data: Dict[str, Any]) -> NodeDevice:
        """
        Edit the record on the backend. A mounted device keeps its runtime
        state and picks up the new record; an unmounted one is mounted.
        """
        record = await self.registry.update_device(device_id, data)
        device = self.devices.get(record.id)
        if device is None:
            return self.mount(record.id)

        device.record = record
        self.handle_device_update(device, record.to_dict())
        return device

    async def remove_device(self, device_id) -> bool:
        """Delete the record on the backend and unmount the device."""
        await self.registry.delete_device(device_id)
        return self.unmount(device_id)

    def get_device(self, device_id) -> NodeDevice:
        device = self.devices.get(str(device_id))
        if device is None:
            raise DeviceNotFound(f"Device not mounted: {device_id}")
        return device

    # =========================================================================
    # COMMANDS
    # =========================================================================

    def dispatch(self, device_id, kind, channel: int, value) -> Dict[str, Any]:
        device = self.get_device(device_id)
        state = self.dispatcher.dispatch(device, kind, channel, value)
        return state.as_dict()

    def handle_voice(self, text: str) -> ResolveResult:
        result = self.resolver.resolve(text, list(self.devices.values()))
        self._emit_sync("voice_command", result.to_dict())
        return result

    async def poll_now(self, device_id) -> bool:
        device = self.get_device(device_id)
        return await self.poller.poll_once(device)

    # =========================================================================
    # EVENT EMISSION HELPERS
    # =========================================================================

    def _emit_sync(self, evt, data):
        """Emit event without waiting for delivery."""
        if self.callback:
            asyncio.create_task(self.callback(evt, data))

    def handle_device_update(self, device: NodeDevice, changed: Dict[str, Any]):
        """Called by NodeDevice when its runtime state changes."""
        self._emit_sync("device_updated", {
            "id": device.id,
            "data": changed,
            "state": device.state.as_dict(),
        })

    # =========================================================================
    # API METHODS
    # =========================================================================

    def get_device_list(self) -> List[Dict[str, Any]]:
        """Mounted devices with record fields and runtime state."""
        res = []
        for device_id, device in self.devices.items():
            details = device.get_details()
            details["polling"] = self.poller.is_polling(device_id)
            res.append(details)
        return res
