"""
Command Dispatcher
==================
Turns a (device, channel kind, channel, value) intent into:

1. an immediate optimistic update of the device's runtime state,
2. a fire-and-forget request to the node's own HTTP server,
3. for the primary output only, a status update on the cached record and
   one background request persisting it on the backend.

Background requests are never awaited by the caller and never retried.
Their failures are counted and dropped; the optimistic state stands.
"""
import asyncio
import logging
from typing import Set, Optional

from device import NodeDevice, DeviceRuntimeState, ChannelKind, PRIMARY_INDEX, validate_command
from error_handler import ErrorHandler, ErrorCategory, get_error_handler

logger = logging.getLogger("dispatcher")


class CommandDispatcher:
    """Optimistic, unacknowledged command delivery."""

    def __init__(self, node_client, registry, error_handler: Optional[ErrorHandler] = None):
        self.node_client = node_client
        self.registry = registry
        self.error_handler = error_handler or get_error_handler()

        # Strong references so in-flight tasks are not garbage collected
        self._pending: Set[asyncio.Task] = set()

    def dispatch(self, device: NodeDevice, kind, channel: int, value) -> DeviceRuntimeState:
        """
        Apply a command locally and send it on in the background.

        Must be called from the event loop thread. Returns once the local
        state reflects the new value.

        Raises:
            InvalidCommand: If the channel or value is out of range (no effect applied)
        """
        kind, channel, value, pin = validate_command(kind, channel, value)
        loop = asyncio.get_running_loop()

        # Effect 1: optimistic local update
        device.set_channel(kind, channel, value)
        logger.info(f"[{device.id}] {kind.value} ch{channel} (pin {pin}) -> {value}")

        # Effect 2: unacknowledged request to the node
        self._spawn(
            loop,
            self.error_handler.run_best_effort(
                self.node_client.send_command,
                device.ip, kind.value, pin, value,
                category=ErrorCategory.HARDWARE_UNREACHABLE,
                context=f"{device.id} {kind.value} pin {pin}",
            )
        )

        # Effect 3: mirror the primary output to the backend record
        if kind is ChannelKind.DIGITAL and channel == PRIMARY_INDEX:
            status = str(value)
            self.registry.set_cached_status(device.id, status)
            self._spawn(
                loop,
                self.error_handler.run_best_effort(
                    self.registry.update_status,
                    device.id, status,
                    category=ErrorCategory.BACKEND_SYNC_FAILED,
                    context=f"{device.id} status={status}",
                )
            )

        return device.state

    def _spawn(self, loop, coro) -> asyncio.Task:
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def drain(self):
        """Wait for every in-flight background request to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
