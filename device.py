"""
Node Device Wrapper - Holds a device record and its optimistic runtime state.
"""
import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, List

from error_handler import InvalidCommand

logger = logging.getLogger("device")

# Labels shown on the dashboard card, in pin order
DEFAULT_OUTPUT_LABELS = ["Luz", "Ventilador", "Patio", "Aux"]

DIGITAL_PINS = [4, 5, 6, 7]
PWM_PINS = [9, 10]
PWM_FIELDS = ["pwm_a", "pwm_b"]
PWM_MAX = 255

# Output mirrored to the backend 'status' field
PRIMARY_INDEX = 0


class ChannelKind(str, Enum):
    DIGITAL = "digital"
    PWM = "pwm"


def _normalize_status(value: Any) -> str:
    """Coerce '0'/'1', 0/1 and booleans to '0'/'1'."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if str(value).strip() in ("1", "true", "True", "on"):
        return "1"
    return "0"


@dataclass
class DeviceRecord:
    """Backend device record. Read-only to the gateway except for 'status'."""
    id: str
    name: str
    ip: str
    location: str = "Manual"
    status: str = "0"
    output_labels: List[str] = field(default_factory=lambda: list(DEFAULT_OUTPUT_LABELS))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceRecord":
        labels = data.get("output_labels") or []
        labels = [str(label) if label is not None else "" for label in labels][:len(DIGITAL_PINS)]
        labels += DEFAULT_OUTPUT_LABELS[len(labels):]

        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            ip=str(data.get("ip") or "").strip(),
            location=data.get("location") or "Manual",
            status=_normalize_status(data.get("status", "0")),
            output_labels=labels,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "ip": self.ip,
            "location": self.location,
            "status": self.status,
            "output_labels": list(self.output_labels),
        }


@dataclass
class DeviceRuntimeState:
    """Optimistic local view of one node. Never persisted."""
    outputs: List[int] = field(default_factory=lambda: [0] * len(DIGITAL_PINS))
    pwm_a: int = 0
    pwm_b: int = 0
    temperature: float = 0.0
    gas_level: float = 0.0

    @classmethod
    def from_record(cls, record: DeviceRecord) -> "DeviceRuntimeState":
        state = cls()
        state.outputs[PRIMARY_INDEX] = 1 if record.status == "1" else 0
        return state

    def as_dict(self) -> Dict[str, Any]:
        return {
            "outputs": list(self.outputs),
            "pwm_a": self.pwm_a,
            "pwm_b": self.pwm_b,
            "temperature": self.temperature,
            "gas_level": self.gas_level,
        }


def validate_command(kind, channel: int, value: Any):
    """
    Check a (kind, channel, value) triple against the channel map.

    Returns:
        (ChannelKind, channel, int value, pin)

    Raises:
        InvalidCommand: If the channel or value is out of range
    """
    try:
        kind = ChannelKind(kind)
    except ValueError:
        raise InvalidCommand(f"Unknown channel kind: {kind!r}")

    if isinstance(channel, bool) or not isinstance(channel, int):
        raise InvalidCommand(f"Channel must be an integer, got {channel!r}")

    if kind is ChannelKind.DIGITAL:
        if not 0 <= channel < len(DIGITAL_PINS):
            raise InvalidCommand(f"Digital channel {channel} out of range 0..{len(DIGITAL_PINS) - 1}")
        if isinstance(value, bool):
            value = int(value)
        if value not in (0, 1) or isinstance(value, float):
            raise InvalidCommand(f"Digital value must be 0 or 1, got {value!r}")
        return kind, channel, value, DIGITAL_PINS[channel]

    if not 0 <= channel < len(PWM_PINS):
        raise InvalidCommand(f"PWM channel {channel} out of range 0..{len(PWM_PINS) - 1}")

    # Sliders send their value as a string
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise InvalidCommand(f"PWM value must be an integer, got {value!r}")
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidCommand(f"PWM value must be an integer, got {value!r}")
    if not 0 <= value <= PWM_MAX:
        raise InvalidCommand(f"PWM value {value} out of range 0..{PWM_MAX}")
    return kind, channel, value, PWM_PINS[channel]


class NodeDevice:
    """
    Wrapper around a device record that owns the runtime state
    for as long as the device is displayed.
    """

    def __init__(self, service, record: DeviceRecord):
        self.service = service
        self.record = record
        self.state = DeviceRuntimeState.from_record(record)

        # Last successful telemetry merge (ms), 0 until the first one
        self.last_seen = 0

        logger.info(f"[{self.id}] Device mounted - {record.name} @ {record.ip} "
                    f"(primary={self.state.outputs[PRIMARY_INDEX]})")

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def ip(self) -> str:
        return self.record.ip

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def output_labels(self) -> List[str]:
        return self.record.output_labels

    def set_channel(self, kind: ChannelKind, channel: int, value: int):
        """Apply an already validated command to the runtime state."""
        if kind is ChannelKind.DIGITAL:
            self.state.outputs[channel] = value
            key = f"output_{channel}"
        else:
            key = PWM_FIELDS[channel]
            setattr(self.state, key, value)

        self._notify({key: value})

    def merge_telemetry(self, readings: Dict[str, float]) -> Dict[str, float]:
        """
        Merge sensor readings. Only temperature and gas_level are accepted;
        output and PWM fields are never touched here.
        """
        changed = {}
        for key in ("temperature", "gas_level"):
            if key not in readings:
                continue
            value = readings[key]
            if getattr(self.state, key) != value:
                changed[key] = value
            setattr(self.state, key, value)

        self.last_seen = int(time.time() * 1000)

        if changed:
            self._notify(changed)
        return changed

    def _notify(self, changed: Dict[str, Any]):
        if self.service is not None:
            self.service.handle_device_update(self, changed)

    def get_details(self) -> Dict[str, Any]:
        return {
            **self.record.to_dict(),
            "state": self.state.as_dict(),
            "last_seen_ts": self.last_seen,
        }
