"""
Voice Command Resolver
Maps a free-text utterance onto device outputs by label containment.

"enciende luz"  -> every device output labelled "luz" goes to 1
"apaga ventilador" -> every output labelled "ventilador" goes to 0
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from device import NodeDevice, ChannelKind
from error_handler import ErrorCategory, ErrorHandler, get_error_handler

logger = logging.getLogger("resolver")

ACTIVATE_WORDS = ["enciende", "encender", "prende", "prender", "activa", "activar", "turn on", "switch on"]
DEACTIVATE_WORDS = ["apaga", "apagar", "desactiva", "desactivar", "turn off", "switch off"]


@dataclass
class ResolvedMatch:
    device_id: str
    device_name: str
    output_index: int
    label: str


@dataclass
class ResolveResult:
    utterance: str
    value: Optional[int] = None
    matches: List[ResolvedMatch] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return bool(self.matches)

    @property
    def message(self) -> str:
        if self.value is None:
            return f"No on/off command recognised in '{self.utterance}'"
        if not self.matches:
            return f"No device matches '{self.utterance}'"
        verb = "Turning on" if self.value else "Turning off"
        targets = ", ".join(f"{m.label} ({m.device_name})" for m in self.matches)
        return f"{verb} {targets}..."

    def to_dict(self):
        return {
            "utterance": self.utterance,
            "matched": self.matched,
            "value": self.value,
            "message": self.message,
            "matches": [vars(m) for m in self.matches],
        }


class CommandResolver:
    """Resolves utterances and hands every match to the dispatcher."""

    def __init__(self, dispatcher, activate_words: Optional[Sequence[str]] = None,
                 deactivate_words: Optional[Sequence[str]] = None,
                 error_handler: Optional[ErrorHandler] = None):
        self.dispatcher = dispatcher
        self.activate_words = [w.lower() for w in (activate_words or ACTIVATE_WORDS)]
        self.deactivate_words = [w.lower() for w in (deactivate_words or DEACTIVATE_WORDS)]
        self.error_handler = error_handler or get_error_handler()

    def classify(self, text: str) -> Optional[int]:
        """Return 1 for activation, 0 for deactivation, None if neither."""
        # Deactivation first: "desactiva" contains "activa"
        if any(word in text for word in self.deactivate_words):
            return 0
        if any(word in text for word in self.activate_words):
            return 1
        return None

    def resolve(self, utterance: str, devices: Iterable[NodeDevice]) -> ResolveResult:
        text = (utterance or "").lower()
        result = ResolveResult(utterance=utterance or "")

        result.value = self.classify(text)
        if result.value is None:
            logger.info(f"Voice: no intent in '{utterance}'")
            self.error_handler.record_notice(ErrorCategory.UNRESOLVED_COMMAND)
            return result

        for device in devices:
            for index, label in enumerate(device.output_labels):
                needle = label.strip().lower()
                if not needle or needle not in text:
                    continue
                self.dispatcher.dispatch(device, ChannelKind.DIGITAL, index, result.value)
                result.matches.append(ResolvedMatch(device.id, device.name, index, label))

        if result.matched:
            logger.info(f"Voice: '{utterance}' -> {len(result.matches)} output(s) set to {result.value}")
        else:
            logger.info(f"Voice: '{utterance}' matched no output")
            self.error_handler.record_notice(ErrorCategory.UNRESOLVED_COMMAND)

        return result
