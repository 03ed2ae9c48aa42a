import pytest

from device import ChannelKind, DeviceRecord, NodeDevice
from error_handler import ErrorCategory
from resolver import CommandResolver


class RecordingDispatcher:
    def __init__(self):
        self.calls = []

    def dispatch(self, device, kind, channel, value):
        self.calls.append((device.id, kind, channel, value))


def make_device(device_id, name, labels):
    record = DeviceRecord.from_dict({"id": device_id, "name": name, "ip": "10.0.0.1", "output_labels": labels})
    return NodeDevice(None, record)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def resolver(dispatcher, error_handler):
    return CommandResolver(dispatcher, error_handler=error_handler)


@pytest.fixture
def devices():
    return [
        make_device(1, "Sala", ["luz", "Ventilador", "Patio", "Aux"]),
        make_device(2, "Cocina", ["Extractor", "Horno", "Luz Mesa", "Aux"]),
    ]


def test_activation_dispatches_matching_output(resolver, dispatcher, devices):
    result = resolver.resolve("enciende luz", devices[:1])

    assert result.matched
    assert result.value == 1
    assert dispatcher.calls == [("1", ChannelKind.DIGITAL, 0, 1)]


def test_no_matching_label_reports_not_found(resolver, dispatcher, devices, error_handler):
    result = resolver.resolve("apaga todo", devices)

    assert not result.matched
    assert result.value == 0
    assert dispatcher.calls == []
    assert "No device matches" in result.message
    assert error_handler.get_stats()["errors_by_category"][ErrorCategory.UNRESOLVED_COMMAND] == 1


def test_no_intent_is_a_noop(resolver, dispatcher, devices):
    result = resolver.resolve("que temperatura hace en la sala", devices)

    assert result.value is None
    assert not result.matched
    assert dispatcher.calls == []


def test_deactivate_wins_over_embedded_activate(resolver, dispatcher, devices):
    result = resolver.resolve("Desactiva el ventilador", devices)

    assert result.value == 0
    assert dispatcher.calls == [("1", ChannelKind.DIGITAL, 1, 0)]


def test_every_match_fires_across_devices(resolver, dispatcher, devices):
    result = resolver.resolve("PRENDE LA LUZ MESA", devices)

    # "luz" on Sala and "luz mesa" on Cocina are both contained
    assert dispatcher.calls == [
        ("1", ChannelKind.DIGITAL, 0, 1),
        ("2", ChannelKind.DIGITAL, 2, 1),
    ]
    assert [(m.device_id, m.output_index) for m in result.matches] == [("1", 0), ("2", 2)]


def test_shared_labels_are_not_disambiguated(resolver, dispatcher, devices):
    resolver.resolve("apaga aux", devices)

    assert dispatcher.calls == [
        ("1", ChannelKind.DIGITAL, 3, 0),
        ("2", ChannelKind.DIGITAL, 3, 0),
    ]


def test_blank_labels_never_match(resolver, dispatcher):
    device = make_device(3, "Patio", ["", "  ", "Riego", "Aux"])

    resolver.resolve("enciende riego", [device])

    assert dispatcher.calls == [("3", ChannelKind.DIGITAL, 2, 1)]


def test_custom_vocabulary(dispatcher, devices):
    resolver = CommandResolver(dispatcher, activate_words=["on"], deactivate_words=["off"])

    resolver.resolve("Horno ON", devices)

    assert dispatcher.calls == [("2", ChannelKind.DIGITAL, 1, 1)]


def test_result_message_names_targets(resolver, devices):
    result = resolver.resolve("turn on the extractor", devices)

    assert result.message == "Turning on Extractor (Cocina)..."
    assert result.to_dict()["matches"] == [
        {"device_id": "2", "device_name": "Cocina", "output_index": 0, "label": "Extractor"}
    ]
