import json

import pytest

from settings_store import SettingsStore, normalize_server_url


@pytest.mark.parametrize("raw, expected", [
    ("http://192.168.1.10:3001", "http://192.168.1.10:3001/api"),
    ("http://192.168.1.10:3001/", "http://192.168.1.10:3001/api"),
    ("http://192.168.1.10:3001/api", "http://192.168.1.10:3001/api"),
    ("  http://casa.local/api/  ", "http://casa.local/api"),
])
def test_normalize_server_url(raw, expected):
    assert normalize_server_url(raw) == expected


def test_server_url_persists_across_instances(tmp_path):
    path = tmp_path / "settings.json"

    store = SettingsStore(str(path))
    assert store.server_url is None
    assert store.set_server_url("http://10.0.0.2:3001") == "http://10.0.0.2:3001/api"

    reloaded = SettingsStore(str(path))
    assert reloaded.server_url == "http://10.0.0.2:3001/api"
    assert json.loads(path.read_text())["server_url"] == "http://10.0.0.2:3001/api"


def test_clearing_session_token_removes_key(tmp_path):
    store = SettingsStore(str(tmp_path / "settings.json"))

    store.set_session_token("abc")
    assert store.session_token == "abc"

    store.set_session_token(None)
    assert store.session_token is None
    assert store.remove("session_token") is False


def test_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json")

    store = SettingsStore(str(path))

    assert store.get("server_url") is None
    store.set("theme", "dark")
    assert SettingsStore(str(path)).get("theme") == "dark"
