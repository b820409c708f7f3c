import stat

import pytest

from fluency.errors import ConfigError
from fluency.keystore import SecretStore


def test_missing_secret_is_none(tmp_path):
    assert SecretStore(tmp_path / "secrets.json").get("openai") is None


def test_set_get_delete(tmp_path):
    path = tmp_path / "secrets.json"
    store = SecretStore(path)

    store.set("openai", " sk-test ")
    assert store.get("openai") == "sk-test"
    assert stat.S_IMODE(path.stat().st_mode) == 0o600

    store.delete("openai")
    assert store.get("openai") is None
    store.delete("openai")


def test_blank_value_removes_secret(tmp_path):
    store = SecretStore(tmp_path / "secrets.json")
    store.set("groq", "gsk")
    store.set("groq", "   ")
    assert store.get("groq") is None


def test_corrupt_file_raises(tmp_path):
    path = tmp_path / "secrets.json"
    path.write_text("[1, 2]")
    with pytest.raises(ConfigError):
        SecretStore(path).get("openai")
