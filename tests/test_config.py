from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from relay_server.config import DEFAULT_CONFIG, load_config, load_strings


def test_missing_config_uses_defaults(tmp_path: Path):
    cfg = load_config(str(tmp_path / "absent.yaml"))
    assert cfg == DEFAULT_CONFIG


def test_yaml_is_merged_over_defaults(tmp_path: Path):
    path = tmp_path / "cfg.yaml"
    path.write_text(yaml.safe_dump({"retry": {"max_retries": 5}}), encoding="utf-8")

    cfg = load_config(str(path))
    assert cfg["retry"]["max_retries"] == 5
    assert cfg["retry"]["initial_delay"] == 2.0
    assert cfg["pipeline"]["batch_size"] == 20000


def test_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("RELAY_SERVER__RETRY__INITIAL_DELAY", "0.5")
    monkeypatch.setenv("RELAY_SERVER__RETRY__REJECT_WHEN_BUSY", "true")
    monkeypatch.setenv("RELAY_SERVER__PIPELINE__ENCODING", "utf-8")

    cfg = load_config(str(tmp_path / "absent.yaml"))
    assert cfg["retry"]["initial_delay"] == 0.5
    assert cfg["retry"]["reject_when_busy"] is True
    assert cfg["pipeline"]["encoding"] == "utf-8"


def test_config_path_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    path = tmp_path / "cfg.yaml"
    path.write_text("memory:\n  max_total_length: 42\n", encoding="utf-8")
    monkeypatch.setenv("RELAY_SERVER_CONFIG", str(path))

    assert load_config()["memory"]["max_total_length"] == 42


def test_invalid_config_format(tmp_path: Path):
    path = tmp_path / "cfg.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(RuntimeError):
        load_config(str(path))


def test_shipped_files_load(project_root: Path):
    cfg = load_config(str(project_root / "config" / "default.yaml"))
    strings = load_strings(str(project_root / cfg["strings_path"]))

    assert cfg["memory"]["max_total_length"] == 30000
    assert strings["initial_context"].startswith("This is your initial context")
    assert strings["roles"] == {"context": "user", "requester": "user", "responder": "model"}


def test_strings_partial_override(tmp_path: Path):
    path = tmp_path / "strings.yaml"
    path.write_text("error_messages:\n  missing_prompt: Say something\n", encoding="utf-8")

    strings = load_strings(str(path))
    assert strings["error_messages"]["missing_prompt"] == "Say something"
    assert strings["error_messages"]["unknown_error"] == "Unknown error"


def test_strings_require_initial_context(tmp_path: Path):
    path = tmp_path / "strings.yaml"
    path.write_text("initial_context: ''\n", encoding="utf-8")
    with pytest.raises(RuntimeError):
        load_strings(str(path))


def test_env_override_accepts_lists(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("RELAY_SERVER__SERVER__CORS_ORIGINS", '["http://a.test", "http://b.test"]')
    monkeypatch.setenv("RELAY_SERVER__UPLOADS__MAX_BYTES", "2048")

    cfg = load_config(str(tmp_path / "absent.yaml"))
    assert cfg["server"]["cors_origins"] == ["http://a.test", "http://b.test"]
    assert cfg["uploads"]["max_bytes"] == 2048
    # Sibling keys in the same section survive the override.
    assert cfg["uploads"]["dir"] == "uploads"


def test_env_override_creates_missing_sections(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("RELAY_SERVER__EXTRA__NESTED__FLAG", "false")
    monkeypatch.setenv("RELAY_SERVER__UPSTREAM__API_KEY_ENV", "")

    cfg = load_config(str(tmp_path / "absent.yaml"))
    assert cfg["extra"] == {"nested": {"flag": False}}
    assert cfg["upstream"]["api_key_env"] == ""


def test_shipped_strings_include_empty_file(project_root: Path):
    strings = load_strings(str(project_root / "config" / "strings.yaml"))
    assert strings["error_messages"]["empty_file"] == "Uploaded file is empty"
