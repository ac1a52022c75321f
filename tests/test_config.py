from __future__ import annotations

from pathlib import Path

import pytest

from charpipe.config import get_api_key, load_config, resolve_output_paths


def test_load_config_fills_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("api:\n  api_key: abc\nmodels:\n  text: my-model\n", encoding="utf-8")

    config = load_config(path)
    assert config["api"]["api_key"] == "abc"
    assert config["api"]["max_attempts"] == 1
    assert config["models"]["text"] == "my-model"
    assert config["models"]["image"] == "gemini-2.5-flash-image"
    assert config["output"]["base_dir"] == "output"


def test_load_config_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")


def test_api_key_from_config(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "from-env")
    assert get_api_key({"api": {"api_key": "from-config"}}) == "from-config"


def test_placeholder_key_falls_back_to_environment(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("API_KEY", "legacy")
    assert get_api_key({"api": {"api_key": "YOUR_GEMINI_API_KEY"}}) == "legacy"


def test_missing_key_raises(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("API_KEY", raising=False)
    with pytest.raises(ValueError, match="API key not configured"):
        get_api_key({"api": {"api_key": ""}})


def test_output_paths_are_scoped_per_scene_file():
    paths = resolve_output_paths({"output": {"base_dir": "out"}}, "scenes/beach_day.json")
    assert paths["batch_dir"] == Path("out/beach_day")
    assert paths["images_dir"] == Path("out/beach_day/images")
    assert paths["status_file"] == Path("out/beach_day/status.json")
