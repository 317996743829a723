import json
from pathlib import Path

from typer.testing import CliRunner

from meshsync.cli import main as cli_module
from meshsync.core import config as config_module
from meshsync.core.config import AppConfig
from meshsync.core.run_history import append_run_history

runner = CliRunner()


def test_sync_without_remote_exits_with_error(monkeypatch):
    monkeypatch.setattr(cli_module, "load_config", lambda *args, **kwargs: AppConfig())

    result = runner.invoke(cli_module.app, ["sync"])

    assert result.exit_code == 2
    assert json.loads(result.stdout) == {"ok": False, "error": "remote_base_url_missing"}


def test_config_show_masks_token(monkeypatch):
    cfg = AppConfig()
    cfg.remote.base_url = "https://meshes.example.org"
    cfg.remote.token = "secret"
    monkeypatch.setattr(cli_module, "load_config", lambda *args, **kwargs: cfg)

    result = runner.invoke(cli_module.app, ["config-show"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["remote"]["token"] == "***"
    assert payload["remote"]["base_url"] == "https://meshes.example.org"


def test_config_set_remote_saves(monkeypatch):
    saved = []
    monkeypatch.setattr(cli_module, "load_config", lambda *args, **kwargs: AppConfig())
    monkeypatch.setattr(cli_module, "save_config", lambda cfg: saved.append(cfg))

    result = runner.invoke(
        cli_module.app,
        ["config-set-remote", "--url", "https://meshes.example.org/", "--token", "t", "--timeout", "10"],
    )

    assert result.exit_code == 0
    assert saved[0].remote.base_url == "https://meshes.example.org"
    assert saved[0].remote.timeout_sec == 10
    assert json.loads(result.stdout)["token_set"] is True


def test_history_prints_newest_first(monkeypatch, tmp_path: Path):
    history = tmp_path / "run_history.jsonl"
    monkeypatch.setattr(config_module, "RUN_HISTORY_PATH", history)
    append_run_history({"ok": True, "run_type": "manual_cli"}, history)
    append_run_history({"ok": False, "run_type": "manual_web"}, history)

    result = runner.invoke(cli_module.app, ["history", "--limit", "5"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["count"] == 2
    assert [item["run_type"] for item in payload["items"]] == ["manual_web", "manual_cli"]
