from pathlib import Path

from meshsync.core import config as config_module


def test_load_config_creates_from_template(monkeypatch, tmp_path: Path):
    template = tmp_path / "config.yaml.example"
    target = tmp_path / "config.yaml"
    runtime_dir = tmp_path / "runtime"
    template.write_text(
        "\n".join(
            [
                "remote:",
                "  base_url: https://meshes.example.org",
                "  token: tpl_token",
                "  timeout_sec: 45",
                "storage:",
                f"  blob_dir: {runtime_dir / 'blobs'}",
                "logging:",
                f"  file: {runtime_dir / 'service.log'}",
                "database:",
                f"  path: {runtime_dir / 'library.db'}",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", template)
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.remote.base_url == "https://meshes.example.org"
    assert cfg.remote.token == "tpl_token"
    assert cfg.remote.timeout_sec == 45
    assert cfg.database.path == str(runtime_dir / "library.db")


def test_load_config_creates_defaults_when_template_missing(monkeypatch, tmp_path: Path):
    target = tmp_path / "config.yaml"
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", tmp_path / "missing-template.yaml")
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.remote.base_url == ""
    assert cfg.web_port == 8765


def test_load_config_falls_back_when_template_invalid(monkeypatch, tmp_path: Path):
    template = tmp_path / "config.yaml.example"
    target = tmp_path / "config.yaml"
    template.write_text("remote: [invalid\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", template)
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.remote.timeout_sec == 30


def test_paths_expand_home(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("HOME", str(tmp_path))

    cfg = config_module.AppConfig.model_validate({"database": {"path": "~/lib/library.db"}})

    assert cfg.database.path == str(tmp_path / "lib" / "library.db")


def test_save_config_round_trips(monkeypatch, tmp_path: Path):
    target = tmp_path / "config.yaml"
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)
    cfg = config_module.AppConfig()
    cfg.remote.base_url = "https://meshes.example.org"

    config_module.save_config(cfg, target)
    loaded = config_module.load_config(target)

    assert loaded.remote.base_url == "https://meshes.example.org"
