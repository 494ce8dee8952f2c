"""Tests for the command-line entry point."""
import json

import pytest

from variant_sync import service
from variant_sync.app import App


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "input_folder": str(tmp_path / "images"),
        "output_folder": str(tmp_path / "output"),
    }))
    return path


def _args(config_path, tmp_path, *extra):
    return ["--config", str(config_path), "--log-file", str(tmp_path / "run.log"), *extra]


class TestMain:
    def test_clean_run_returns_zero(self, config_path, tmp_path, monkeypatch):
        ran = []

        def fake_run(self):
            self.prepare()
            ran.append(self.config.output_folder)

        monkeypatch.setattr(App, "run", fake_run)
        monkeypatch.setattr(service.signal, "signal", lambda *a: None)

        assert service.main(_args(config_path, tmp_path)) == 0
        assert ran == [str(tmp_path / "output")]
        assert (tmp_path / "run.log").exists()

    def test_overrides_do_not_touch_config_file(self, config_path, tmp_path, monkeypatch):
        seen = []
        monkeypatch.setattr(App, "run", lambda self: seen.append(self.config))
        monkeypatch.setattr(service.signal, "signal", lambda *a: None)
        before = config_path.read_text()

        service.main(_args(
            config_path, tmp_path,
            "--input", "in2", "--output", str(tmp_path / "out2"),
            "--stable-seconds", "0.5", "--log-level", "DEBUG",
        ))

        cfg = seen[0]
        assert (cfg.input_folder, cfg.stable_time, cfg.log_level) == ("in2", 0.5, "DEBUG")
        assert cfg.output_folder == str(tmp_path / "out2")
        assert config_path.read_text() == before

    def test_unusable_output_folder_exits_nonzero(self, config_path, tmp_path, monkeypatch):
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        monkeypatch.setattr(service.signal, "signal", lambda *a: None)
        code = service.main(_args(config_path, tmp_path, "--output", str(blocker / "out")))
        assert code == 1

    def test_invalid_profiles_exit_nonzero(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"crop_profiles": []}))
        assert service.main(_args(path, tmp_path)) == 1

    def test_unhandled_error_exits_nonzero(self, config_path, tmp_path, monkeypatch):
        def boom(self):
            raise RuntimeError("unexpected")

        monkeypatch.setattr(App, "run", boom)
        monkeypatch.setattr(service.signal, "signal", lambda *a: None)
        assert service.main(_args(config_path, tmp_path)) == 1
