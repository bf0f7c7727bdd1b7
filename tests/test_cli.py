"""Tests del punto de entrada CLI."""

from pathlib import Path

import pytest

from loki_bridge import cli

ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture(autouse=True)
def no_dotenv(tmp_path, monkeypatch):
    monkeypatch.setenv("ESPHOME2LOKI_ENV_FILE", str(tmp_path / "missing.env"))


class TestCli:

    def test_missing_config_exits_2(self, tmp_path, capsys):
        code = cli.main(["-c", str(tmp_path / "absent.toml")])

        assert code == cli.EXIT_INVALID_CONFIG
        assert "Invalid config" in capsys.readouterr().err

    def test_invalid_config_exits_2(self, tmp_path, capsys):
        path = tmp_path / "config.toml"
        path.write_text(
            '[[device]]\nlabel = "kitchen"\ntopic = "kitchen/debug"\n\n'
            '[loki]\nbase_url = "http://loki:3100"\nbatch_size = 0\nbatch_timeout_seconds = 1\n\n'
            '[mqtt]\naddress = "broker"\n',
            encoding="utf-8",
        )

        assert cli.main(["-c", str(path)]) == 2
        assert "batch_size cannot be 0" in capsys.readouterr().err

    def test_check_validates_sample_config(self):
        assert cli.main(["-c", str(ROOT / "config.sample.toml"), "--check"]) == 0

    def test_config_path_from_env(self, monkeypatch, tmp_path, capsys):
        monkeypatch.setenv("ESPHOME2LOKI_CONFIG", str(tmp_path / "from-env.toml"))

        assert cli.main([]) == 2
        assert "from-env.toml" in capsys.readouterr().err

    def test_run_uses_bridge_exit_code(self, monkeypatch):
        async def fake_run_bridge(settings):
            return 1

        monkeypatch.setattr(cli, "run_bridge", fake_run_bridge)

        assert cli.main(["-c", str(ROOT / "config.sample.toml")]) == 1

    @pytest.mark.parametrize("name,expected", [("debug", 10), ("WARNING", 30), ("bogus", 20)])
    def test_resolve_level(self, name, expected):
        assert cli._resolve_level(name) == expected
