"""Tests for argument parsing, startup selection, and the main() entry point."""

import io
import sys
from unittest.mock import patch

import pytest

from forkchat import cli, fmt
from forkchat.config import _UNSET
from forkchat.providers import BUILTIN_PROVIDERS, build_registry


@pytest.fixture(autouse=True)
def _env(tmp_path, monkeypatch):
    fmt.init(color=False, no_color=True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setenv("COLUMNS", "300")
    monkeypatch.chdir(tmp_path)
    for spec in BUILTIN_PROVIDERS.values():
        monkeypatch.delenv(spec["api_key_env"], raising=False)


def _main(monkeypatch, argv, stdin=""):
    monkeypatch.setattr(sys, "argv", ["forkchat", *argv])
    monkeypatch.setattr(sys, "stdin", io.StringIO(stdin))
    with pytest.raises(SystemExit) as exc:
        cli.main()
    return exc.value.code


class TestArgumentParsing:
    def test_defaults_are_unset(self):
        args = cli.build_parser().parse_args([])
        assert args.quiet is _UNSET
        assert args.provider is _UNSET
        assert args.data_dir is _UNSET

    def test_quiet_flag(self):
        assert cli.build_parser().parse_args(["-q"]).quiet is True

    def test_color_flags_exclusive(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["--color", "--no-color"])

    def test_temperature_type(self):
        args = cli.build_parser().parse_args(["--temperature", "0.2"])
        assert args.temperature == 0.2


class TestInitialSelection:
    def test_defaults_to_primary(self):
        reg = build_registry()
        sel = cli.initial_selection(reg, None, None)
        assert sel.provider == reg.primary
        assert sel.model == reg.get(reg.primary).default_model

    def test_explicit(self):
        sel = cli.initial_selection(build_registry(), "huggingface", "glm")
        assert (sel.provider, sel.model) == ("huggingface", "glm")

    def test_unknown_provider_falls_back(self, capsys):
        reg = build_registry()
        sel = cli.initial_selection(reg, "nope", None)
        assert sel.provider == reg.primary
        assert "unknown provider" in capsys.readouterr().err

    def test_unknown_model_falls_back(self, capsys):
        reg = build_registry()
        sel = cli.initial_selection(reg, "openrouter", "nope")
        assert sel.model == reg.get("openrouter").default_model
        assert "not available" in capsys.readouterr().err


class TestMain:
    def test_exit_flushes_and_succeeds(self, monkeypatch, tmp_path):
        code = _main(monkeypatch, ["--data-dir", str(tmp_path / "agents")], "/fork work\n/exit\n")
        assert code == 0
        assert (tmp_path / "agents" / "main.json").is_file()
        assert (tmp_path / "agents" / "work.json").is_file()

    def test_default_data_dir(self, monkeypatch, tmp_path):
        assert _main(monkeypatch, [], "") == 0
        assert (tmp_path / "data" / "forkchat" / "agents" / "main.json").is_file()

    def test_quiet_flag_bare_output(self, monkeypatch, tmp_path, capsys):
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
        with patch("forkchat.client.call_llm", return_value="pong"):
            _main(monkeypatch, ["-q", "--data-dir", str(tmp_path / "a")], "ping\n")
        captured = capsys.readouterr()
        assert captured.out == "pong\n"
        assert captured.err == ""

    def test_config_file_sets_provider(self, monkeypatch, tmp_path, capsys):
        (tmp_path / "forkchat.toml").write_text('provider = "huggingface"\nquiet = true\n')
        _main(monkeypatch, ["--data-dir", str(tmp_path / "a")], "/status\n")
        assert "provider=huggingface" in capsys.readouterr().out

    def test_cli_overrides_config(self, monkeypatch, tmp_path, capsys):
        (tmp_path / "forkchat.toml").write_text('provider = "huggingface"\nquiet = true\n')
        _main(
            monkeypatch,
            ["--provider", "openrouter", "--data-dir", str(tmp_path / "a")],
            "/status\n",
        )
        assert "provider=openrouter" in capsys.readouterr().out

    def test_bad_config_is_not_fatal(self, monkeypatch, tmp_path, capsys):
        (tmp_path / "forkchat.toml").write_text("broken = [\n")
        code = _main(monkeypatch, ["--data-dir", str(tmp_path / "a")], "/status\n")
        assert code == 0
        captured = capsys.readouterr()
        assert "invalid" in captured.err and "TOML" in captured.err
        assert "provider: openrouter" in captured.out

    def test_custom_provider_from_config(self, monkeypatch, tmp_path, capsys):
        (tmp_path / "forkchat.toml").write_text(
            'provider = "local"\nquiet = true\n'
            "[providers.local]\n"
            'base_url = "http://127.0.0.1:1234/v1"\n'
            'api_key = "lm-studio"\n'
            'models = { small = "qwen/qwen3-8b" }\n'
        )
        with patch("forkchat.client.call_llm", return_value="hi") as mock_call:
            _main(monkeypatch, ["--data-dir", str(tmp_path / "a")], "hello\n")
        args, kwargs = mock_call.call_args
        assert args[0] == "http://127.0.0.1:1234/v1"
        assert args[1] == "qwen/qwen3-8b"
        assert kwargs["api_key"] == "lm-studio"

    def test_init_config(self, monkeypatch, capsys):
        assert _main(monkeypatch, ["--init-config"]) == 0
        assert "forkchat configuration file" in capsys.readouterr().out

    def test_version(self, monkeypatch, capsys):
        assert _main(monkeypatch, ["--version"]) == 0
        assert capsys.readouterr().out.strip()

    def test_init_config_project(self, monkeypatch, capsys):
        assert _main(monkeypatch, ["--init-config", "--project"]) == 0
        assert "<project>/forkchat.toml" in capsys.readouterr().out
