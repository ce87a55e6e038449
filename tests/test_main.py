"""Tests for the command line entry point."""

import asyncio
import io
import json

import pytest

from tickbox.core.errors import ConfigError
from tickbox.main import build_parser, main, make_interrupt_handler, resolve_options
from tickbox.ui.input import UserInput
from tickbox.ui.renderers import DONE_BANNER


def cli(step_dir, cwd, *extra):
    return ["--dir", str(step_dir), "--cwd", str(cwd), "--plain", *extra]


class TestParser:
    """Test argument parsing."""

    def test_sync_ranges(self):
        args = build_parser().parse_args(["--dir", "x", "--sync", "0-2", "--sync", "5:7"])
        assert args.sync == [(0, 2), (5, 7)]

    def test_invalid_sync_range(self, capsys):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--dir", "x", "--sync", "9-1"])
        assert "--sync" in capsys.readouterr().err

    def test_dir_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestResolveOptions:
    """CLI flag, then config file, then environment, then default."""

    def parse(self, *argv):
        return build_parser().parse_args(["--dir", "x", *argv])

    def test_cli_wins(self, monkeypatch):
        monkeypatch.setenv("TICKBOX_CONCURRENCY", "7")
        assert resolve_options(self.parse("-j", "2"), 3).concurrency == 2

    def test_config_over_environment(self, monkeypatch):
        monkeypatch.setenv("TICKBOX_CONCURRENCY", "7")
        assert resolve_options(self.parse(), 3).concurrency == 3

    def test_environment_over_default(self, monkeypatch):
        monkeypatch.setenv("TICKBOX_CONCURRENCY", "7")
        assert resolve_options(self.parse(), None).concurrency == 7

    def test_default(self, monkeypatch):
        monkeypatch.delenv("TICKBOX_CONCURRENCY", raising=False)
        assert resolve_options(self.parse(), None).concurrency == 4

    def test_invalid_filter(self):
        with pytest.raises(ConfigError):
            resolve_options(self.parse("--filter", "("), None)

    def test_zero_concurrency_flag_rejected(self):
        with pytest.raises(ConfigError):
            resolve_options(self.parse("-j", "0"), 3)

    def test_non_numeric_environment_concurrency(self, monkeypatch):
        monkeypatch.setenv("TICKBOX_CONCURRENCY", "many")
        with pytest.raises(ConfigError, match="TICKBOX_CONCURRENCY"):
            resolve_options(self.parse(), None)


class TestInterruptHandler:
    """First Ctrl-C quits the display, the second cancels the run."""

    @pytest.mark.asyncio
    async def test_second_interrupt_cancels(self):
        user_input = UserInput(io.StringIO())
        main_task = asyncio.ensure_future(asyncio.sleep(10))
        on_interrupt = make_interrupt_handler(user_input, main_task)

        on_interrupt()
        await asyncio.sleep(0)
        assert user_input.quit_requested.is_set()
        assert not main_task.done()

        on_interrupt()
        with pytest.raises(asyncio.CancelledError):
            await main_task


class TestMain:
    """Test whole runs with the plain renderer."""

    def test_success_exit_code(self, write_step, step_dir, tmp_path, capsys):
        write_step("01-hello", "echo hello")
        write_step("02-tempdir", 'test -d "$TICKBOX_TEMPDIR" && echo has-tempdir')

        assert main(cli(step_dir, tmp_path)) == 0

        out = capsys.readouterr().out.splitlines()
        assert "hello" in out
        assert "has-tempdir" in out
        assert "[complete] 02-tempdir" in out
        assert out[-1] == DONE_BANNER

    def test_failure_exit_code(self, write_step, step_dir, tmp_path, capsys):
        write_step("01-bad", "exit 4")
        write_step("02-skipped", "echo unreachable")

        assert main(cli(step_dir, tmp_path)) == 1

        out = capsys.readouterr().out
        assert "01-bad exited with code 4" in out
        assert "unreachable" not in out
        assert "[skipped] 02-skipped" in out

    def test_config_env_and_filter(self, write_step, step_dir, tmp_path, capsys):
        (step_dir / ".tickbox.json").write_text(json.dumps({"env": {"GREETING": "from-config"}}))
        write_step("01-greet", 'echo "$GREETING"')
        write_step("02-other", "echo other")

        assert main(cli(step_dir, tmp_path, "--filter", "greet")) == 0

        out = capsys.readouterr().out.splitlines()
        assert "from-config" in out
        assert "other" not in out

    def test_parallel_sync_range(self, write_step, step_dir, tmp_path, capsys):
        for i in range(3):
            write_step(f"0{i}-step", f"echo step-{i}")

        assert main(cli(step_dir, tmp_path, "--sync", "0-2", "-j", "3")) == 0

        out = capsys.readouterr().out.splitlines()
        assert sorted(line for line in out if line.startswith("step-")) == [
            "step-0", "step-1", "step-2",
        ]

    def test_missing_directory(self, tmp_path, capsys):
        assert main(cli(tmp_path / "missing", tmp_path)) == 2
        assert "tickbox:" in capsys.readouterr().err

    def test_invalid_config(self, step_dir, tmp_path, capsys):
        (step_dir / ".tickbox.json").write_text('{"concurrency": 0}')

        assert main(cli(step_dir, tmp_path)) == 2
        assert "Invalid config" in capsys.readouterr().err

    def test_missing_cwd(self, write_step, step_dir, tmp_path, capsys):
        write_step("01-a", "true")
        assert main(cli(step_dir, tmp_path / "nowhere")) == 2

    def test_bad_environment_concurrency_exit_code(
        self, write_step, step_dir, tmp_path, monkeypatch, capsys
    ):
        monkeypatch.setenv("TICKBOX_CONCURRENCY", "many")
        write_step("01-a", "true")

        assert main(cli(step_dir, tmp_path)) == 2
        assert "TICKBOX_CONCURRENCY" in capsys.readouterr().err

    def test_zero_concurrency_exit_code(self, write_step, step_dir, tmp_path):
        write_step("01-a", "true")
        assert main(cli(step_dir, tmp_path, "-j", "0")) == 2
