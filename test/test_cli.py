from __future__ import annotations
import argparse
import logging
import os
from pathlib import Path
import re
import subprocess
import sys
from unittest import mock
from unittest.mock import MagicMock, patch
import pytest
from cwrap import cli
from cwrap._constants import DEFAULT_STATE_DIR
from cwrap._models import RunConfig, TlsMode


@pytest.fixture
def no_env_files(clean_env: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    clean_env.setenv("CWRAP_CONFIG_PATHS", "")
    return clean_env


def parse(argv: list[str]) -> argparse.Namespace:
    return cli.build_parser().parse_args(argv)


def test_defaults(no_env_files: pytest.MonkeyPatch) -> None:
    args = parse(["ls"])
    assert args.command == "ls"
    assert args.command_args == []
    assert args.state_dir == DEFAULT_STATE_DIR
    assert args.lock_file is None
    assert args.num_retries == 0
    assert args.retry_secs == 10
    assert args.num_fails == 1
    assert args.timeout == 0
    assert args.log_level == "WARNING"
    assert not args.backoff
    assert not args.first_fail
    assert not args.quiet
    assert args.syslog_fac == "local7"
    assert args.syslog_pri == "info"


def test_command_options_are_not_ours(no_env_files: pytest.MonkeyPatch) -> None:
    """Options after the command belong to the command."""
    args = parse(["-n", "3", "ls", "-l", "-n", "--timeout", "5"])
    assert args.num_fails == 3
    assert args.timeout == 0
    assert args.command == "ls"
    assert args.command_args == ["-l", "-n", "--timeout", "5"]


def test_abbreviation_disabled(no_env_files: pytest.MonkeyPatch) -> None:
    with pytest.raises(SystemExit) as excinfo:
        parse(["--time", "5", "ls"])
    assert excinfo.value.code == 2


def test_build_config_basic(no_env_files: pytest.MonkeyPatch) -> None:
    args = parse(
        ["-r", "2", "-s", "5", "-i", "-n", "3", "-b", "-f", "-t", "60", "-z", "7"]
        + ["-d", "/tmp/st", "-F", "/tmp/x.lock", "-p", "/opt/bin", "-q"]
        + ["backup.sh", "--full"]
    )
    config = cli.build_config(args)
    assert isinstance(config, RunConfig)
    assert config.command.program == "backup.sh"
    assert config.command.args == ("--full",)
    assert not config.command.shell
    assert config.num_retries == 2
    assert config.retry_secs == 5
    assert config.ignore_retry_fails
    assert config.num_fails == 3
    assert config.backoff
    assert config.first_fail
    assert config.timeout == 60
    assert config.fuzz == 7
    assert config.state_dir == "/tmp/st"
    assert config.lock_file == "/tmp/x.lock"
    assert config.path == "/opt/bin"
    assert config.quiet
    assert config.syslog is None
    assert config.smtp is None


def test_build_config_shell(no_env_files: pytest.MonkeyPatch) -> None:
    config = cli.build_config(parse(["-g", "cat /tmp/file | grep stuff"]))
    assert config.command.shell
    assert config.command.argv == ["bash", "-c", "cat /tmp/file | grep stuff"]


def test_build_config_syslog(no_env_files: pytest.MonkeyPatch) -> None:
    config = cli.build_config(parse(["-S", "-C", "LOG_DAEMON", "-P", "err", "ls"]))
    assert config.syslog is not None
    assert config.syslog.facility == "daemon"
    assert config.syslog.severity == "err"


def test_invalid_syslog_facility(
    no_env_files: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    with pytest.raises(SystemExit) as excinfo:
        parse(["-S", "-C", "log_nowhere", "ls"])
    assert excinfo.value.code == 2
    assert "invalid syslog_facility_from_str value" in capsys.readouterr().err


def test_build_config_email(no_env_files: pytest.MonkeyPatch) -> None:
    args = parse(
        ["-M", "-N", "-R", "a@example.com", "-R", "b@example.com", "-J", "oops"]
        + ["-X", "mail.example.com", "-T", "587", "-Z", "-U", "me", "-W", "pw"]
        + ["-E", "cron@example.com", "ls"]
    )
    smtp = cli.build_config(args).smtp
    assert smtp is not None
    assert smtp.recipients == ["a@example.com", "b@example.com"]
    assert smtp.subject == "oops"
    assert smtp.smtp_server == "mail.example.com"
    assert smtp.smtp_port == 587
    assert smtp.tls_mode is TlsMode.STARTTLS
    assert smtp.username == "me"
    assert smtp.password == "pw"
    assert smtp.from_addr == "cron@example.com"
    assert smtp.also_normal_output


def test_build_config_creds_file(
    tmp_path: Path, no_env_files: pytest.MonkeyPatch
) -> None:
    creds = tmp_path / "creds"
    creds.write_text("robot:s3cr:et\n")
    args = parse(["-M", "-R", "a@example.com", "-L", "-Y", str(creds), "ls"])
    smtp = cli.build_config(args).smtp
    assert smtp is not None
    assert smtp.tls_mode is TlsMode.TLS
    assert smtp.username == "robot"
    assert smtp.password == "s3cr:et"


def test_tls_modes_exclusive(no_env_files: pytest.MonkeyPatch) -> None:
    with pytest.raises(SystemExit) as excinfo:
        parse(["-M", "-R", "a@example.com", "-L", "-Z", "ls"])
    assert excinfo.value.code == 2


def test_email_options_ignored_without_send_mail(
    no_env_files: pytest.MonkeyPatch,
) -> None:
    config = cli.build_config(parse(["-R", "a@example.com", "ls"]))
    assert config.smtp is None


@patch("cwrap.cli.execute", return_value=0)
def test_main_runs_execute(
    mock_execute: MagicMock, no_env_files: pytest.MonkeyPatch
) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["-n", "2", "echo", "hi"])
    assert excinfo.value.code == 0
    config = mock_execute.call_args[0][0]
    assert config.num_fails == 2
    assert config.command.command_line == "echo hi"


@patch("cwrap.cli.execute", return_value=1)
def test_main_propagates_exit_code(
    _mock_execute: MagicMock, no_env_files: pytest.MonkeyPatch
) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["true"])
    assert excinfo.value.code == 1


@pytest.mark.parametrize(
    "argv,message",
    [
        (["-M", "ls"], "at least 1 recipient"),
        (["-n", "0", "ls"], "--num-fails must be at least 1"),
        (["-t", "-5", "ls"], "--timeout must not be negative"),
        (["-M", "-R", "a@b", "-Y", "/nonexistent/creds", "ls"], "No such file"),
    ],
)
@patch("cwrap.cli.execute")
def test_main_invalid_config(
    mock_execute: MagicMock,
    argv: list[str],
    message: str,
    no_env_files: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture,
) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(argv)
    assert excinfo.value.code == 2
    assert message in capsys.readouterr().err
    mock_execute.assert_not_called()


def test_main_missing_command(
    no_env_files: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["-n", "2"])
    assert excinfo.value.code == 2
    assert "the following arguments are required" in capsys.readouterr().err


@patch("cwrap.cli.sys.exit", new_callable=MagicMock)
@patch("cwrap.cli.sys.stdout", new_callable=MagicMock)
def test_version(
    mock_stdout: MagicMock, mock_exit: MagicMock, no_env_files: pytest.MonkeyPatch
) -> None:
    mock_exit.side_effect = SystemExit(0)
    with pytest.raises(SystemExit):
        cli.main(["--version"])
    out = "".join(c[1][0] for c in mock_stdout.write.mock_calls)
    assert re.match(r"cwrap \d+\.\d+\.\d+", out)


@patch("cwrap.cli.execute", return_value=0)
def test_log_level_none_disables_logging(
    _mock_execute: MagicMock, no_env_files: pytest.MonkeyPatch
) -> None:
    with pytest.raises(SystemExit):
        cli.main(["-l", "NONE", "true"])
    assert logging.root.manager.disable == logging.CRITICAL


def test_setup_logging_debug_wins() -> None:
    args = argparse.Namespace(debug=True, log_level="ERROR")
    with mock.patch("cwrap.cli.logging.basicConfig") as mock_config:
        cli.setup_logging(args)
    assert mock_config.call_args.kwargs["level"] == "DEBUG"


def test_env_flags(no_env_files: pytest.MonkeyPatch) -> None:
    no_env_files.setenv("CWRAP_QUIET", "yes")
    no_env_files.setenv("CWRAP_FIRST_FAIL", "0")
    no_env_files.setenv("CWRAP_NUM_RETRIES", "4")
    args = parse(["ls"])
    assert args.quiet
    assert not args.first_fail
    assert args.num_retries == 4


def test_module_entry_point(tmp_path: Path) -> None:
    env = {
        **os.environ,
        "CWRAP_CONFIG_PATHS": "",
        "CWRAP_STATE_DIR": str(tmp_path),
    }
    out = subprocess.check_output(
        [sys.executable, "-m", "cwrap", "-F", str(tmp_path / "x.lock"), "echo", "hi"],
        env=env,
    )
    output_str = out.decode("utf-8")
    assert output_str.startswith("The command has run successfully!")
    assert "Command: echo hi\n" in output_str
