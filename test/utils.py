from __future__ import annotations
import io
from typing import Any
from cwrap._models import CommandSpec, RunConfig, RunResult
from cwrap._transports import Notifier
from cwrap.cwrap_main import RunManager


def make_config(
    cli_args: list[str], state_dir: str, lock_path: str, **kwargs: Any
) -> RunConfig:
    """Build a RunConfig with test-friendly defaults.

    Args:
        cli_args: Command and its arguments as a list (e.g., ["echo", "hello"])
        **kwargs: Override any RunConfig field
    """
    shell = kwargs.pop("shell", False)
    defaults: dict[str, Any] = {
        "state_dir": state_dir,
        "lock_file": lock_path,
        "retry_secs": 0.01,
        "poll_interval": 0.01,
    }
    defaults.update(kwargs)
    return RunConfig(command=CommandSpec.from_argv(cli_args, shell=shell), **defaults)


def run_cwrap(config: RunConfig) -> tuple[int, str, RunManager]:
    """Run one invocation, returning (exit code, printed output, manager)."""
    out = io.StringIO()
    manager = RunManager(config, notifier=Notifier(stream=out))
    exit_code = manager.run()
    return exit_code, out.getvalue(), manager


def failed_run(exit_code: int = 1, **kwargs: Any) -> RunResult:
    defaults: dict[str, Any] = {
        "stdout": "",
        "stderr": "boom",
        "start_time": 1_500_000_000.0,
        "duration": 0.5,
    }
    defaults.update(kwargs)
    return RunResult(exit_code=exit_code, **defaults)
