from __future__ import annotations
from importlib.metadata import version
import logging
import random
from typing import Optional
from cwrap._exceptions import LockError, StateLoadError, StateSaveError
from cwrap._executor import run_command
from cwrap._fingerprint import generate_fingerprint
from cwrap._formatter import format_success_report
from cwrap._lock import FileLock
from cwrap._models import RunConfig, RunResult, StatePaths
from cwrap._policy import ReportPolicy
from cwrap._signals import Cancellation, install_handlers, restore_handlers
from cwrap._state import RunState
from cwrap._transports import Notifier

__version__ = version("cwrap")

lgr = logging.getLogger("cwrap")


class RunManager:
    """One invocation of a wrapped command.

    fuzz sleep -> lock -> load state -> run -> classify -> report -> save
    state -> unlock.  Once the lock is held it is released on every way out
    of `run()`.
    """

    def __init__(
        self,
        config: RunConfig,
        notifier: Optional[Notifier] = None,
        cancel: Optional[Cancellation] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.notifier = (
            notifier if notifier is not None else Notifier.from_config(config)
        )
        self.cancel = cancel if cancel is not None else Cancellation()
        self.log = logger if logger is not None else lgr
        self.paths = StatePaths.create(
            generate_fingerprint(config.command),
            state_dir=config.state_dir,
            lock_file=config.lock_file,
        )
        self.lock = FileLock(self.paths.lock)
        self.policy = ReportPolicy(
            threshold=config.num_fails,
            backoff=config.backoff,
            first_fail=config.first_fail,
        )
        self.state: Optional[RunState] = None

    @property
    def command_line(self) -> str:
        return self.config.command.command_line

    def fuzz_sleep(self) -> None:
        if self.config.fuzz <= 0:
            return
        delay = random.uniform(0, self.config.fuzz)
        self.log.debug("Sleeping (fuzz) for %.2f secs", delay)
        self.cancel.wait(delay)

    def load_state(self) -> RunState:
        state = RunState.load(self.paths.state)
        if state is None:
            state = RunState(command=self.config.command)
        return state

    def handle_result(self, state: RunState, run: RunResult) -> None:
        if run.failed:
            self.notifier.log_failure(self.command_line, run)
            report = self.policy.handle_failure(state, run)
            if report is not None:
                self.notifier.failure_report(report)
        else:
            if not self.config.quiet:
                self.notifier.success_report(
                    format_success_report(self.command_line, run)
                )
            state.on_success()

    def save_state(self, state: RunState) -> None:
        try:
            state.save(self.paths.state)
        except StateSaveError as exc:
            self.log.error("Serialize failure: %s", exc)

    def run(self) -> int:
        """Run the command once; returns the exit status for cwrap itself."""
        self.fuzz_sleep()
        if self.cancel.is_set():
            return self._interrupted("before taking the lock")

        try:
            self.lock.acquire(
                max_retries=self.config.num_retries,
                retry_interval=self.config.retry_secs,
                cancel=self.cancel,
            )
        except LockError as exc:
            if self.cancel.is_set():
                return self._interrupted("while waiting for the lock")
            if self.config.ignore_retry_fails:
                self.log.debug("Could not get lock, ignoring: %s", exc)
                return 0
            self.log.error(
                "Could not get lock to run instance in %d retries: %s",
                self.config.num_retries,
                exc,
            )
            return 1

        exit_code = 0
        try:
            exit_code = self._run_locked()
        finally:
            try:
                self.lock.release()
            except LockError as exc:
                self.log.error("Failed to unlock this instance: %s", exc)
                exit_code = 1
        return exit_code

    def _interrupted(self, what: str) -> int:
        self.log.warning(
            "Interrupted by signal %s (received %d time(s)), %s",
            self.cancel.signum,
            self.cancel.sigcount,
            what,
        )
        return self.cancel.exit_code

    def _run_locked(self) -> int:
        try:
            self.state = state = self.load_state()
        except StateLoadError as exc:
            self.log.error("Error loading command state: %s", exc)
            return 1

        self.log.info("cwrap %s is executing %r", __version__, self.command_line)
        run = run_command(
            self.config.command,
            timeout=self.config.timeout,
            poll_interval=self.config.poll_interval,
            cancel=self.cancel,
            env=self.config.child_env(),
        )
        if self.cancel.is_set():
            # the state would not be consistent, leave it as it was
            return self._interrupted("not recording this run")
        self.handle_result(state, run)
        self.save_state(state)
        return 0


def execute(config: RunConfig, notifier: Optional[Notifier] = None) -> int:
    """Run `config.command` under cwrap's lock, state and reporting.

    Returns the exit status cwrap itself should exit with, which is 0 even
    when the wrapped command failed.
    """
    cancel = Cancellation()
    previous = install_handlers(cancel)
    manager = RunManager(config, notifier=notifier, cancel=cancel)
    try:
        return manager.run()
    finally:
        restore_handlers(previous)
        manager.notifier.close()
