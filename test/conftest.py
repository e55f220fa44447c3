import logging
import os
from pathlib import Path
from typing import Generator
from unittest import mock
import pytest


@pytest.fixture(autouse=True)
def reset_logger_state() -> Generator:
    """Automatically reset logger state after each test.

    cli.main() can disable logging globally for log level NONE, which
    affects subsequent tests.
    """
    import cwrap.cwrap_main as main_module

    yield

    logging.disable(logging.NOTSET)
    main_module.lgr.disabled = False
    main_module.lgr.setLevel(logging.NOTSET)


@pytest.fixture
def state_dir(tmp_path: Path) -> str:
    path = tmp_path / "state"
    path.mkdir()
    return str(path)


@pytest.fixture
def lock_path(tmp_path: Path) -> str:
    return str(tmp_path / "cwrap-test.lock")


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Generator:
    """Provide a clean environment for testing .env file loading.

    Clears all CWRAP_* and TEST_* environment variables to avoid test pollution.
    Returns the monkeypatch instance for setting new env vars in tests.
    """
    for key in list(os.environ.keys()):
        if key.startswith("CWRAP_") or key.startswith("TEST_"):
            monkeypatch.delenv(key, raising=False)
    # load_dotenv writes straight into os.environ
    with mock.patch.dict(os.environ):
        yield monkeypatch
