"""Pytest configuration and fixtures for koi-engine tests.

This file intentionally keeps the test environment lean (no extra deps).
To support `async def` tests without pytest-asyncio, we provide a minimal
hook that runs coroutine test functions using the stdlib's asyncio.
"""

import asyncio
import inspect

import pytest

from koi_engine.settings import clear_settings_cache


@pytest.fixture(autouse=True)
def isolate_state_between_tests(tmp_path_factory, monkeypatch):
    """Point every state/data file at a throwaway directory.

    Prevents tests from writing running-task state, task history or memory
    records into the user's real ~/.koi_engine, and reloads settings so each
    test sees its own environment.
    """
    state_dir = tmp_path_factory.mktemp("koi_state")
    monkeypatch.setenv("KOI_STATE_DIR", str(state_dir))
    monkeypatch.setenv("KOI_LOGFIRE_ENABLED", "false")
    monkeypatch.delenv("LOGFIRE_TOKEN", raising=False)
    clear_settings_cache()

    yield state_dir

    clear_settings_cache()


@pytest.fixture
def state_dir(isolate_state_between_tests):
    """The isolated state directory for this test."""
    return isolate_state_between_tests


def pytest_pyfunc_call(pyfuncitem: pytest.Item) -> bool | None:
    """Enable running `async def` tests without external plugins.

    If the test function is a coroutine function, execute it via asyncio.run.
    Return True to signal that the call was handled, allowing pytest to
    proceed without complaining about missing async plugins.
    """
    test_func = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_func):
        kwargs = {
            name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames
        }
        asyncio.run(test_func(**kwargs))
        return True
    return None
