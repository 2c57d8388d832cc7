"""Pytest configuration for toolwire tests.

Shared fixtures build handler and connection registries with a small set
of test methods, plus helpers for waiting on asynchronous state.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from toolwire.config import reset_config
from toolwire.socket_server.dispatcher import HandlerRegistry
from toolwire.socket_server.registry import ConnectionRegistry


async def _echo(params: dict[str, Any]) -> dict[str, Any]:
    return {"text": params["text"]}


async def _fail(params: dict[str, Any]) -> None:
    raise RuntimeError("tool exploded")


def _add(params: dict[str, Any]) -> int:
    return params["a"] + params["b"]


@pytest.fixture
def handlers() -> HandlerRegistry:
    """Handler registry with echo, add (sync), and fail methods."""
    registry = HandlerRegistry()
    registry.register(
        "echo",
        _echo,
        {"type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]},
    )
    registry.register("add", _add, {"required": ["a", "b"]})
    registry.register("fail", _fail)
    return registry


@pytest.fixture
def connections() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture(autouse=True)
def _reset_config():
    """Drop the cached configuration between tests."""
    reset_config()
    yield
    reset_config()


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    """Async helper: poll a predicate until it is true or a timeout elapses."""
    return _wait_until
