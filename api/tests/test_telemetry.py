from __future__ import annotations

import logging
from typing import Any

import pytest
from fastapi import FastAPI

from app.core import telemetry
from app.core.config import Settings


@pytest.fixture
def logging_calls(monkeypatch: pytest.MonkeyPatch) -> dict[str, Any]:
    calls: dict[str, Any] = {"correlation": 0, "basic_config": None}

    def install() -> None:
        calls["correlation"] += 1

    def basic_config(**kwargs: Any) -> None:
        calls["basic_config"] = kwargs

    monkeypatch.setattr(telemetry, "_install_log_correlation", install)
    monkeypatch.setattr(logging, "basicConfig", basic_config)
    monkeypatch.setattr(logging.getLogger(), "handlers", [])
    return calls


def test_log_correlation_is_installed_by_default(logging_calls: dict[str, Any]) -> None:
    runtime = telemetry.setup_api_telemetry(FastAPI(), Settings(otel_enabled=False))

    assert runtime.enabled is False
    assert logging_calls["correlation"] == 1
    assert logging_calls["basic_config"]["format"] == telemetry.CORRELATED_LOG_FORMAT


def test_log_correlation_can_be_disabled(logging_calls: dict[str, Any]) -> None:
    telemetry.setup_api_telemetry(FastAPI(), Settings(otel_enabled=False, otel_log_correlation=False))

    assert logging_calls["correlation"] == 0
    assert "trace_id" not in logging_calls["basic_config"]["format"]


def test_parse_headers_skips_malformed_items() -> None:
    assert telemetry.parse_headers("authorization=Bearer abc, broken ,x-tenant = blog") == {
        "authorization": "Bearer abc",
        "x-tenant": "blog",
    }
    assert telemetry.parse_headers(None) == {}
