import logging
from pathlib import Path

import pytest

from core.env import env_bool, env_int, env_str
from core.env_utils import load_dotenv_if_available, require_env_vars
from core.logging import resolve_log_level


def test_env_str_strips_and_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STRIPE_API_VERSION", "  2024-06-20 ")
    monkeypatch.setenv("STRIPE_WEBHOOK_STATE_PATH", "   ")

    assert env_str("STRIPE_API_VERSION") == "2024-06-20"
    assert env_str("STRIPE_WEBHOOK_STATE_PATH", "fallback") == "fallback"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("600", 600), ("0", 300), ("abc", 300)],
)
def test_env_int_respects_minimum(monkeypatch: pytest.MonkeyPatch, raw: str, expected: int) -> None:
    monkeypatch.setenv("STRIPE_WEBHOOK_TOLERANCE_SECONDS", raw)

    assert env_int("STRIPE_WEBHOOK_TOLERANCE_SECONDS", 300, minimum=1) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("yes", True), ("OFF", False), ("maybe", True)],
)
def test_env_bool(monkeypatch: pytest.MonkeyPatch, raw: str, expected: bool) -> None:
    monkeypatch.setenv("STRIPE_WEBHOOK_DEDUPE_ENABLED", raw)

    assert env_bool("STRIPE_WEBHOOK_DEDUPE_ENABLED", True) is expected


def test_require_env_vars_names_missing_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_x")

    with pytest.raises(RuntimeError) as excinfo:
        require_env_vars(["STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"], context="billing")

    assert str(excinfo.value).startswith("[billing] Missing required environment variables: STRIPE_SECRET_KEY.")


def test_load_dotenv_does_not_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("STRIPE_API_VERSION=from-file\nSTRIPE_WEBHOOK_AUDIT_PATH=/tmp/audit.jsonl\n", encoding="utf-8")
    monkeypatch.setenv("STRIPE_API_VERSION", "from-env")
    monkeypatch.setenv("STRIPE_WEBHOOK_AUDIT_PATH", "placeholder")
    monkeypatch.delenv("STRIPE_WEBHOOK_AUDIT_PATH")

    load_dotenv_if_available(env_file)

    assert env_str("STRIPE_API_VERSION") == "from-env"
    assert env_str("STRIPE_WEBHOOK_AUDIT_PATH") == "/tmp/audit.jsonl"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("", logging.INFO), ("debug", logging.DEBUG), ("30", 30), ("chatty", logging.INFO)],
)
def test_resolve_log_level(monkeypatch: pytest.MonkeyPatch, raw: str, expected: int) -> None:
    monkeypatch.setenv("LOG_LEVEL", raw)

    assert resolve_log_level() == expected
