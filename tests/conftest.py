from __future__ import annotations

import json
from pathlib import Path

import pytest

from plan_gate import config, logging_utils

from plan_factories import SigningPKI, make_pki

PROJECT_ROOT = Path(__file__).resolve().parents[1]
FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    # Keep developer .env files and shell exports out of unit tests.
    for key in config.ENV_KEYS.values():
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)
    # Leave pytest's log capture handlers in place.
    monkeypatch.setattr(logging_utils, "_logging_configured", True)
    config._load_settings_cached.cache_clear()
    yield
    config._load_settings_cached.cache_clear()


@pytest.fixture
def policy_dir() -> Path:
    return PROJECT_ROOT / "policies" / "terraform"


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES


@pytest.fixture
def load_fixture():
    def _load(name: str) -> dict:
        with (FIXTURES / name).open("r", encoding="utf-8") as handle:
            return json.load(handle)

    return _load


@pytest.fixture(scope="session")
def pki() -> SigningPKI:
    return make_pki()
