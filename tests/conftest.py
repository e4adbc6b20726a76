"""Shared test fixtures."""

from __future__ import annotations

import os

import pytest

from model_relay.orchestrator.roles import CREDENTIAL_ENV_VARS


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Drop relay settings and provider API keys inherited from the host shell."""
    for name in list(os.environ):
        if name.startswith("MODEL_RELAY_"):
            monkeypatch.delenv(name, raising=False)
    for env_var in CREDENTIAL_ENV_VARS.values():
        monkeypatch.delenv(env_var, raising=False)


@pytest.fixture()
def echo_roles(monkeypatch):
    """Bind every role to the local echo provider."""
    for role in ("MAIN", "FALLBACK", "RESEARCH"):
        monkeypatch.setenv(f"MODEL_RELAY_{role}_PROVIDER", "echo")
        monkeypatch.setenv(f"MODEL_RELAY_{role}_MODEL", f"echo-{role.lower()}")
