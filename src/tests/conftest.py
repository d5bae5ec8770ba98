"""Pytest configuration and shared fixtures."""

import functools
import sys
from pathlib import Path

import pytest
from faker import Faker

from harness_fakes import FAKE_CLIENT, FAKE_MONGOD, FakeServer
from mongo_harness.client.session import ClientSession
from mongo_harness.config.settings import HarnessSettings


@pytest.fixture
def faker_instance() -> Faker:
    """Seeded Faker so generated names are reproducible per test."""
    instance = Faker()
    instance.seed_instance(1234)
    return instance


@pytest.fixture
def harness_settings(tmp_path: Path) -> HarnessSettings:
    """Settings pointing at the helper server and client scripts with short timeouts."""
    return HarnessSettings(
        server_command=[sys.executable, FAKE_MONGOD],
        client_command=[sys.executable, FAKE_CLIENT],
        data_root=str(tmp_path / "data"),
        tls_fixture_dir=str(tmp_path / "certs"),
        startup_timeout=15.0,
        shutdown_timeout=1.0,
        program_timeout=15.0,
        connect_timeout_ms=500,
        command_timeout_ms=1000,
        poll_interval=0.02,
        max_poll_interval=0.2,
        output_grace_period=0.3,
    )


@pytest.fixture
def fake_server() -> FakeServer:
    """Pretend server with authentication enabled and no users."""
    return FakeServer(auth=True)


@pytest.fixture
def session_factory(fake_server: FakeServer):
    """``ClientSession.connect`` wired to the in-memory server."""
    return functools.partial(ClientSession.connect, client_factory=fake_server.client_factory)
