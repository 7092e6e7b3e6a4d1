"""Shared fixtures: a temp-path config and a fully wired hub without background loops."""

import random

import pytest
import pytest_asyncio

from aura.bootstrap import build_hub
from aura.config import AuraConfig
from aura.hub.core import AutomationHub
from aura.shared.providers import Providers


@pytest.fixture
def config(tmp_path):
    """Config pointing at a temp SQLite database."""
    cfg = AuraConfig(user_id="test-user")
    cfg.storage.db_path = tmp_path / "aura.db"
    cfg.scheduler.shutdown_grace = 1.0
    return cfg


@pytest_asyncio.fixture
async def hub(config):
    """Bare hub; tests register modules and call initialize themselves."""
    hub = AutomationHub(config)
    yield hub
    await hub.shutdown()


@pytest_asyncio.fixture
async def components(config):
    """Every module wired by build_hub, initialized with scheduling disabled."""
    wired = build_hub(config, providers=Providers(), rng=random.Random(7))
    await wired.hub.initialize(background=False)
    yield wired
    await wired.hub.shutdown()
