"""
Pytest fixtures for the batchrelay SDK tests.
"""
import time

import pytest

from batchrelay_sdk._rate_limited_log import reset_rate_limits
from batchrelay_sdk.config import NetworkConfig, RelayConfig
from batchrelay_sdk.controller import BatchController
from batchrelay_sdk.delegation import DelegationInspector
from batchrelay_sdk.events import EventEmitter
from batchrelay_sdk.signer import LocalSigner

from tests.test_helpers import (
    ALICE_PK, BATCH_CONTRACT, BOB_PK, CHAIN_ID, SPONSOR_PK, STAKING, TEST_RPC_URL, TOKEN,
    FakeChain, FakeRelayer, FakeWeb3
)


# Make time.sleep instantaneous so confirmation polling doesn't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _reset_caches():
    reset_rate_limits()
    NetworkConfig._networks_cache = None
    yield
    NetworkConfig._networks_cache = None


@pytest.fixture
def relay_config():
    return RelayConfig(
        rpc_url=TEST_RPC_URL,
        batch_contract=BATCH_CONTRACT,
        chain_id=CHAIN_ID,
        confirmation_timeout=5,
        poll_interval=1,
    )


@pytest.fixture
def sponsor_signer():
    return LocalSigner(SPONSOR_PK)


@pytest.fixture
def alice_signer():
    return LocalSigner(ALICE_PK)


@pytest.fixture
def bob_signer():
    return LocalSigner(BOB_PK)


@pytest.fixture
def chain():
    fake = FakeChain(batch_contract=BATCH_CONTRACT)
    fake.ledger.add_staking_pool(STAKING, TOKEN)
    return fake


@pytest.fixture
def fake_relayer(chain):
    return FakeRelayer(chain)


@pytest.fixture
def inspector(chain):
    return DelegationInspector(FakeWeb3(chain))


@pytest.fixture
def emitter():
    return EventEmitter()


@pytest.fixture
def recorded_events(emitter):
    events = []
    emitter.subscribe(events.append)
    return events


@pytest.fixture
def make_controller(fake_relayer, inspector, relay_config, emitter):
    """Build a controller for a signer on the fake chain"""
    def _make(signer):
        return BatchController(signer, fake_relayer, inspector, relay_config, emitter=emitter)
    return _make
