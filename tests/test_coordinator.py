"""
Tests for multi-account coordination.
"""
import threading

import pytest

from batchrelay_sdk.calls import erc20_transfer, native_transfer
from batchrelay_sdk.coordinator import BatchCoordinator
from batchrelay_sdk.exceptions import CallRevertedError
from batchrelay_sdk.signer import LocalSigner

from tests.test_helpers import ALICE, ALICE_PK, BOB, CHARLIE, TOKEN


@pytest.fixture
def coordinator(fake_relayer, inspector, relay_config, emitter):
    with BatchCoordinator(fake_relayer, inspector, relay_config, max_workers=4, emitter=emitter) as coord:
        yield coord


def test_one_controller_per_account(coordinator, alice_signer):
    first = coordinator.controller_for(alice_signer)
    again = coordinator.controller_for(LocalSigner(ALICE_PK))
    assert first is again


def test_accounts_run_in_parallel(coordinator, chain, alice_signer, bob_signer):
    chain.ledger.balances[(TOKEN, ALICE)] = 100
    chain.ledger.balances[(TOKEN, BOB)] = 100

    outcomes = coordinator.execute_all([
        (alice_signer, [erc20_transfer(TOKEN, CHARLIE, 40)]),
        (bob_signer, [erc20_transfer(TOKEN, CHARLIE, 60)]),
    ])

    assert set(outcomes) == {ALICE, BOB}
    assert outcomes[ALICE].nonce == 0
    assert outcomes[BOB].nonce == 0
    assert chain.ledger.balance_of(TOKEN, CHARLIE) == 100


def test_failure_is_isolated(coordinator, chain, alice_signer, bob_signer):
    chain.ledger.balances[(TOKEN, ALICE)] = 100

    outcomes = coordinator.execute_all([
        (alice_signer, [erc20_transfer(TOKEN, CHARLIE, 40)]),
        (bob_signer, [erc20_transfer(TOKEN, CHARLIE, 60)]),
    ])

    assert outcomes[ALICE].batch_receipt.succeeded
    assert isinstance(outcomes[BOB], CallRevertedError)
    assert outcomes[BOB].account == BOB
    assert chain.batch_nonce(BOB) == 0


def test_same_account_jobs_run_in_submission_order(coordinator, chain, alice_signer):
    futures = [coordinator.submit(alice_signer, [native_transfer(CHARLIE, 0)]) for _ in range(5)]
    assert [f.result(timeout=5).nonce for f in futures] == [0, 1, 2, 3, 4]
    assert chain.batch_nonce(ALICE) == 5


def test_busy_account_does_not_starve_others(fake_relayer, inspector, relay_config, alice_signer, bob_signer):
    gate = threading.Event()
    submit_batch = fake_relayer.submit_batch

    def held_for_alice(request, signature, value=0):
        if request.account == ALICE:
            assert gate.wait(timeout=5)
        return submit_batch(request, signature, value)

    fake_relayer.submit_batch = held_for_alice

    with BatchCoordinator(fake_relayer, inspector, relay_config, max_workers=2) as coord:
        try:
            alice_jobs = [coord.submit(alice_signer, [native_transfer(CHARLIE, 0)]) for _ in range(2)]
            bob_job = coord.submit(bob_signer, [native_transfer(CHARLIE, 0)])

            assert bob_job.result(timeout=5).nonce == 0
            assert not any(f.done() for f in alice_jobs)
        finally:
            gate.set()
        assert [f.result(timeout=5).nonce for f in alice_jobs] == [0, 1]


def test_failed_job_does_not_block_account_queue(coordinator, chain, alice_signer):
    failing = coordinator.submit(alice_signer, [erc20_transfer(TOKEN, CHARLIE, 1)])
    following = coordinator.submit(alice_signer, [native_transfer(CHARLIE, 0)])

    with pytest.raises(CallRevertedError):
        failing.result(timeout=5)
    assert following.result(timeout=5).nonce == 0


def test_kwargs_forwarded(coordinator, chain, alice_signer):
    outcomes = coordinator.execute_all([
        (alice_signer, [native_transfer(CHARLIE, 5)], {"value": 5, "revoke_after": True}),
    ])
    assert outcomes[ALICE].revocation_receipt is not None
    assert chain.ledger.native[CHARLIE] == 5


def test_controller_factory(fake_relayer, inspector, relay_config, alice_signer):
    created = []

    def factory(signer):
        created.append(signer.address)
        return "controller"

    with BatchCoordinator(fake_relayer, inspector, relay_config, controller_factory=factory) as coord:
        assert coord.controller_for(alice_signer) == "controller"
    assert created == [ALICE]


def test_invalid_worker_count(fake_relayer, inspector, relay_config):
    with pytest.raises(ValueError):
        BatchCoordinator(fake_relayer, inspector, relay_config, max_workers=0)

