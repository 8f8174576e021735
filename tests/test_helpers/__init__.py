"""
Shared constants and fakes for the batchrelay SDK tests.
"""
from .constants import (
    TEST_RPC_URL, CHAIN_ID, SPONSOR_PK, SPONSOR, ALICE_PK, ALICE, BOB_PK, BOB, CHARLIE,
    TOKEN, STAKING, BATCH_CONTRACT, OTHER_IMPL, REVERTING_TARGET
)
from .fake_chain import FakeChain, FakeRelayer, FakeWeb3, TokenLedger

__all__ = [
    "TEST_RPC_URL",
    "CHAIN_ID",
    "SPONSOR_PK",
    "SPONSOR",
    "ALICE_PK",
    "ALICE",
    "BOB_PK",
    "BOB",
    "CHARLIE",
    "TOKEN",
    "STAKING",
    "BATCH_CONTRACT",
    "OTHER_IMPL",
    "REVERTING_TARGET",
    "FakeChain",
    "FakeRelayer",
    "FakeWeb3",
    "TokenLedger",
]
