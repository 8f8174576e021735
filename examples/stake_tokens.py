#!/usr/bin/env python3
"""
Approve + stake in one sponsored transaction, for several accounts at once.
"""
import os
import logging

from batchrelay_sdk import BatchRelayClient, LocalSigner, RelayConfig
from batchrelay_sdk.calls import erc20_approve, stake_call

logging.basicConfig(level=logging.INFO)


def main():
    # Read configuration from environment
    TOKEN_ADDRESS = os.environ.get("TOKEN_ADDRESS")
    STAKING_ADDRESS = os.environ.get("STAKING_ADDRESS")
    SPONSOR_KEY = os.environ.get("SPONSOR_PRIVATE_KEY")
    ACCOUNT_KEYS = [k for k in os.environ.get("ACCOUNT_PRIVATE_KEYS", "").split(",") if k]
    STAKE_AMOUNT = int(os.environ.get("STAKE_AMOUNT", str(100 * 10**18)))

    if not TOKEN_ADDRESS or not STAKING_ADDRESS or not SPONSOR_KEY or not ACCOUNT_KEYS:
        print("ERROR: TOKEN_ADDRESS, STAKING_ADDRESS, SPONSOR_PRIVATE_KEY and ACCOUNT_PRIVATE_KEYS are required")
        return

    try:
        config = RelayConfig.from_env()
    except ValueError as e:
        print(f"ERROR: invalid BATCHRELAY_* configuration: {e}")
        return
    client = BatchRelayClient(config, sponsor_priv_key=SPONSOR_KEY)
    accounts = [LocalSigner(key, scheme=config.signature_scheme) for key in ACCOUNT_KEYS]

    calls = [
        erc20_approve(TOKEN_ADDRESS, STAKING_ADDRESS, STAKE_AMOUNT),
        stake_call(STAKING_ADDRESS, STAKE_AMOUNT),
    ]

    # Accounts are processed in parallel; each account's steps stay in order
    with client.coordinator(max_workers=len(accounts)) as coordinator:
        outcomes = coordinator.execute_all([(account, calls) for account in accounts])

    for address, outcome in outcomes.items():
        if isinstance(outcome, Exception):
            print(f"{address}: FAILED - {outcome}")
        else:
            print(f"{address}: staked at nonce {outcome.nonce}, tx {outcome.batch_receipt.tx_hash}")


if __name__ == "__main__":
    main()
