#!/usr/bin/env python3
"""
Sponsored mint + transfer in a single transaction.

The account (ALICE) never pays gas: the sponsor delegates ALICE to the batch
contract, then submits ALICE's signed batch.
"""
import os
import logging

from batchrelay_sdk import BatchRelayClient, LocalSigner, LoggingSubscriber, RelayConfig
from batchrelay_sdk.calls import erc20_mint, erc20_transfer
from batchrelay_sdk.config import NetworkConfig
from batchrelay_sdk.exceptions import BatchRelayError

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main():
    """
    Demonstrate a sponsored batch.

    This example shows how to:
    1. Build the relay configuration from the environment
    2. Mint tokens to the account and transfer part of them in one batch
    3. Optionally revoke the delegation afterwards
    """
    # Read configuration from environment
    NETWORK = os.environ.get("BATCHRELAY_NETWORK", "bsc")
    TOKEN_ADDRESS = os.environ.get("TOKEN_ADDRESS")
    SPONSOR_KEY = os.environ.get("SPONSOR_PRIVATE_KEY")
    ACCOUNT_KEY = os.environ.get("ACCOUNT_PRIVATE_KEY")
    REVOKE_AFTER = os.environ.get("REVOKE_AFTER", "").lower() in ("1", "true", "yes")

    # Verify configuration
    if not TOKEN_ADDRESS or not SPONSOR_KEY or not ACCOUNT_KEY:
        print("ERROR: TOKEN_ADDRESS, SPONSOR_PRIVATE_KEY and ACCOUNT_PRIVATE_KEY are required")
        return

    try:
        config = RelayConfig.from_env()
    except ValueError as e:
        print(f"ERROR: invalid BATCHRELAY_* configuration: {e}")
        return
    client = BatchRelayClient(config, sponsor_priv_key=SPONSOR_KEY)
    client.emitter.subscribe(LoggingSubscriber())
    account = LocalSigner(ACCOUNT_KEY, scheme=config.signature_scheme)

    mint_amount = 1000 * 10**18
    transfer_amount = 500 * 10**18
    calls = [
        erc20_mint(TOKEN_ADDRESS, account.address, mint_amount),
        erc20_transfer(TOKEN_ADDRESS, client.sponsor_address, transfer_amount),
    ]

    print("\n=== Sponsored mint + transfer ===\n")
    print(f"Account: {account.address}")
    print(f"Sponsor: {client.sponsor_address}")
    print(f"Current delegation: {client.delegation_of(account.address)}")

    try:
        result = client.execute(account, calls, revoke_after=REVOKE_AFTER)
    except BatchRelayError as e:
        print(f"Batch failed: {e}")
        return

    print(f"Batch executed at nonce {result.nonce}")
    print(f"Transaction hash: {result.batch_receipt.tx_hash}")
    print(f"Gas used: {result.gas_used} (total {result.total_gas_used})")
    if NETWORK in NetworkConfig.load_networks():
        url = client.explorer_url(result.batch_receipt.tx_hash, NETWORK)
        if url:
            print(f"Explorer: {url}")
    if result.revocation_receipt:
        print(f"Delegation revoked in {result.revocation_receipt.tx_hash}")


if __name__ == "__main__":
    main()
