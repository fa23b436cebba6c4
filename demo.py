#!/usr/bin/env python3
"""
Complete demo of the Time-Lock Savings Vault
"""

from savings_vault.errors import StillLocked, AlreadyWithdrawn, Unauthorized
from savings_vault.keys import OwnerKey
from savings_vault.ledger import Ledger, AssetType, ManualClock
from savings_vault.requests import CreateVaultRequest, WithdrawRequest
from savings_vault.rules import SECONDS_PER_DAY
from savings_vault.transfer import AssetTransferService
from savings_vault.vault import TimeLockVault


def main():
    print("=" * 60)
    print("🏦 TIME-LOCK SAVINGS VAULT - COMPLETE DEMO")
    print("=" * 60)
    print()

    # Step 1: Setup
    print("🔧 STEP 1: Setting up ledger and participants")
    print("-" * 40)

    clock = ManualClock(start=1_700_000_000)
    ledger = Ledger(clock=clock)
    vault = TimeLockVault(ledger, AssetTransferService(ledger))

    alice = OwnerKey()
    mallory = OwnerKey()
    alice_wallet = OwnerKey().address
    alice_custody = OwnerKey().address

    ledger.open_account(alice_wallet, authority=alice.address)
    ledger.open_account(alice_custody, authority=vault.vault_address(alice.address))
    ledger.credit(alice_wallet, AssetType.STABLE_A, 5_000)

    print(f"✅ Alice: {alice.address[:16]}...")
    print(f"✅ Mallory: {mallory.address[:16]}...")
    print(f"✅ Alice's wallet: {ledger.balance(alice_wallet, AssetType.STABLE_A):,} STABLE_A")
    print(f"✅ Alice's vault address: {vault.vault_address(alice.address)}")
    print()

    # Step 2: Create Vault
    print("🏗️  STEP 2: Locking 1,000 STABLE_A for 30 days")
    print("-" * 40)

    create = CreateVaultRequest(
        owner=alice.address,
        amount=1_000,
        lock_duration_days=30,
        asset_type=AssetType.STABLE_A,
        funding_account=alice_wallet,
        custody_account=alice_custody
    ).sign(alice)

    event = vault.create_vault(create)
    print(f"✅ Vault created at {event['vault_address'][:16]}...")
    print(f"✅ Unlocks at: {event['unlock_time']}")
    print(f"✅ Wallet balance: {ledger.balance(alice_wallet, AssetType.STABLE_A):,}")
    print(f"✅ Custody balance: {ledger.balance(alice_custody, AssetType.STABLE_A):,}")
    print()

    # Step 3: Withdrawals
    print("💰 STEP 3: Testing withdrawal scenarios")
    print("-" * 40)

    withdraw = WithdrawRequest(
        owner=alice.address,
        custody_account=alice_custody,
        destination_account=alice_wallet
    ).sign(alice)

    print("Test 1: Withdraw one second before maturity")
    clock.advance(30 * SECONDS_PER_DAY - 1)
    try:
        vault.withdraw(withdraw)
        print("   ❌ UNEXPECTED: Should have failed")
    except StillLocked as e:
        print(f"   ✅ EXPECTED FAILURE: {e}")
    print()

    print("Test 2: Mallory tries to drain Alice's custody account")
    theft = WithdrawRequest(
        owner=mallory.address,
        custody_account=alice_custody,
        destination_account=alice_wallet
    ).sign(mallory)
    try:
        vault.withdraw(theft)
        print("   ❌ UNEXPECTED: Should have failed")
    except Exception as e:
        print(f"   ✅ EXPECTED FAILURE: {type(e).__name__}: {e}")
    print()

    print("Test 3: Forged request claiming to be Alice")
    forged = WithdrawRequest(
        owner=alice.address,
        custody_account=alice_custody,
        destination_account=alice_wallet
    ).sign(mallory)
    try:
        vault.withdraw(forged)
        print("   ❌ UNEXPECTED: Should have failed")
    except Unauthorized as e:
        print(f"   ✅ EXPECTED FAILURE: {e}")
    print()

    print("Test 4: Withdraw at maturity")
    clock.advance(1)
    event = vault.withdraw(withdraw)
    print(f"   ✅ SUCCESS: Withdrew {event['amount']:,} {event['asset_type']}")
    print(f"   💰 Wallet balance: {ledger.balance(alice_wallet, AssetType.STABLE_A):,}")
    print()

    print("Test 5: Withdraw a second time")
    try:
        vault.withdraw(withdraw)
        print("   ❌ UNEXPECTED: Should have failed")
    except AlreadyWithdrawn as e:
        print(f"   ✅ EXPECTED FAILURE: {e}")
    print()

    # Step 4: Summary
    print("📈 STEP 4: Vault receipt")
    print("-" * 40)

    for key, value in vault.get_vault(alice.address).to_dict().items():
        print(f"   {key}: {value}")
    print()

    print("📊 Final Statistics:")
    print(f"   Ledger transactions: {len(ledger.journal())}")
    print(f"   Vault events: {len(vault.get_event_history())}")
    print(f"   STABLE_A supply: {ledger.total_supply(AssetType.STABLE_A):,}")


if __name__ == "__main__":
    main()
