import unittest
from savings_vault.errors import (
    AddressOccupied, AlreadyWithdrawn, InvalidAmount, LockTooLong, LockTooShort,
    StillLocked, TransferFailed, Unauthorized, VaultNotFound, InsufficientFunds,
    CustodyNotEmpty
)
from savings_vault.keys import OwnerKey
from savings_vault.ledger import AssetType, Ledger, ManualClock
from savings_vault.registry import VaultRecord, VaultState
from savings_vault.requests import CreateVaultRequest, WithdrawRequest
from savings_vault.transfer import AssetTransferService
from savings_vault.vault import TimeLockVault

DAY = 86_400


class VaultTestCase(unittest.TestCase):

    def setUp(self):
        """Set up test fixtures"""
        self.clock = ManualClock(start=0)
        self.ledger = Ledger(clock=self.clock)
        self.vault = TimeLockVault(self.ledger, AssetTransferService(self.ledger))

        self.alice = OwnerKey()
        self.alice_wallet, self.alice_custody = self._open_accounts(self.alice)
        self.ledger.credit(self.alice_wallet, AssetType.STABLE_A, 5_000)

    def _open_accounts(self, key: OwnerKey):
        wallet = OwnerKey().address
        custody = OwnerKey().address
        self.ledger.open_account(wallet, authority=key.address)
        self.ledger.open_account(custody, authority=self.vault.vault_address(key.address))
        return wallet, custody

    def _create(self, key=None, amount=1_000, days=30, asset=AssetType.STABLE_A,
                wallet=None, custody=None, signer=None) -> CreateVaultRequest:
        key = key or self.alice
        request = CreateVaultRequest(
            owner=key.address,
            amount=amount,
            lock_duration_days=days,
            asset_type=asset,
            funding_account=wallet or self.alice_wallet,
            custody_account=custody or self.alice_custody
        )
        return request.sign(signer or key)

    def _withdraw(self, key=None, custody=None, destination=None, signer=None,
                  vault_address=None) -> WithdrawRequest:
        key = key or self.alice
        request = WithdrawRequest(
            owner=key.address,
            custody_account=custody or self.alice_custody,
            destination_account=destination or self.alice_wallet,
            vault_address=vault_address
        )
        return request.sign(signer or key)

    def balance(self, address, asset=AssetType.STABLE_A):
        return self.ledger.balance(address, asset)


class TestCreateVault(VaultTestCase):

    def test_create_vault(self):
        """Funds move into custody and the receipt is stored"""
        event = self.vault.create_vault(self._create())

        self.assertEqual(event['event'], 'VaultCreated')
        self.assertEqual(event['lock_duration_days'], 30)
        self.assertEqual(event['vault_address'], self.vault.vault_address(self.alice.address))
        self.assertEqual(self.balance(self.alice_wallet), 4_000)
        self.assertEqual(self.balance(self.alice_custody), 1_000)

        record = self.vault.get_vault(self.alice.address)
        self.assertEqual(record.owner, self.alice.identity)
        self.assertEqual(record.amount, 1_000)
        self.assertEqual(record.asset_type, AssetType.STABLE_A)
        self.assertEqual(record.created_at, 0)
        self.assertEqual(record.unlock_time, 30 * DAY)
        self.assertFalse(record.withdrawn)
        self.assertEqual(self.vault.vault_state(self.alice.address), VaultState.ACTIVE)

    def test_duration_boundaries(self):
        for days in (30, 1095):
            key = OwnerKey()
            wallet, custody = self._open_accounts(key)
            self.ledger.credit(wallet, AssetType.NATIVE, 10)
            self.clock.set(1_000 + days)

            self.vault.create_vault(self._create(key, 10, days, AssetType.NATIVE, wallet, custody))

            record = self.vault.get_vault(key.address)
            self.assertEqual(record.unlock_time, record.created_at + days * DAY)

        with self.assertRaises(LockTooShort):
            self.vault.create_vault(self._create(days=29))
        with self.assertRaises(LockTooLong):
            self.vault.create_vault(self._create(days=1096))

    def test_zero_amount_creates_nothing(self):
        with self.assertRaises(InvalidAmount):
            self.vault.create_vault(self._create(amount=0))

        self.assertEqual(self.vault.vault_state(self.alice.address), VaultState.NONEXISTENT)
        self.assertFalse(self.ledger.account_exists(self.vault.vault_address(self.alice.address)))
        self.assertEqual(self.balance(self.alice_wallet), 5_000)

    def test_lock_checked_before_amount(self):
        with self.assertRaises(LockTooShort):
            self.vault.create_vault(self._create(amount=0, days=1))

    def test_one_vault_per_owner(self):
        self.vault.create_vault(self._create())
        with self.assertRaises(AddressOccupied):
            self.vault.create_vault(self._create(amount=500, days=60))

        self.assertEqual(self.balance(self.alice_wallet), 4_000)
        self.assertEqual(self.vault.get_vault(self.alice.address).amount, 1_000)

    def test_failed_funding_rolls_back_record(self):
        with self.assertRaises(TransferFailed) as ctx:
            self.vault.create_vault(self._create(amount=5_001))

        self.assertIsInstance(ctx.exception.__cause__, InsufficientFunds)
        self.assertEqual(self.vault.vault_state(self.alice.address), VaultState.NONEXISTENT)
        self.assertEqual(self.balance(self.alice_wallet), 5_000)
        self.assertEqual(self.balance(self.alice_custody), 0)

        self.vault.create_vault(self._create(amount=5_000))
        self.assertEqual(self.balance(self.alice_custody), 5_000)

    def test_unsigned_request_rejected(self):
        request = self._create()
        request.signature = None
        with self.assertRaises(Unauthorized):
            self.vault.create_vault(request)

    def test_request_signed_by_someone_else(self):
        with self.assertRaises(Unauthorized):
            self.vault.create_vault(self._create(signer=OwnerKey()))
        self.assertEqual(self.vault.vault_state(self.alice.address), VaultState.NONEXISTENT)

    def test_tampered_request_rejected(self):
        request = self._create(amount=10)
        request.amount = 4_000
        with self.assertRaises(Unauthorized):
            self.vault.create_vault(request)

    def test_cannot_fund_from_another_wallet(self):
        """Mallory cannot lock Alice's funds in a vault of her own"""
        mallory = OwnerKey()
        _, mallory_custody = self._open_accounts(mallory)

        with self.assertRaises(TransferFailed):
            self.vault.create_vault(self._create(mallory, wallet=self.alice_wallet, custody=mallory_custody))
        self.assertEqual(self.balance(self.alice_wallet), 5_000)
        self.assertEqual(self.vault.vault_state(mallory.address), VaultState.NONEXISTENT)

    def test_custody_must_belong_to_vault(self):
        mallory = OwnerKey()
        _, mallory_custody = self._open_accounts(mallory)

        with self.assertRaises(Unauthorized):
            self.vault.create_vault(self._create(custody=mallory_custody))
        self.assertEqual(self.vault.vault_state(self.alice.address), VaultState.NONEXISTENT)

    def test_prefunded_custody_rejected(self):
        """A custody account must start empty so it holds exactly the locked amount"""
        self.ledger.credit(self.alice_custody, AssetType.STABLE_A, 25)

        with self.assertRaises(CustodyNotEmpty):
            self.vault.create_vault(self._create())
        self.assertEqual(self.vault.vault_state(self.alice.address), VaultState.NONEXISTENT)
        self.assertEqual(self.balance(self.alice_wallet), 5_000)

        fresh_custody = OwnerKey().address
        self.ledger.open_account(fresh_custody, authority=self.vault.vault_address(self.alice.address))
        self.vault.create_vault(self._create(custody=fresh_custody))
        self.assertEqual(self.balance(fresh_custody), 1_000)

        self.clock.set(30 * DAY)
        self.vault.withdraw(self._withdraw(custody=fresh_custody))
        self.assertEqual(self.balance(fresh_custody), 0)

    def test_other_asset_in_custody_allowed(self):
        self.ledger.credit(self.alice_custody, AssetType.NATIVE, 25)
        self.vault.create_vault(self._create())
        self.assertEqual(self.balance(self.alice_custody), 1_000)

    def test_event_history(self):
        self.vault.create_vault(self._create())
        history = self.vault.get_event_history()
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0]['event'], 'VaultCreated')


class TestWithdraw(VaultTestCase):

    def setUp(self):
        super().setUp()
        self.vault.create_vault(self._create())

    def test_immediate_withdraw_is_locked(self):
        with self.assertRaises(StillLocked):
            self.vault.withdraw(self._withdraw())
        self.assertFalse(self.vault.get_vault(self.alice.address).withdrawn)

    def test_maturity_edge(self):
        """1000 STABLE_A for 30 days: locked one second before, paid out exactly at unlock"""
        self.clock.set(30 * DAY - 1)
        with self.assertRaises(StillLocked):
            self.vault.withdraw(self._withdraw())

        self.clock.set(30 * DAY)
        before = self.balance(self.alice_wallet)
        event = self.vault.withdraw(self._withdraw())

        self.assertEqual(event['event'], 'VaultWithdrawn')
        self.assertEqual(event['amount'], 1_000)
        self.assertEqual(self.balance(self.alice_wallet) - before, 1_000)
        self.assertEqual(self.balance(self.alice_custody), 0)
        self.assertTrue(self.vault.get_vault(self.alice.address).withdrawn)
        self.assertEqual(self.vault.vault_state(self.alice.address), VaultState.WITHDRAWN)

    def test_withdraw_exactly_once(self):
        self.clock.set(90 * DAY)
        self.vault.withdraw(self._withdraw())

        with self.assertRaises(AlreadyWithdrawn):
            self.vault.withdraw(self._withdraw())
        self.assertEqual(self.balance(self.alice_wallet), 5_000)

    def test_receipt_survives_withdrawal(self):
        self.clock.set(30 * DAY)
        self.vault.withdraw(self._withdraw())

        record = self.vault.get_vault(self.alice.address)
        self.assertEqual(record.amount, 1_000)
        self.assertEqual(record.lock_duration_days, 30)

    def test_vault_not_found(self):
        bob = OwnerKey()
        bob_wallet, bob_custody = self._open_accounts(bob)
        self.clock.set(400 * DAY)

        with self.assertRaises(VaultNotFound):
            self.vault.withdraw(self._withdraw(bob, bob_custody, bob_wallet))

    def test_forged_owner_signature(self):
        self.clock.set(30 * DAY)
        mallory = OwnerKey()
        with self.assertRaises(Unauthorized):
            self.vault.withdraw(self._withdraw(signer=mallory))
        self.assertFalse(self.vault.get_vault(self.alice.address).withdrawn)

    def test_non_owner_cannot_drain_custody(self):
        """Mallory's own valid vault gives her no authority over Alice's custody"""
        mallory = OwnerKey()
        mallory_wallet, mallory_custody = self._open_accounts(mallory)
        self.ledger.credit(mallory_wallet, AssetType.STABLE_A, 10)
        self.vault.create_vault(self._create(mallory, 10, 30, AssetType.STABLE_A,
                                             mallory_wallet, mallory_custody))
        self.clock.set(30 * DAY)

        with self.assertRaises(Unauthorized):
            self.vault.withdraw(self._withdraw(mallory, self.alice_custody, mallory_wallet))

        alice_vault = self.vault.vault_address(self.alice.address)
        with self.assertRaises(Unauthorized):
            self.vault.withdraw(self._withdraw(mallory, mallory_custody, mallory_wallet,
                                               vault_address=alice_vault))

        self.assertEqual(self.balance(self.alice_custody), 1_000)
        self.assertFalse(self.vault.get_vault(self.alice.address).withdrawn)
        self.assertFalse(self.vault.get_vault(mallory.address).withdrawn)

    def test_non_owner_without_vault(self):
        mallory = OwnerKey()
        mallory_wallet, _ = self._open_accounts(mallory)
        self.clock.set(30 * DAY)

        with self.assertRaises(VaultNotFound):
            self.vault.withdraw(self._withdraw(mallory, self.alice_custody, mallory_wallet))
        self.assertEqual(self.balance(self.alice_custody), 1_000)

    def test_stored_owner_checked(self):
        """A record whose stored owner differs from the caller is refused"""
        address = self.vault.vault_address(self.alice.address)
        _, record = self.vault.registry.load(self.alice.identity)
        tampered = VaultRecord(
            owner=OwnerKey().identity,
            amount=record.amount,
            asset_type=record.asset_type,
            created_at=record.created_at,
            unlock_time=record.unlock_time,
            lock_duration_days=record.lock_duration_days,
            withdrawn=False,
            derivation_nonce=record.derivation_nonce
        )
        with self.ledger.transaction("tamper"):
            self.ledger.write_data(address, tampered.pack())
        self.clock.set(30 * DAY)

        with self.assertRaises(Unauthorized):
            self.vault.withdraw(self._withdraw())
        self.assertEqual(self.balance(self.alice_custody), 1_000)

    def test_matching_vault_address_accepted(self):
        self.clock.set(30 * DAY)
        address = self.vault.vault_address(self.alice.address)
        event = self.vault.withdraw(self._withdraw(vault_address=address))
        self.assertEqual(event['vault_address'], address)

    def test_failed_payout_rolls_back(self):
        """Payout failure leaves the vault active with funds still in custody"""
        self.clock.set(30 * DAY)
        missing = OwnerKey().address

        with self.assertLogs('savings_vault.vault', level='ERROR'):
            with self.assertRaises(TransferFailed):
                self.vault.withdraw(self._withdraw(destination=missing))

        self.assertFalse(self.vault.get_vault(self.alice.address).withdrawn)
        self.assertEqual(self.balance(self.alice_custody), 1_000)

        self.vault.withdraw(self._withdraw())
        self.assertEqual(self.balance(self.alice_wallet), 5_000)

    def test_payout_to_custody_refused(self):
        """Paying custody back to itself would mark the vault withdrawn with funds still locked"""
        self.clock.set(30 * DAY)

        with self.assertRaises(Unauthorized):
            self.vault.withdraw(self._withdraw(destination=self.alice_custody))

        self.assertFalse(self.vault.get_vault(self.alice.address).withdrawn)
        self.assertEqual(self.balance(self.alice_custody), 1_000)

    def test_payout_to_second_custody_account_refused(self):
        second_custody = OwnerKey().address
        self.ledger.open_account(second_custody, authority=self.vault.vault_address(self.alice.address))
        self.clock.set(30 * DAY)

        with self.assertRaises(Unauthorized):
            self.vault.withdraw(self._withdraw(destination=second_custody))

        self.assertFalse(self.vault.get_vault(self.alice.address).withdrawn)
        self.assertEqual(self.balance(self.alice_custody), 1_000)
        self.assertEqual(self.balance(second_custody), 0)

    def test_custody_empty_whenever_withdrawn(self):
        """Whatever destination is supplied, withdrawn implies an empty custody account"""
        second_custody = OwnerKey().address
        self.ledger.open_account(second_custody, authority=self.vault.vault_address(self.alice.address))
        other_wallet = OwnerKey().address
        self.ledger.open_account(other_wallet, authority=self.alice.address)
        self.clock.set(30 * DAY)

        for destination in (self.alice_custody, second_custody, OwnerKey().address, other_wallet):
            try:
                self.vault.withdraw(self._withdraw(destination=destination))
            except (Unauthorized, TransferFailed):
                pass

            record = self.vault.get_vault(self.alice.address)
            if record.withdrawn:
                self.assertEqual(self.balance(self.alice_custody), 0)
            else:
                self.assertEqual(self.balance(self.alice_custody), 1_000)

        self.assertTrue(self.vault.get_vault(self.alice.address).withdrawn)
        self.assertEqual(self.balance(other_wallet), 1_000)

    def test_supply_is_conserved(self):
        self.clock.set(30 * DAY)
        self.vault.withdraw(self._withdraw())
        self.assertEqual(self.ledger.total_supply(AssetType.STABLE_A), 5_000)


if __name__ == '__main__':
    unittest.main()
