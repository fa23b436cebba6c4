import logging
from typing import List

from .errors import (
    AlreadyWithdrawn, CustodyNotEmpty, StillLocked, TransferError, TransferFailed,
    Unauthorized, VaultError
)
from .keys import decode_address
from .ledger import AssetType, Ledger
from .registry import DOMAIN_TAG, PROGRAM_ID, VaultRecord, VaultRegistry, VaultState
from .requests import CreateVaultRequest, WithdrawRequest
from .rules import LockRules
from .transfer import AssetTransferService, Authority, CustodyAuthority, SignerAuthority

logger = logging.getLogger(__name__)


class TimeLockVault:
    """Lifecycle handlers: create a locked vault, withdraw it once after maturity"""

    def __init__(self, ledger: Ledger, transfer_service: AssetTransferService,
                 rules: LockRules = None, domain_tag: bytes = DOMAIN_TAG,
                 program_id: str = PROGRAM_ID):
        self.ledger = ledger
        self.transfers = transfer_service
        self.rules = rules or LockRules.standard()
        self.program_id = program_id
        self.registry = VaultRegistry(ledger, domain_tag, program_id, self.rules.seconds_per_day)
        self._program_key = transfer_service.register_program(program_id)
        self._event_history = []

    def create_vault(self, request: CreateVaultRequest) -> dict:
        """Lock request.amount of request.asset_type until maturity"""
        owner = self._authenticate(request)

        try:
            with self.ledger.transaction(f"create_vault:{request.owner}") as tx:
                self.rules.validate_deposit(request.amount, request.lock_duration_days)

                address, nonce = self.registry.allocate(owner)
                self._check_custody(request.custody_account, address)
                if self.ledger.balance(request.custody_account, request.asset_type) != 0:
                    raise CustodyNotEmpty(
                        f"Custody account {request.custody_account} already holds {request.asset_type.name}"
                    )

                record = VaultRecord.open(
                    owner=owner,
                    amount=request.amount,
                    asset_type=request.asset_type,
                    created_at=tx.now,
                    lock_duration_days=request.lock_duration_days,
                    derivation_nonce=nonce,
                    seconds_per_day=self.rules.seconds_per_day
                )
                self.registry.store(address, record)

                # Caller moves their own funds, so their signature is the authority
                authority = SignerAuthority(
                    identity=request.owner,
                    message=request.message(self.program_id),
                    signature=request.signature
                )
                receipt = self._move(request.asset_type, request.funding_account,
                                     request.custody_account, request.amount, authority)
        except VaultError as e:
            logger.warning(f"create_vault rejected for {request.owner[:8]}...: {e.name}: {e}")
            raise

        event = {
            'event': 'VaultCreated',
            'owner': request.owner,
            'vault_address': address,
            'amount': record.amount,
            'asset_type': record.asset_type.name,
            'lock_duration_days': record.lock_duration_days,
            'created_at': record.created_at,
            'unlock_time': record.unlock_time,
            'transaction_id': receipt['transaction_id']
        }
        self._event_history.append(event)
        logger.info(
            f"Vault created for {request.owner[:8]}... at {address[:8]}...: "
            f"lock_duration_days={record.lock_duration_days} unlock_time={record.unlock_time}"
        )
        return event

    def withdraw(self, request: WithdrawRequest) -> dict:
        """Pay the full amount back to the owner once the vault has matured"""
        owner = self._authenticate(request)

        try:
            with self.ledger.transaction(f"withdraw:{request.owner}") as tx:
                address, record = self.registry.load(owner)

                if request.vault_address is not None and request.vault_address != address:
                    raise Unauthorized("Supplied vault address does not match its derivation")
                if record.owner != owner:
                    raise Unauthorized("Caller does not own this vault")
                if record.withdrawn:
                    raise AlreadyWithdrawn(f"Vault {address} has already been withdrawn")
                if not self.rules.is_matured(tx.now, record.unlock_time):
                    remaining = self.rules.seconds_remaining(tx.now, record.unlock_time)
                    raise StillLocked(f"Vault unlocks in {remaining} seconds")

                self._check_custody(request.custody_account, address)
                self._check_destination(request.destination_account, request.custody_account, address)

                # Flag flips before funds leave custody
                self.registry.store(address, record.as_withdrawn())

                authority = CustodyAuthority.mint(self._program_key, self.program_id, address)
                try:
                    receipt = self._move(record.asset_type, request.custody_account,
                                         request.destination_account, record.amount, authority)
                except TransferFailed:
                    logger.error(
                        f"Payout of {record.amount} {record.asset_type.name} from vault {address} "
                        f"to {request.destination_account} failed; withdrawal rolled back"
                    )
                    raise
        except VaultError as e:
            logger.warning(f"withdraw rejected for {request.owner[:8]}...: {e.name}: {e}")
            raise

        event = {
            'event': 'VaultWithdrawn',
            'owner': request.owner,
            'vault_address': address,
            'amount': record.amount,
            'asset_type': record.asset_type.name,
            'withdrawn_at': tx.now,
            'transaction_id': receipt['transaction_id']
        }
        self._event_history.append(event)
        logger.info(f"Vault withdrawn by {request.owner[:8]}... from {address[:8]}...: amount={record.amount}")
        return event

    def _authenticate(self, request) -> bytes:
        """Return the caller's raw identity once their signature checks out"""
        try:
            owner = decode_address(request.owner)
        except ValueError as e:
            raise Unauthorized(f"Malformed owner identity: {e}") from e

        if not request.verify(self.program_id):
            logger.warning(f"{request.ACTION} rejected for {request.owner[:8]}...: bad signature")
            raise Unauthorized("Request is not signed by the owner")
        return owner

    def _check_custody(self, custody_account: str, vault_address: str):
        if not self.ledger.account_exists(custody_account):
            raise TransferFailed(f"Custody account {custody_account} does not exist")
        if self.ledger.get_account(custody_account).authority != vault_address:
            raise Unauthorized(f"Account {custody_account} is not custody for vault {vault_address}")

    def _check_destination(self, destination_account: str, custody_account: str, vault_address: str):
        """Payouts must leave vault custody"""
        if destination_account == custody_account:
            raise Unauthorized("Destination cannot be the vault custody account")
        if (self.ledger.account_exists(destination_account)
                and self.ledger.get_account(destination_account).authority == vault_address):
            raise Unauthorized(f"Destination {destination_account} is held in custody for vault {vault_address}")

    def _move(self, asset: AssetType, source: str, destination: str,
              amount: int, authority: Authority) -> dict:
        try:
            return self.transfers.transfer(asset, source, destination, amount, authority)
        except TransferError as e:
            raise TransferFailed(f"{type(e).__name__}: {e}") from e

    # Queries

    def vault_address(self, owner: str) -> str:
        """Canonical vault address; infrastructure opens custody accounts under it"""
        address, _ = self.registry.canonical_address(decode_address(owner))
        return address

    def get_vault(self, owner: str) -> VaultRecord:
        _, record = self.registry.load(decode_address(owner))
        return record

    def vault_state(self, owner: str) -> VaultState:
        return self.registry.state_of(decode_address(owner))

    def get_event_history(self) -> List[dict]:
        return self._event_history.copy()
