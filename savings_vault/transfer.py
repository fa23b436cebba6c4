"""
Asset Transfer Service - moves balances between ledger accounts

Two kinds of authority can debit an account:
  SignerAuthority   - the account holder's own signature over a request
  CustodyAuthority  - a single-use capability minted by a registered program
                      for an account whose authority is a derived vault address
"""

import hashlib
import logging
import os
from dataclasses import dataclass
from typing import Dict, Set, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from .errors import TransferUnauthorized, UnknownAccount
from .keys import decode_address, verify_signature
from .ledger import AssetType, Ledger, NoActiveTransaction

logger = logging.getLogger(__name__)

CALL_ID_LENGTH = 16


@dataclass(frozen=True)
class SignerAuthority:
    """Proof that the account holder signed the enclosing request"""
    identity: str  # base58
    message: bytes
    signature: str  # hex


@dataclass(frozen=True)
class CustodyAuthority:
    """Single-call capability to debit a vault custody account"""
    program_id: str
    vault_address: str
    call_id: bytes
    tag: bytes

    @staticmethod
    def _payload(program_id: str, vault_address: str, call_id: bytes) -> bytes:
        return b"|".join([program_id.encode(), vault_address.encode(), call_id])

    @classmethod
    def mint(cls, program_key: bytes, program_id: str, vault_address: str) -> 'CustodyAuthority':
        call_id = os.urandom(CALL_ID_LENGTH)
        h = hmac.HMAC(program_key, hashes.SHA256())
        h.update(cls._payload(program_id, vault_address, call_id))
        return cls(program_id, vault_address, call_id, h.finalize())

    def check(self, program_key: bytes):
        """Raise InvalidSignature unless the tag was produced with program_key"""
        h = hmac.HMAC(program_key, hashes.SHA256())
        h.update(self._payload(self.program_id, self.vault_address, self.call_id))
        h.verify(self.tag)


Authority = Union[SignerAuthority, CustodyAuthority]


class AssetTransferService:
    """Moves asset balances inside the caller's ledger transaction"""

    def __init__(self, ledger: Ledger):
        self.ledger = ledger
        self._program_keys: Dict[str, bytes] = {}
        self._spent_calls: Set[bytes] = set()

    def register_program(self, program_id: str) -> bytes:
        """Issue the secret a program uses to mint custody capabilities"""
        if program_id in self._program_keys:
            raise ValueError(f"Program {program_id} is already registered")
        key = os.urandom(32)
        self._program_keys[program_id] = key
        return key

    def transfer(self, asset: AssetType, source: str, destination: str,
                 amount: int, authority: Authority) -> dict:
        """Move amount of asset from source to destination"""
        tx = self.ledger.current()
        if tx is None:
            raise NoActiveTransaction("Transfers must run inside a ledger transaction")

        if not isinstance(amount, int) or amount <= 0:
            raise ValueError(f"Transfer amount must be a positive integer, got {amount!r}")

        source_account = self.ledger.get_account(source)
        if not self.ledger.account_exists(destination):
            raise UnknownAccount(f"Account {destination} does not exist")

        self._authorize(source_account.authority, authority)

        self.ledger.adjust_balance(source, asset, -amount)
        self.ledger.adjust_balance(destination, asset, amount)

        hasher = hashlib.sha256()
        hasher.update(f"{tx.label}|{tx.now}|{source}|{destination}|{asset.name}|{amount}".encode())
        transaction_id = hasher.hexdigest()[:32]

        logger.debug(f"Transferred {amount} {asset.name} {source[:8]}... -> {destination[:8]}...")

        return {
            'transaction_id': transaction_id,
            'asset_type': asset.name,
            'source': source,
            'destination': destination,
            'amount': amount
        }

    def _authorize(self, account_authority: str, authority: Authority):
        if isinstance(authority, SignerAuthority):
            if authority.identity != account_authority:
                raise TransferUnauthorized("Signer does not control the source account")
            try:
                identity = decode_address(authority.identity)
            except ValueError as e:
                raise TransferUnauthorized("Malformed signer identity") from e
            if not verify_signature(identity, authority.message, authority.signature):
                raise TransferUnauthorized("Invalid signature for source account")
            return

        if isinstance(authority, CustodyAuthority):
            program_key = self._program_keys.get(authority.program_id)
            if program_key is None:
                raise TransferUnauthorized(f"Program {authority.program_id} is not registered")
            try:
                authority.check(program_key)
            except InvalidSignature as e:
                raise TransferUnauthorized("Forged custody capability") from e
            if authority.call_id in self._spent_calls:
                raise TransferUnauthorized("Custody capability already used")
            if authority.vault_address != account_authority:
                raise TransferUnauthorized("Capability does not cover the source account")
            self._spent_calls.add(authority.call_id)
            return

        raise TransferUnauthorized(f"Unsupported authority {type(authority).__name__}")
