"""
Vault Registry - deterministic vault addresses and durable vault records

A vault lives at Derive(domain_tag, owner, nonce). The canonical nonce is the
smallest one whose derived address is off the secp256k1 curve, so no private
key can ever sign as the vault. Authority over a vault is proven by
re-deriving its address, never by a signature.
"""

import hashlib
import struct
from dataclasses import dataclass, replace
from enum import Enum
from typing import Tuple

from .errors import (
    AddressOccupied, AlreadyWithdrawn, DerivationError, RecordCorrupted, VaultNotFound
)
from .keys import decode_address, encode_address, is_on_curve, IDENTITY_LENGTH
from .ledger import AccountInUse, AssetType, Ledger
from .rules import SECONDS_PER_DAY

PROGRAM_ID = "Dm88AgRVd7ddjKn2N27a5oxod5kETjKvPjJq5KZ6BbBS"
DOMAIN_TAG = b"savings_vault"
DERIVATION_MARKER = b"ProgramDerivedAddress"
MAX_NONCE = 255

# owner | amount | asset | created_at | unlock_time | lock_duration_days | withdrawn | nonce
RECORD_LAYOUT = struct.Struct('<32sQBqqQ?B')
RECORD_SIZE = RECORD_LAYOUT.size  # 67 bytes


class VaultState(Enum):
    NONEXISTENT = "nonexistent"
    ACTIVE = "active"
    WITHDRAWN = "withdrawn"


def derive_address(domain_tag: bytes, owner: bytes, nonce: int, program_id: bytes) -> bytes:
    """Hash the derivation inputs into a 32-byte candidate address"""
    if not 0 <= nonce <= MAX_NONCE:
        raise DerivationError(f"Nonce {nonce} out of range")
    if len(owner) != IDENTITY_LENGTH:
        raise DerivationError(f"Owner identity must be {IDENTITY_LENGTH} bytes")

    hasher = hashlib.sha256()
    hasher.update(domain_tag)
    hasher.update(owner)
    hasher.update(bytes([nonce]))
    hasher.update(program_id)
    hasher.update(DERIVATION_MARKER)
    return hasher.digest()


def find_vault_address(domain_tag: bytes, owner: bytes, program_id: bytes) -> Tuple[bytes, int]:
    """Return (address, nonce) for the smallest nonce giving an off-curve address"""
    for nonce in range(MAX_NONCE + 1):
        candidate = derive_address(domain_tag, owner, nonce, program_id)
        if not is_on_curve(candidate):
            return candidate, nonce
    raise DerivationError("No off-curve vault address exists for this owner")


@dataclass(frozen=True)
class VaultRecord:
    """Durable receipt for one locked deposit"""
    owner: bytes
    amount: int
    asset_type: AssetType
    created_at: int
    unlock_time: int
    lock_duration_days: int
    withdrawn: bool
    derivation_nonce: int

    @classmethod
    def open(cls, owner: bytes, amount: int, asset_type: AssetType, created_at: int,
             lock_duration_days: int, derivation_nonce: int,
             seconds_per_day: int = SECONDS_PER_DAY) -> 'VaultRecord':
        return cls(
            owner=owner,
            amount=amount,
            asset_type=asset_type,
            created_at=created_at,
            unlock_time=created_at + lock_duration_days * seconds_per_day,
            lock_duration_days=lock_duration_days,
            withdrawn=False,
            derivation_nonce=derivation_nonce
        )

    @property
    def state(self) -> VaultState:
        return VaultState.WITHDRAWN if self.withdrawn else VaultState.ACTIVE

    def as_withdrawn(self) -> 'VaultRecord':
        """Terminal transition; a withdrawn record never becomes active again"""
        if self.withdrawn:
            raise AlreadyWithdrawn("Vault has already been withdrawn")
        return replace(self, withdrawn=True)

    def pack(self) -> bytes:
        return RECORD_LAYOUT.pack(
            self.owner,
            self.amount,
            self.asset_type.value,
            self.created_at,
            self.unlock_time,
            self.lock_duration_days,
            self.withdrawn,
            self.derivation_nonce
        )

    @classmethod
    def unpack(cls, data: bytes, seconds_per_day: int = SECONDS_PER_DAY) -> 'VaultRecord':
        if data is None or len(data) != RECORD_SIZE:
            raise RecordCorrupted(f"Vault record must be {RECORD_SIZE} bytes")

        (owner, amount, asset_tag, created_at, unlock_time,
         days, withdrawn, nonce) = RECORD_LAYOUT.unpack(data)

        try:
            asset_type = AssetType(asset_tag)
        except ValueError as e:
            raise RecordCorrupted(f"Unknown asset tag {asset_tag}") from e

        if amount == 0:
            raise RecordCorrupted("Vault record holds a zero amount")
        if unlock_time != created_at + days * seconds_per_day:
            raise RecordCorrupted("Vault unlock time does not match its lock duration")

        return cls(owner, amount, asset_type, created_at, unlock_time, days, withdrawn, nonce)

    def to_dict(self) -> dict:
        return {
            'owner': encode_address(self.owner),
            'amount': self.amount,
            'asset_type': self.asset_type.name,
            'created_at': self.created_at,
            'unlock_time': self.unlock_time,
            'lock_duration_days': self.lock_duration_days,
            'withdrawn': self.withdrawn,
            'derivation_nonce': self.derivation_nonce,
            'state': self.state.value
        }


class VaultRegistry:
    """Allocates, resolves and stores vault records on the ledger"""

    def __init__(self, ledger: Ledger, domain_tag: bytes = DOMAIN_TAG,
                 program_id: str = PROGRAM_ID, seconds_per_day: int = SECONDS_PER_DAY):
        self.ledger = ledger
        self.domain_tag = domain_tag
        self.program_id = program_id
        self.program_id_bytes = decode_address(program_id)
        self.seconds_per_day = seconds_per_day

    def canonical_address(self, owner: bytes) -> Tuple[str, int]:
        address, nonce = find_vault_address(self.domain_tag, owner, self.program_id_bytes)
        return encode_address(address), nonce

    def resolve(self, owner: bytes, nonce: int) -> str:
        """Recompute the vault address for a stored nonce"""
        address = derive_address(self.domain_tag, owner, nonce, self.program_id_bytes)
        if is_on_curve(address):
            raise DerivationError(f"Nonce {nonce} derives a signable address")
        return encode_address(address)

    def verify(self, owner: bytes, nonce: int, address: str) -> bool:
        try:
            return self.resolve(owner, nonce) == address
        except DerivationError:
            return False

    def allocate(self, owner: bytes) -> Tuple[str, int]:
        """Reserve the canonical address for owner; one vault per owner"""
        address, nonce = self.canonical_address(owner)
        try:
            self.ledger.create_account(address, authority=self.program_id)
        except AccountInUse as e:
            raise AddressOccupied(f"A vault already exists at {address}") from e
        return address, nonce

    def state_of(self, owner: bytes) -> VaultState:
        address, _ = self.canonical_address(owner)
        data = self.ledger.read_data(address)
        if data is None:
            return VaultState.NONEXISTENT
        return VaultRecord.unpack(data, self.seconds_per_day).state

    def load(self, owner: bytes) -> Tuple[str, VaultRecord]:
        """Return (address, record) for owner's vault"""
        address, nonce = self.canonical_address(owner)
        data = self.ledger.read_data(address)
        if data is None:
            raise VaultNotFound(f"No vault at {address}")

        record = VaultRecord.unpack(data, self.seconds_per_day)
        if record.derivation_nonce != nonce:
            raise RecordCorrupted(f"Vault record at {address} has nonce {record.derivation_nonce}, expected {nonce}")
        return address, record

    def store(self, address: str, record: VaultRecord):
        if not self.verify(record.owner, record.derivation_nonce, address):
            raise DerivationError(f"Record does not derive to {address}")
        self.ledger.write_data(address, record.pack())
