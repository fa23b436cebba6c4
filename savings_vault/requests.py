import json
from dataclasses import dataclass, fields
from typing import Optional

from .keys import OwnerKey, decode_address, verify_signature
from .ledger import AssetType
from .registry import PROGRAM_ID


class SignedRequest:
    """Canonical signing for caller requests"""

    ACTION = ""

    def signing_payload(self, program_id: str) -> dict:
        payload = {'action': self.ACTION, 'program_id': program_id}
        for f in fields(self):
            if f.name == 'signature':
                continue
            value = getattr(self, f.name)
            payload[f.name] = value.name if isinstance(value, AssetType) else value
        return payload

    def message(self, program_id: str = PROGRAM_ID) -> bytes:
        """Bytes the owner signs"""
        return json.dumps(self.signing_payload(program_id), sort_keys=True, separators=(',', ':')).encode()

    def sign(self, key: OwnerKey, program_id: str = PROGRAM_ID):
        self.signature = key.sign_message(self.message(program_id))
        return self

    def verify(self, program_id: str = PROGRAM_ID) -> bool:
        try:
            identity = decode_address(self.owner)
        except ValueError:
            return False
        return verify_signature(identity, self.message(program_id), self.signature)

    def to_dict(self) -> dict:
        data = self.signing_payload(PROGRAM_ID)
        del data['action'], data['program_id']
        data['signature'] = self.signature
        return data


def _require_int(data: dict, name: str) -> int:
    value = data.get(name)
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"'{name}' must be an integer")
    return value


def _require_str(data: dict, name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value:
        raise ValueError(f"'{name}' is required")
    return value


@dataclass
class CreateVaultRequest(SignedRequest):
    """Owner's request to lock funds in a new vault"""
    owner: str  # base58 identity
    amount: int
    lock_duration_days: int
    asset_type: AssetType
    funding_account: str
    custody_account: str
    signature: Optional[str] = None

    ACTION = "create_vault"

    @classmethod
    def from_dict(cls, data: dict) -> 'CreateVaultRequest':
        asset_name = _require_str(data, 'asset_type')
        try:
            asset_type = AssetType[asset_name]
        except KeyError as e:
            raise ValueError(f"Unknown asset type {asset_name!r}") from e

        return cls(
            owner=_require_str(data, 'owner'),
            amount=_require_int(data, 'amount'),
            lock_duration_days=_require_int(data, 'lock_duration_days'),
            asset_type=asset_type,
            funding_account=_require_str(data, 'funding_account'),
            custody_account=_require_str(data, 'custody_account'),
            signature=data.get('signature')
        )


@dataclass
class WithdrawRequest(SignedRequest):
    """Owner's request to drain a matured vault"""
    owner: str
    custody_account: str
    destination_account: str
    signature: Optional[str] = None
    vault_address: Optional[str] = None  # checked against the re-derived address

    ACTION = "withdraw"

    @classmethod
    def from_dict(cls, data: dict) -> 'WithdrawRequest':
        return cls(
            owner=_require_str(data, 'owner'),
            custody_account=_require_str(data, 'custody_account'),
            destination_account=_require_str(data, 'destination_account'),
            signature=data.get('signature'),
            vault_address=data.get('vault_address')
        )
