"""
Time-Lock Savings Vault - custodial deposits that unlock after a fixed term
Only the depositor can withdraw, exactly once, on or after maturity
"""

from .vault import TimeLockVault
from .registry import VaultRecord, VaultRegistry, VaultState, PROGRAM_ID
from .rules import LockRules
from .requests import CreateVaultRequest, WithdrawRequest
from .ledger import Ledger, AssetType, ManualClock, SystemClock
from .transfer import AssetTransferService
from .keys import OwnerKey

__version__ = "0.1.0"
__all__ = [
    "TimeLockVault",
    "VaultRecord",
    "VaultRegistry",
    "VaultState",
    "PROGRAM_ID",
    "LockRules",
    "CreateVaultRequest",
    "WithdrawRequest",
    "Ledger",
    "AssetType",
    "ManualClock",
    "SystemClock",
    "AssetTransferService",
    "OwnerKey"
]
