"""
Error taxonomy for the time-lock savings vault
"""


class VaultError(Exception):
    """Base class for every caller-visible vault failure"""

    code = 6000
    name = "VaultError"

    def __init__(self, message: str = None):
        super().__init__(message or self.name)
        self.message = message or self.name

    def to_dict(self) -> dict:
        """Serialize error for API responses"""
        return {
            'error': self.name,
            'code': self.code,
            'message': self.message
        }


class LockTooShort(VaultError):
    code = 6000
    name = "LockTooShort"


class LockTooLong(VaultError):
    code = 6001
    name = "LockTooLong"


class InvalidAmount(VaultError):
    code = 6002
    name = "InvalidAmount"


class AddressOccupied(VaultError):
    code = 6003
    name = "AddressOccupied"


class VaultNotFound(VaultError):
    code = 6004
    name = "VaultNotFound"


class Unauthorized(VaultError):
    code = 6005
    name = "Unauthorized"


class AlreadyWithdrawn(VaultError):
    code = 6006
    name = "AlreadyWithdrawn"


class StillLocked(VaultError):
    code = 6007
    name = "StillLocked"


class TransferFailed(VaultError):
    """Asset Transfer Service could not move the funds"""
    code = 6008
    name = "TransferFailed"


class RecordCorrupted(VaultError):
    code = 6009
    name = "RecordCorrupted"


class DerivationError(VaultError):
    code = 6010
    name = "DerivationError"


class CustodyNotEmpty(VaultError):
    """Custody account already holds the asset being locked"""
    code = 6011
    name = "CustodyNotEmpty"


# Raised by the Asset Transfer Service; handlers wrap these in TransferFailed
class TransferError(Exception):
    """Base class for asset transfer failures"""


class InsufficientFunds(TransferError):
    pass


class TransferUnauthorized(TransferError):
    pass


class UnknownAccount(TransferError):
    pass
