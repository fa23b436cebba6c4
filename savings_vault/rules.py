import os
from dataclasses import dataclass

from .errors import LockTooShort, LockTooLong, InvalidAmount

SECONDS_PER_DAY = 86_400
U64_MAX = 2**64 - 1


@dataclass
class LockRules:
    """Deposit and maturity rules for the vault"""

    min_lock_days: int
    max_lock_days: int
    seconds_per_day: int = SECONDS_PER_DAY

    @classmethod
    def standard(cls) -> 'LockRules':
        """30 days to 3 years"""
        return cls(min_lock_days=30, max_lock_days=1095)

    @classmethod
    def from_env(cls) -> 'LockRules':
        """Standard rules with bounds overridable from the environment"""
        rules = cls.standard()
        rules.min_lock_days = int(os.environ.get("VAULT_MIN_LOCK_DAYS", rules.min_lock_days))
        rules.max_lock_days = int(os.environ.get("VAULT_MAX_LOCK_DAYS", rules.max_lock_days))
        if rules.min_lock_days > rules.max_lock_days:
            raise ValueError(
                f"VAULT_MIN_LOCK_DAYS ({rules.min_lock_days}) exceeds "
                f"VAULT_MAX_LOCK_DAYS ({rules.max_lock_days})"
            )
        return rules

    def validate_deposit(self, amount: int, lock_duration_days: int) -> None:
        """Check deposit parameters, first failure wins"""
        if not isinstance(lock_duration_days, int) or isinstance(lock_duration_days, bool):
            raise TypeError("lock_duration_days must be an integer")

        if lock_duration_days < self.min_lock_days:
            raise LockTooShort(
                f"Lock of {lock_duration_days} days is below the minimum of {self.min_lock_days}"
            )

        if lock_duration_days > self.max_lock_days:
            raise LockTooLong(
                f"Lock of {lock_duration_days} days exceeds the maximum of {self.max_lock_days}"
            )

        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise InvalidAmount(f"Amount must be a positive integer, got {amount!r}")

        if amount > U64_MAX:
            raise InvalidAmount(f"Amount {amount} does not fit in 64 bits")

    def unlock_time(self, created_at: int, lock_duration_days: int) -> int:
        return created_at + lock_duration_days * self.seconds_per_day

    def is_matured(self, now: int, unlock_time: int) -> bool:
        return now >= unlock_time

    def seconds_remaining(self, now: int, unlock_time: int) -> int:
        return max(0, unlock_time - now)
