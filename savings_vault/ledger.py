"""
Host ledger - accounts, custody balances and atomic transactions

Every state change runs inside Ledger.transaction(). Transactions are
serialised on one lock, see a single fixed `now`, and either commit as a
whole (appending a journal entry) or roll back every touched account.
"""

import copy
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .errors import InsufficientFunds, UnknownAccount
from .keys import is_derived_address

logger = logging.getLogger(__name__)


class AssetType(Enum):
    NATIVE = 0
    STABLE_A = 1
    STABLE_B = 2
    STABLE_C = 3


class LedgerError(Exception):
    pass


class AccountInUse(LedgerError):
    pass


class NoActiveTransaction(LedgerError):
    pass


class ReservedAddress(LedgerError):
    pass


class SystemClock:
    """Wall clock in unix seconds"""

    def __call__(self) -> int:
        return int(time.time())


class ManualClock:
    """Settable clock for tests and simulations"""

    def __init__(self, start: int = 0):
        self._now = start

    def __call__(self) -> int:
        return self._now

    def set(self, timestamp: int):
        self._now = timestamp

    def advance(self, seconds: int):
        self._now += seconds


@dataclass
class Account:
    address: str
    authority: str  # identity or vault address allowed to debit this account
    balances: Dict[AssetType, int] = field(default_factory=dict)
    data: Optional[bytes] = None

    def balance_of(self, asset: AssetType) -> int:
        return self.balances.get(asset, 0)


@dataclass(frozen=True)
class JournalEntry:
    sequence: int
    timestamp: int
    label: str
    addresses: Tuple[str, ...]


class LedgerTransaction:
    """One atomic unit of work against the ledger"""

    def __init__(self, label: str, now: int):
        self.label = label
        self.now = now
        self._originals: Dict[str, Optional[Account]] = {}

    def touched(self) -> Tuple[str, ...]:
        return tuple(sorted(self._originals))


class Ledger:
    """Shared, append-only ledger of account states"""

    def __init__(self, clock: Callable[[], int] = None):
        self.clock = clock or SystemClock()
        self._accounts: Dict[str, Account] = {}
        self._journal: List[JournalEntry] = []
        self._lock = threading.RLock()
        self._local = threading.local()

    @contextmanager
    def transaction(self, label: str):
        if self.current() is not None:
            raise LedgerError("Nested ledger transactions are not supported")

        with self._lock:
            tx = LedgerTransaction(label, self.clock())
            self._local.tx = tx
            try:
                yield tx
            except BaseException:
                self._rollback(tx)
                raise
            else:
                self._journal.append(JournalEntry(
                    sequence=len(self._journal),
                    timestamp=tx.now,
                    label=label,
                    addresses=tx.touched()
                ))
            finally:
                self._local.tx = None

    def current(self) -> Optional[LedgerTransaction]:
        return getattr(self._local, 'tx', None)

    def now(self) -> int:
        """Transaction time when inside one, clock time otherwise"""
        tx = self.current()
        return tx.now if tx is not None else self.clock()

    def _rollback(self, tx: LedgerTransaction):
        for address, original in tx._originals.items():
            if original is None:
                self._accounts.pop(address, None)
            else:
                self._accounts[address] = original
        logger.debug(f"Rolled back transaction {tx.label!r} touching {len(tx._originals)} accounts")

    def _touch(self, address: str) -> LedgerTransaction:
        tx = self.current()
        if tx is None:
            raise NoActiveTransaction("Ledger mutations require an open transaction")
        if address not in tx._originals:
            tx._originals[address] = copy.deepcopy(self._accounts.get(address))
        return tx

    @contextmanager
    def _autocommit(self, label: str):
        if self.current() is not None:
            yield self.current()
        else:
            with self.transaction(label) as tx:
                yield tx

    # Accounts

    def create_account(self, address: str, authority: str, data: bytes = None) -> Account:
        if address in self._accounts:
            raise AccountInUse(f"Account {address} already exists")
        self._touch(address)
        account = Account(address=address, authority=authority, data=data)
        self._accounts[address] = account
        return account

    def open_account(self, address: str, authority: str) -> Account:
        """Infrastructure hook for opening funding, destination and custody accounts"""
        if is_derived_address(address):
            raise ReservedAddress(f"{address} is an off-curve address reserved for vault records")
        with self._autocommit(f"open_account:{address}"):
            return self.create_account(address, authority)

    def account_exists(self, address: str) -> bool:
        with self._lock:
            return address in self._accounts

    def get_account(self, address: str) -> Account:
        with self._lock:
            account = self._accounts.get(address)
            if account is None:
                raise UnknownAccount(f"Account {address} does not exist")
            return copy.deepcopy(account)

    def read_data(self, address: str) -> Optional[bytes]:
        with self._lock:
            account = self._accounts.get(address)
            return account.data if account is not None else None

    def write_data(self, address: str, data: bytes):
        if address not in self._accounts:
            raise UnknownAccount(f"Account {address} does not exist")
        self._touch(address)
        self._accounts[address].data = data

    # Balances

    def balance(self, address: str, asset: AssetType) -> int:
        with self._lock:
            account = self._accounts.get(address)
            return account.balance_of(asset) if account is not None else 0

    def adjust_balance(self, address: str, asset: AssetType, delta: int):
        account = self._accounts.get(address)
        if account is None:
            raise UnknownAccount(f"Account {address} does not exist")

        new_balance = account.balance_of(asset) + delta
        if new_balance < 0:
            raise InsufficientFunds(
                f"Account {address} holds {account.balance_of(asset)} {asset.name}, needs {-delta}"
            )

        self._touch(address)
        self._accounts[address].balances[asset] = new_balance

    def credit(self, address: str, asset: AssetType, amount: int):
        """Mint balance into an account (setup, faucets)"""
        if amount <= 0:
            raise ValueError("Credit amount must be positive")
        with self._autocommit(f"credit:{address}"):
            self.adjust_balance(address, asset, amount)

    def total_supply(self, asset: AssetType) -> int:
        with self._lock:
            return sum(a.balance_of(asset) for a in self._accounts.values())

    def journal(self) -> List[JournalEntry]:
        with self._lock:
            return self._journal.copy()
