"""SQLite data store for CraftEx.

The store plays two roles for the engine: the ledger of account balances
and the position store. All mutations go through ``DataStore.transaction``
which holds a write lock (``BEGIN IMMEDIATE``) until commit, so a balance
change and the position change it pays for are never observed apart.
"""

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterator, Optional

from craftex.errors import (
    AccountExists,
    InsufficientBalance,
    InvalidAmount,
    OwnerNotFound,
    StorageUnavailable,
)
from craftex.models import Account, Position, PriceTick

logger = logging.getLogger(__name__)

POSITION_COLUMNS = (
    "id, owner_id, symbol, direction, size, leverage, margin, entry_price, "
    "mark_price, unrealized_pnl, unrealized_pnl_percent, stop_loss, take_profit, "
    "status, close_reason, exit_price, realized_pnl, settled_amount, opened_at, closed_at"
)


def _dec(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


def _text(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _row_to_position(row: sqlite3.Row) -> Position:
    return Position(
        id=row["id"],
        owner_id=row["owner_id"],
        symbol=row["symbol"],
        direction=row["direction"],
        size=Decimal(row["size"]),
        leverage=Decimal(row["leverage"]),
        margin=Decimal(row["margin"]),
        entry_price=Decimal(row["entry_price"]),
        mark_price=Decimal(row["mark_price"]),
        unrealized_pnl=Decimal(row["unrealized_pnl"]),
        unrealized_pnl_percent=row["unrealized_pnl_percent"],
        stop_loss=_dec(row["stop_loss"]),
        take_profit=_dec(row["take_profit"]),
        status=row["status"],
        close_reason=row["close_reason"],
        exit_price=_dec(row["exit_price"]),
        realized_pnl=_dec(row["realized_pnl"]),
        settled_amount=_dec(row["settled_amount"]),
        opened_at=datetime.fromisoformat(row["opened_at"]),
        closed_at=datetime.fromisoformat(row["closed_at"]) if row["closed_at"] else None,
    )


def _row_to_account(row: sqlite3.Row) -> Account:
    return Account(
        id=row["id"],
        username=row["username"],
        balance=Decimal(row["balance"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class StoreTransaction:
    """Operations available inside a single store transaction.

    Instances are only handed out by ``DataStore.transaction``; nothing
    here commits on its own.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    # ==================== Ledger ====================

    def get_account(self, owner_id: str) -> Optional[Account]:
        """Get an account by owner ID, or None if it does not exist."""
        row = self._conn.execute(
            "SELECT id, username, balance, created_at FROM accounts WHERE id = ?",
            (owner_id,),
        ).fetchone()
        return _row_to_account(row) if row else None

    def insert_account(self, account: Account) -> None:
        self._conn.execute(
            "INSERT INTO accounts (id, username, balance, created_at) VALUES (?, ?, ?, ?)",
            (
                account.id,
                account.username,
                str(account.balance),
                account.created_at.isoformat(),
            ),
        )

    def get_balance(self, owner_id: str) -> Decimal:
        """Get an owner's available balance.

        Raises:
            OwnerNotFound: If no account exists for the owner.
        """
        row = self._conn.execute(
            "SELECT balance FROM accounts WHERE id = ?", (owner_id,)
        ).fetchone()
        if row is None:
            raise OwnerNotFound(owner_id)
        return Decimal(row["balance"])

    def _set_balance(self, owner_id: str, balance: Decimal) -> None:
        self._conn.execute(
            "UPDATE accounts SET balance = ? WHERE id = ?", (str(balance), owner_id)
        )

    def debit(self, owner_id: str, amount: Decimal) -> Decimal:
        """Subtract an amount from an owner's balance.

        Returns:
            The new balance.

        Raises:
            OwnerNotFound: If no account exists for the owner.
            InsufficientBalance: If the balance is smaller than the amount.
        """
        balance = self.get_balance(owner_id)
        if amount > balance:
            raise InsufficientBalance(required=amount, available=balance)
        new_balance = balance - amount
        self._set_balance(owner_id, new_balance)
        return new_balance

    def credit(self, owner_id: str, amount: Decimal) -> Decimal:
        """Add an amount to an owner's balance.

        Returns:
            The new balance.

        Raises:
            OwnerNotFound: If no account exists for the owner.
        """
        new_balance = self.get_balance(owner_id) + amount
        self._set_balance(owner_id, new_balance)
        return new_balance

    # ==================== Positions ====================

    def insert_position(self, position: Position) -> None:
        self._conn.execute(
            f"INSERT INTO positions ({POSITION_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                position.id,
                position.owner_id,
                position.symbol,
                position.direction,
                str(position.size),
                str(position.leverage),
                str(position.margin),
                str(position.entry_price),
                str(position.mark_price),
                str(position.unrealized_pnl),
                position.unrealized_pnl_percent,
                _text(position.stop_loss),
                _text(position.take_profit),
                position.status,
                position.close_reason,
                _text(position.exit_price),
                _text(position.realized_pnl),
                _text(position.settled_amount),
                position.opened_at.isoformat(),
                position.closed_at.isoformat() if position.closed_at else None,
            ),
        )

    def get_position(self, position_id: str) -> Optional[Position]:
        row = self._conn.execute(
            f"SELECT {POSITION_COLUMNS} FROM positions WHERE id = ?", (position_id,)
        ).fetchone()
        return _row_to_position(row) if row else None

    def get_open_positions(
        self, owner_id: Optional[str] = None, symbol: Optional[str] = None
    ) -> list[Position]:
        """Get open positions, newest first, optionally filtered."""
        query = f"SELECT {POSITION_COLUMNS} FROM positions WHERE status = 'open'"
        params: list[str] = []
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)
        if symbol is not None:
            query += " AND symbol = ?"
            params.append(symbol)
        query += " ORDER BY opened_at DESC, rowid DESC"
        return [_row_to_position(row) for row in self._conn.execute(query, params)]

    def get_position_history(self, owner_id: str) -> list[Position]:
        """Get every position an owner has held, newest first."""
        rows = self._conn.execute(
            f"SELECT {POSITION_COLUMNS} FROM positions WHERE owner_id = ? "
            "ORDER BY opened_at DESC, rowid DESC",
            (owner_id,),
        )
        return [_row_to_position(row) for row in rows]

    def update_mark(
        self,
        position_id: str,
        mark_price: Decimal,
        unrealized_pnl: Decimal,
        unrealized_pnl_percent: float,
    ) -> bool:
        """Store a new mark price and P&L on an open position.

        Returns:
            False if the position is no longer open.
        """
        cursor = self._conn.execute(
            """
            UPDATE positions
            SET mark_price = ?, unrealized_pnl = ?, unrealized_pnl_percent = ?
            WHERE id = ? AND status = 'open'
            """,
            (str(mark_price), str(unrealized_pnl), unrealized_pnl_percent, position_id),
        )
        return cursor.rowcount == 1

    def mark_closed(self, closed: Position) -> bool:
        """Flip a position from open to closed.

        The status check and the write are one statement, so of two
        racing closers only one sees True.

        Args:
            closed: Snapshot carrying the close fields to persist.

        Returns:
            True if this call closed the position, False if it was not open.
        """
        cursor = self._conn.execute(
            """
            UPDATE positions
            SET status = 'closed', close_reason = ?, exit_price = ?, mark_price = ?,
                unrealized_pnl = ?, unrealized_pnl_percent = ?, realized_pnl = ?,
                settled_amount = ?, closed_at = ?
            WHERE id = ? AND status = 'open'
            """,
            (
                closed.close_reason,
                _text(closed.exit_price),
                str(closed.mark_price),
                str(closed.unrealized_pnl),
                closed.unrealized_pnl_percent,
                _text(closed.realized_pnl),
                _text(closed.settled_amount),
                closed.closed_at.isoformat() if closed.closed_at else None,
                closed.id,
            ),
        )
        return cursor.rowcount == 1

    # ==================== Ticks ====================

    def get_last_tick(self, symbol: str) -> Optional[PriceTick]:
        row = self._conn.execute(
            "SELECT symbol, price, timestamp FROM ticks WHERE symbol = ?", (symbol,)
        ).fetchone()
        if row is None:
            return None
        return PriceTick(
            symbol=row["symbol"],
            price=Decimal(row["price"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )

    def record_tick(self, tick: PriceTick) -> bool:
        """Store a tick as the latest price for its symbol.

        A tick with the same timestamp as the stored one replaces it;
        an older tick is ignored.

        Returns:
            False if the tick is older than the stored one.
        """
        last = self.get_last_tick(tick.symbol)
        if last is not None and tick.timestamp < last.timestamp:
            return False
        self._conn.execute(
            "INSERT OR REPLACE INTO ticks (symbol, price, timestamp) VALUES (?, ?, ?)",
            (tick.symbol, str(tick.price), tick.timestamp.isoformat()),
        )
        return True


class DataStore:
    """SQLite-based data store for CraftEx."""

    REQUIRED_TABLES = [
        "accounts",
        "positions",
        "ticks",
    ]

    def __init__(self, db_path: Path, timeout: float = 10.0):
        """Initialize the data store.

        Args:
            db_path: Path to the SQLite database file.
            timeout: Seconds to wait for another writer's lock.
        """
        self.db_path = db_path
        self.timeout = timeout
        self._ensure_db_dir()
        self._init_schema()

    def _ensure_db_dir(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection in manual transaction mode."""
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.timeout,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        """Initialize database schema on first run."""
        with self.transaction() as tx:
            conn = tx._conn

            # Accounts table
            conn.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    id TEXT PRIMARY KEY,
                    username TEXT NOT NULL UNIQUE,
                    balance TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            # Positions table
            conn.execute("""
                CREATE TABLE IF NOT EXISTS positions (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL REFERENCES accounts(id),
                    symbol TEXT NOT NULL,
                    direction TEXT NOT NULL,
                    size TEXT NOT NULL,
                    leverage TEXT NOT NULL,
                    margin TEXT NOT NULL,
                    entry_price TEXT NOT NULL,
                    mark_price TEXT NOT NULL,
                    unrealized_pnl TEXT NOT NULL,
                    unrealized_pnl_percent REAL NOT NULL,
                    stop_loss TEXT,
                    take_profit TEXT,
                    status TEXT NOT NULL DEFAULT 'open',
                    close_reason TEXT,
                    exit_price TEXT,
                    realized_pnl TEXT,
                    settled_amount TEXT,
                    opened_at TEXT NOT NULL,
                    closed_at TEXT
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_positions_symbol_status "
                "ON positions (symbol, status)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_positions_owner "
                "ON positions (owner_id, opened_at)"
            )

            # Latest tick per symbol
            conn.execute("""
                CREATE TABLE IF NOT EXISTS ticks (
                    symbol TEXT PRIMARY KEY,
                    price TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
            """)

    @contextmanager
    def transaction(self, immediate: bool = True) -> Iterator[StoreTransaction]:
        """Run a block of store operations atomically.

        Commits when the block exits normally and rolls back on any
        exception. SQLite failures surface as ``StorageUnavailable``.

        Args:
            immediate: Take the write lock up front. Read-only callers
                may pass False.
        """
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot open {self.db_path}: {e}") from e

        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield StoreTransaction(conn)
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._rollback(conn)
            raise StorageUnavailable(f"Storage error: {e}") from e
        except BaseException:
            self._rollback(conn)
            raise
        finally:
            conn.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error:
                logger.exception("Rollback failed")

    def get_tables(self) -> list[str]:
        """Get list of all tables in the database."""
        with self.transaction(immediate=False) as tx:
            rows = tx._conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
            )
            return [row["name"] for row in rows]

    # ==================== Accounts ====================

    def create_account(
        self,
        username: str,
        balance: Decimal = Decimal("0"),
        owner_id: Optional[str] = None,
    ) -> Account:
        """Register a new account.

        Args:
            username: Display name, must be unique.
            balance: Opening balance.
            owner_id: ID from the identity provider. Generated if omitted.

        Returns:
            The created account.

        Raises:
            AccountExists: If the ID or username is already registered.
            InvalidAmount: If the balance is negative.
        """
        if balance < 0:
            raise InvalidAmount(f"Opening balance cannot be negative, got {balance}")

        account = Account(
            id=owner_id or f"ACC_{uuid.uuid4().hex[:12].upper()}",
            username=username,
            balance=balance,
        )
        try:
            with self.transaction() as tx:
                tx.insert_account(account)
        except StorageUnavailable as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise AccountExists(f"Account already exists: {username}") from e
            raise
        logger.info("Registered account %s (%s)", account.id, username)
        return account

    def get_account(self, owner_id: str) -> Optional[Account]:
        with self.transaction(immediate=False) as tx:
            return tx.get_account(owner_id)

    def get_account_by_username(self, username: str) -> Optional[Account]:
        with self.transaction(immediate=False) as tx:
            row = tx._conn.execute(
                "SELECT id, username, balance, created_at FROM accounts WHERE username = ?",
                (username,),
            ).fetchone()
            return _row_to_account(row) if row else None

    def get_balance(self, owner_id: str) -> Decimal:
        with self.transaction(immediate=False) as tx:
            return tx.get_balance(owner_id)

    def deposit(self, owner_id: str, amount: Decimal) -> Decimal:
        """Credit an approved deposit to an account.

        Args:
            owner_id: Account to credit.
            amount: Positive amount to add.

        Returns:
            The new balance.

        Raises:
            InvalidAmount: If amount is not positive.
            OwnerNotFound: If the account does not exist.
        """
        if amount <= 0:
            raise InvalidAmount(f"Deposit must be positive, got {amount}")
        with self.transaction() as tx:
            balance = tx.credit(owner_id, amount)
        logger.info("Deposited %s to %s, balance now %s", amount, owner_id, balance)
        return balance

    # ==================== Positions ====================

    def get_position(self, position_id: str) -> Optional[Position]:
        with self.transaction(immediate=False) as tx:
            return tx.get_position(position_id)

    def get_open_positions(
        self, owner_id: Optional[str] = None, symbol: Optional[str] = None
    ) -> list[Position]:
        with self.transaction(immediate=False) as tx:
            return tx.get_open_positions(owner_id=owner_id, symbol=symbol)

    def get_position_history(self, owner_id: str) -> list[Position]:
        with self.transaction(immediate=False) as tx:
            return tx.get_position_history(owner_id)

    # ==================== Ticks ====================

    def get_last_tick(self, symbol: str) -> Optional[PriceTick]:
        with self.transaction(immediate=False) as tx:
            return tx.get_last_tick(symbol)

    # ==================== Stats ====================

    def get_stats(self) -> dict:
        """Get database statistics.

        Returns:
            Dictionary with table record counts.
        """
        with self.transaction(immediate=False) as tx:
            stats = {}
            for table in self.REQUIRED_TABLES:
                row = tx._conn.execute(f"SELECT COUNT(*) as count FROM {table}").fetchone()
                stats[table] = row["count"]
            return stats
