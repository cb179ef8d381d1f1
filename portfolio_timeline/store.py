"""SQLite-backed storage for portfolios, holdings and daily value snapshots."""

import logging
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

from .config import settings
from .errors import PortfolioNotFoundError
from .models import AssetClass, Holding, Portfolio, Snapshot, SnapshotDecision

logger = logging.getLogger(__name__)

# Values closer than this to the latest snapshot are not worth a new row
SNAPSHOT_VALUE_TOLERANCE = Decimal("0.01")


class PortfolioStore:
    """Persistence adapter for the data the valuation engine reads.

    Snapshots are append-only: at most one per portfolio per day, never
    updated once written.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file. Defaults to settings.db_path
        """
        if db_path is None:
            db_path = settings.db_path

        self.db_path = Path(db_path)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS portfolios (
                    id TEXT PRIMARY KEY,
                    starting_capital TEXT NOT NULL,
                    current_cash TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    asset_class TEXT NOT NULL DEFAULT 'stock',
                    crypto_assets TEXT DEFAULT '',
                    is_linked INTEGER DEFAULT 0
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS holdings (
                    portfolio_id TEXT NOT NULL,
                    symbol TEXT NOT NULL,
                    quantity TEXT NOT NULL,
                    avg_cost TEXT NOT NULL,
                    PRIMARY KEY (portfolio_id, symbol)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS portfolio_snapshots (
                    portfolio_id TEXT NOT NULL,
                    snapshot_date TEXT NOT NULL,
                    total_value TEXT NOT NULL,
                    cash TEXT,
                    holdings_value TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (portfolio_id, snapshot_date)
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_snapshots_portfolio
                ON portfolio_snapshots(portfolio_id)
            """)

            conn.commit()
            logger.info(f"Portfolio database initialized at {self.db_path}")

    # --- Portfolio Methods ---

    def save_portfolio(self, portfolio: Portfolio) -> None:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """INSERT OR REPLACE INTO portfolios
                   (id, starting_capital, current_cash, created_at, asset_class, crypto_assets, is_linked)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    portfolio.id,
                    str(portfolio.starting_capital),
                    str(portfolio.current_cash),
                    portfolio.created_at.isoformat(),
                    portfolio.asset_class.value,
                    ",".join(portfolio.crypto_assets),
                    int(portfolio.is_linked),
                )
            )
            conn.commit()

    def get_portfolio(self, portfolio_id: str) -> Portfolio:
        """Load a portfolio.

        Raises:
            PortfolioNotFoundError: If no portfolio has this id
        """
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """SELECT id, starting_capital, current_cash, created_at, asset_class,
                          crypto_assets, is_linked
                   FROM portfolios WHERE id = ?""",
                (portfolio_id,)
            )
            row = cursor.fetchone()

        if row is None:
            raise PortfolioNotFoundError(f"Portfolio {portfolio_id} not found")

        return Portfolio(
            id=row[0],
            starting_capital=Decimal(row[1]),
            current_cash=Decimal(row[2]),
            created_at=datetime.fromisoformat(row[3]),
            asset_class=AssetClass(row[4]),
            crypto_assets=[s for s in (row[5] or "").split(",") if s],
            is_linked=bool(row[6]),
        )

    # --- Holding Methods ---

    def save_holdings(self, portfolio_id: str, holdings: list[Holding]) -> int:
        """Replace a portfolio's holdings.

        Returns:
            Number of holdings saved
        """
        rows = [
            (portfolio_id, h.symbol, str(h.quantity), str(h.avg_cost))
            for h in holdings
        ]

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM holdings WHERE portfolio_id = ?", (portfolio_id,))
            cursor.executemany(
                """INSERT INTO holdings (portfolio_id, symbol, quantity, avg_cost)
                   VALUES (?, ?, ?, ?)""",
                rows
            )
            conn.commit()
        return len(rows)

    def get_holdings(self, portfolio_id: str) -> list[Holding]:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """SELECT symbol, quantity, avg_cost FROM holdings
                   WHERE portfolio_id = ? ORDER BY symbol""",
                (portfolio_id,)
            )
            return [
                Holding(symbol=row[0], quantity=Decimal(row[1]), avg_cost=Decimal(row[2]))
                for row in cursor.fetchall()
            ]

    # --- Snapshot Methods ---

    def get_snapshots(self, portfolio_id: str) -> list[Snapshot]:
        """All snapshots of a portfolio, ascending by date."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """SELECT snapshot_date, total_value, cash, holdings_value
                   FROM portfolio_snapshots WHERE portfolio_id = ?
                   ORDER BY snapshot_date ASC""",
                (portfolio_id,)
            )
            return [
                Snapshot(
                    portfolio_id=portfolio_id,
                    snapshot_date=date.fromisoformat(row[0]),
                    total_value=Decimal(row[1]),
                    cash=Decimal(row[2]) if row[2] is not None else None,
                    holdings_value=Decimal(row[3]) if row[3] is not None else None,
                )
                for row in cursor.fetchall()
            ]

    def get_latest_snapshot(self, portfolio_id: str) -> Optional[Snapshot]:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """SELECT snapshot_date, total_value, cash, holdings_value
                   FROM portfolio_snapshots WHERE portfolio_id = ?
                   ORDER BY snapshot_date DESC LIMIT 1""",
                (portfolio_id,)
            )
            row = cursor.fetchone()

        if row is None:
            return None
        return Snapshot(
            portfolio_id=portfolio_id,
            snapshot_date=date.fromisoformat(row[0]),
            total_value=Decimal(row[1]),
            cash=Decimal(row[2]) if row[2] is not None else None,
            holdings_value=Decimal(row[3]) if row[3] is not None else None,
        )

    def save_snapshots_batch(self, snapshots: list[Snapshot]) -> int:
        """Insert snapshots, ignoring any date that already has one.

        Returns:
            Number of snapshots written
        """
        rows = [
            (
                s.portfolio_id,
                s.snapshot_date.isoformat(),
                str(s.total_value),
                str(s.cash) if s.cash is not None else None,
                str(s.holdings_value) if s.holdings_value is not None else None,
            )
            for s in snapshots
        ]

        if not rows:
            return 0

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            before = conn.total_changes
            cursor.executemany(
                """INSERT OR IGNORE INTO portfolio_snapshots
                   (portfolio_id, snapshot_date, total_value, cash, holdings_value)
                   VALUES (?, ?, ?, ?, ?)""",
                rows
            )
            written = conn.total_changes - before
            conn.commit()

        logger.info(f"Saved {written} of {len(rows)} snapshots")
        return written

    def record_snapshot(
        self,
        portfolio_id: str,
        total_value: Decimal,
        cash: Decimal,
        holdings_value: Decimal,
        on_date: date,
    ) -> SnapshotDecision:
        """Append today's snapshot when it adds information.

        A snapshot is written when none exists yet, or when both the date
        and the value differ from the most recent one.
        """
        latest = self.get_latest_snapshot(portfolio_id)

        if latest is not None:
            date_differs = latest.snapshot_date != on_date
            value_differs = abs(total_value - latest.total_value) > SNAPSHOT_VALUE_TOLERANCE
            if not (date_differs and value_differs):
                return SnapshotDecision(
                    created=False,
                    reason=(
                        f"Conditions not met - date same: {not date_differs}, "
                        f"value same: {not value_differs}"
                    ),
                )
            reason = (
                f"Date different ({on_date} vs {latest.snapshot_date}) and value different "
                f"(${total_value:.2f} vs ${latest.total_value:.2f})"
            )
        else:
            reason = "No previous snapshot exists"

        snapshot = Snapshot(
            portfolio_id=portfolio_id,
            snapshot_date=on_date,
            total_value=total_value,
            cash=cash,
            holdings_value=holdings_value,
        )
        if self.save_snapshots_batch([snapshot]) == 0:
            return SnapshotDecision(
                created=False,
                reason=f"Snapshot for {on_date} already exists",
            )
        logger.info(f"Recorded snapshot for portfolio {portfolio_id} on {on_date}: {reason}")
        return SnapshotDecision(created=True, reason=reason, snapshot=snapshot)
