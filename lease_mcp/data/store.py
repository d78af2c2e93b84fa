"""SQLite store for ratebook imports, competitor snapshots, and scoring config.

Implements the read side the intelligence run gathers from
(:class:`lease_mcp.intelligence.gather.IntelligenceSource`).  Imports are
append-only: a new ratebook supersedes the previous one of the same lineage
by moving the ``is_latest`` pointer, never by deleting rows.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from lease_mcp.intelligence.scoring import score_rate_record
from lease_mcp.intelligence.selection import cheapest_rates, demand_stats, live_rates
from lease_mcp.models import (
    CompetitorDeal,
    CompetitorSnapshot,
    DemandStats,
    PriceChange,
    RateRecord,
    ScoringConfig,
)
from lease_mcp.normalization import (
    deal_lease_type_matches,
    make_model_key,
    make_model_match,
    normalize_contract_type,
    normalize_manufacturer,
)

logger = logging.getLogger(__name__)

RATE_COLUMNS = (
    "import_id", "cap_code", "manufacturer", "model", "variant",
    "provider_code", "contract_type", "term", "annual_mileage",
    "total_rental", "vehicle_value", "co2_gkm", "bik_percent", "score",
    "vehicle_id", "fuel_type", "body_style", "payment_plan",
)
INSERT_RATE_SQL = (
    "INSERT INTO provider_rates ("
    + ", ".join(RATE_COLUMNS)
    + ") VALUES ("
    + ", ".join(["?"] * len(RATE_COLUMNS))
    + ")"
)

DEAL_COLUMNS = (
    "snapshot_id", "source", "manufacturer", "model", "variant",
    "monthly_price", "initial_payment", "term", "annual_mileage",
    "value_score", "deal_count", "image_url", "lease_type",
    "previous_price", "price_change_percent", "matched_cap_code",
)
INSERT_DEAL_SQL = (
    "INSERT INTO competitor_deals ("
    + ", ".join(DEAL_COLUMNS)
    + ") VALUES ("
    + ", ".join(["?"] * len(DEAL_COLUMNS))
    + ")"
)


class SqliteRateStore:
    """SQLite-backed rate and competitor store with WAL mode."""

    def __init__(self, db_path: str = ":memory:") -> None:
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._create_schema()

    # ── Schema ─────────────────────────────────────────────────────

    def _create_schema(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS ratebook_imports (
                id              TEXT PRIMARY KEY,
                provider_code   TEXT NOT NULL,
                contract_type   TEXT NOT NULL,
                file_name       TEXT NOT NULL DEFAULT '',
                row_count       INTEGER NOT NULL DEFAULT 0,
                is_latest       INTEGER NOT NULL DEFAULT 1,
                imported_at     TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_imports_lineage
                ON ratebook_imports(provider_code, contract_type, is_latest);

            CREATE TABLE IF NOT EXISTS provider_rates (
                id              INTEGER PRIMARY KEY AUTOINCREMENT,
                import_id       TEXT NOT NULL,
                cap_code        TEXT NOT NULL,
                manufacturer    TEXT NOT NULL COLLATE NOCASE,
                model           TEXT NOT NULL COLLATE NOCASE,
                variant         TEXT,
                provider_code   TEXT NOT NULL,
                contract_type   TEXT NOT NULL,
                term            INTEGER NOT NULL,
                annual_mileage  INTEGER NOT NULL,
                total_rental    INTEGER NOT NULL,
                vehicle_value   INTEGER,
                co2_gkm         INTEGER,
                bik_percent     REAL,
                score           INTEGER,
                vehicle_id      TEXT,
                fuel_type       TEXT,
                body_style      TEXT,
                payment_plan    TEXT NOT NULL DEFAULT 'monthly_in_advance',
                FOREIGN KEY (import_id) REFERENCES ratebook_imports(id)
            );
            CREATE INDEX IF NOT EXISTS idx_rates_import
                ON provider_rates(import_id);
            CREATE INDEX IF NOT EXISTS idx_rates_contract
                ON provider_rates(contract_type, total_rental);

            CREATE TABLE IF NOT EXISTS competitor_snapshots (
                id              TEXT PRIMARY KEY,
                source          TEXT NOT NULL,
                snapshot_date   TEXT NOT NULL,
                deal_count      INTEGER NOT NULL DEFAULT 0
            );
            CREATE INDEX IF NOT EXISTS idx_snapshots_source_date
                ON competitor_snapshots(source, snapshot_date);

            CREATE TABLE IF NOT EXISTS competitor_deals (
                id              INTEGER PRIMARY KEY AUTOINCREMENT,
                snapshot_id     TEXT NOT NULL,
                source          TEXT NOT NULL,
                manufacturer    TEXT NOT NULL COLLATE NOCASE,
                model           TEXT NOT NULL COLLATE NOCASE,
                variant         TEXT,
                monthly_price   INTEGER NOT NULL,
                initial_payment INTEGER,
                term            INTEGER,
                annual_mileage  INTEGER,
                value_score     REAL,
                deal_count      INTEGER NOT NULL DEFAULT 0,
                image_url       TEXT,
                lease_type      TEXT,
                previous_price  INTEGER,
                price_change_percent REAL,
                matched_cap_code TEXT,
                FOREIGN KEY (snapshot_id) REFERENCES competitor_snapshots(id)
            );
            CREATE INDEX IF NOT EXISTS idx_deals_snapshot
                ON competitor_deals(snapshot_id);

            CREATE TABLE IF NOT EXISTS scoring_config (
                id              INTEGER PRIMARY KEY AUTOINCREMENT,
                config          TEXT NOT NULL,
                is_active       INTEGER NOT NULL DEFAULT 1,
                created_at      TEXT NOT NULL
            );
        """)

    # ── Helpers ────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def new_snapshot_id() -> str:
        return f"snap-{uuid.uuid4().hex[:12]}"

    @staticmethod
    def _parse_iso_datetime(value: str | None) -> datetime | None:
        if not value:
            return None
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @staticmethod
    def _row_to_rate(row: sqlite3.Row) -> RateRecord:
        return RateRecord(
            cap_code=row["cap_code"],
            manufacturer=row["manufacturer"],
            model=row["model"],
            variant=row["variant"],
            provider_code=row["provider_code"],
            contract_type=row["contract_type"],
            term=row["term"],
            annual_mileage=row["annual_mileage"],
            total_rental_minor_units=row["total_rental"],
            vehicle_value_minor_units=row["vehicle_value"],
            co2_gkm=row["co2_gkm"],
            bik_percent=row["bik_percent"],
            cached_score=row["score"],
            snapshot_is_latest=bool(row["is_latest"]),
            vehicle_id=row["vehicle_id"],
            fuel_type=row["fuel_type"],
            body_style=row["body_style"],
            payment_plan=row["payment_plan"],
            import_id=row["import_id"],
        )

    def _row_to_deal(self, row: sqlite3.Row) -> CompetitorDeal:
        return CompetitorDeal(
            source=row["source"],
            manufacturer=row["manufacturer"],
            model=row["model"],
            monthly_price_minor_units=row["monthly_price"],
            snapshot_id=row["snapshot_id"],
            snapshot_date=self._parse_iso_datetime(row["snapshot_date"]),
            variant=row["variant"],
            initial_payment_minor_units=row["initial_payment"],
            term=row["term"],
            annual_mileage=row["annual_mileage"],
            external_value_score=row["value_score"],
            deal_count=row["deal_count"],
            image_url=row["image_url"],
            lease_type=row["lease_type"],
            previous_price_minor_units=row["previous_price"],
            price_change_percent=row["price_change_percent"],
        )

    @staticmethod
    def _deal_key(deal: CompetitorDeal) -> tuple[str, str, str]:
        return (
            make_model_key(deal.manufacturer, deal.model),
            (deal.variant or "").strip().lower(),
            deal.lease_type or "",
        )

    # ── Ratebooks ──────────────────────────────────────────────────

    def import_ratebook(
        self,
        provider_code: str,
        contract_type: str,
        rates: Sequence[RateRecord],
        *,
        file_name: str = "",
    ) -> dict[str, Any]:
        """Append an import and make it the latest of its lineage.

        Every row is stored under the import's provider and contract type, so
        the whole batch is superseded together. Rates without a cached score
        are scored now with the active config.
        """
        provider = provider_code.strip().lower()
        contract = normalize_contract_type(contract_type)
        import_id = f"imp-{uuid.uuid4().hex[:12]}"
        config = self.fetch_scoring_config()

        rows = []
        for rate in rates:
            if (rate.provider_code, rate.contract_type) != (provider, contract):
                rate = replace(rate, provider_code=provider, contract_type=contract)
            score = rate.cached_score
            if score is None:
                score = score_rate_record(rate, config).score
            rows.append((
                import_id, rate.cap_code, rate.manufacturer, rate.model, rate.variant,
                rate.provider_code, rate.contract_type, rate.term, rate.annual_mileage,
                rate.total_rental_minor_units, rate.vehicle_value_minor_units,
                rate.co2_gkm, rate.bik_percent, score, rate.vehicle_id,
                rate.fuel_type, rate.body_style, rate.payment_plan,
            ))

        with self._lock:
            with self._conn:
                superseded = self._conn.execute(
                    """UPDATE ratebook_imports SET is_latest = 0
                       WHERE provider_code = ? AND contract_type = ? AND is_latest = 1""",
                    (provider, contract),
                ).rowcount
                self._conn.execute(
                    """INSERT INTO ratebook_imports
                       (id, provider_code, contract_type, file_name, row_count,
                        is_latest, imported_at)
                       VALUES (?, ?, ?, ?, ?, 1, ?)""",
                    (import_id, provider, contract, file_name, len(rows), self._now()),
                )
                self._conn.executemany(INSERT_RATE_SQL, rows)

        logger.info(
            "Imported ratebook %s for %s/%s: %d rates (%d import(s) superseded)",
            import_id, provider, contract, len(rows), superseded,
        )
        return {
            "import_id": import_id,
            "provider_code": provider,
            "contract_type": contract,
            "row_count": len(rows),
            "superseded_imports": superseded,
        }

    def list_imports(self, *, latest_only: bool = False) -> list[dict[str, Any]]:
        sql = "SELECT * FROM ratebook_imports"
        if latest_only:
            sql += " WHERE is_latest = 1"
        sql += " ORDER BY imported_at DESC, rowid DESC"
        with self._lock:
            rows = self._conn.execute(sql).fetchall()
        return [{**dict(row), "is_latest": bool(row["is_latest"])} for row in rows]

    def count_rates(self, *, latest_only: bool = True) -> int:
        sql = "SELECT COUNT(*) FROM provider_rates pr"
        if latest_only:
            sql += " JOIN ratebook_imports ri ON ri.id = pr.import_id AND ri.is_latest = 1"
        with self._lock:
            return self._conn.execute(sql).fetchone()[0]

    def fetch_rates(
        self,
        contract_type: str | None = None,
        *,
        include_superseded: bool = False,
    ) -> list[RateRecord]:
        clauses: list[str] = []
        params: list[Any] = []
        if not include_superseded:
            clauses.append("ri.is_latest = 1")
        if contract_type:
            clauses.append("pr.contract_type = ?")
            params.append(normalize_contract_type(contract_type))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            rows = self._conn.execute(
                f"""SELECT pr.*, ri.is_latest
                    FROM provider_rates pr
                    JOIN ratebook_imports ri ON ri.id = pr.import_id
                    {where}
                    ORDER BY pr.manufacturer, pr.model, pr.total_rental, pr.id""",
                params,
            ).fetchall()
        return [self._row_to_rate(row) for row in rows]

    def fetch_latest_rates(self, contract_type: str | None = None) -> list[RateRecord]:
        return self.fetch_rates(contract_type)

    def fetch_demand_stats(self, contract_type: str | None = None) -> dict[str, DemandStats]:
        return demand_stats(self.fetch_latest_rates(contract_type), self.fetch_scoring_config())

    # ── Competitor snapshots ───────────────────────────────────────

    def _previous_snapshot_id(self, source: str, before: str) -> str | None:
        row = self._conn.execute(
            """SELECT id FROM competitor_snapshots
               WHERE source = ? AND snapshot_date <= ?
               ORDER BY snapshot_date DESC, rowid DESC LIMIT 1""",
            (source, before),
        ).fetchone()
        return row["id"] if row else None

    def _match_cap_code(
        self,
        deal: CompetitorDeal,
        by_manufacturer: dict[str, list[RateRecord]],
    ) -> str | None:
        candidates = [
            rate
            for rate in by_manufacturer.get(normalize_manufacturer(deal.manufacturer), [])
            if make_model_match(deal.manufacturer, deal.model, rate.manufacturer, rate.model)
        ]
        best = cheapest_rates(candidates, 1)
        return best[0].cap_code if best else None

    def record_competitor_snapshot(
        self,
        source: str,
        deals: Sequence[CompetitorDeal],
        *,
        snapshot_id: str | None = None,
        snapshot_date: datetime | None = None,
    ) -> dict[str, Any]:
        """Store an immutable competitor snapshot.

        Each deal's price is compared with the same vehicle in the previous
        snapshot of this source, and matched against our latest rates.
        """
        snapshot_id = snapshot_id or self.new_snapshot_id()
        captured = (snapshot_date or datetime.now(timezone.utc)).isoformat()

        by_manufacturer: dict[str, list[RateRecord]] = {}
        for rate in live_rates(self.fetch_latest_rates()):
            by_manufacturer.setdefault(normalize_manufacturer(rate.manufacturer), []).append(rate)

        with self._lock:
            previous_prices: dict[tuple[str, str, str], int] = {}
            previous_id = self._previous_snapshot_id(source, captured)
            if previous_id is not None:
                for row in self._conn.execute(
                    """SELECT d.*, s.snapshot_date FROM competitor_deals d
                       JOIN competitor_snapshots s ON s.id = d.snapshot_id
                       WHERE d.snapshot_id = ?""",
                    (previous_id,),
                ):
                    key = self._deal_key(self._row_to_deal(row))
                    previous_prices.setdefault(key, row["monthly_price"])

            rows = []
            changes = 0
            matched = 0
            for deal in deals:
                previous = previous_prices.get(self._deal_key(deal))
                change_percent = None
                if previous:
                    change_percent = round(
                        (deal.monthly_price_minor_units - previous) / previous * 100, 2
                    )
                    if change_percent:
                        changes += 1
                cap_code = self._match_cap_code(deal, by_manufacturer)
                if cap_code:
                    matched += 1
                rows.append((
                    snapshot_id, source, deal.manufacturer, deal.model, deal.variant,
                    deal.monthly_price_minor_units, deal.initial_payment_minor_units,
                    deal.term, deal.annual_mileage, deal.external_value_score,
                    deal.deal_count, deal.image_url, deal.lease_type,
                    previous, change_percent, cap_code,
                ))

            with self._conn:
                self._conn.execute(
                    """INSERT INTO competitor_snapshots (id, source, snapshot_date, deal_count)
                       VALUES (?, ?, ?, ?)""",
                    (snapshot_id, source, captured, len(rows)),
                )
                self._conn.executemany(INSERT_DEAL_SQL, rows)

        logger.info(
            "Recorded %s snapshot %s: %d deals, %d matched, %d price changes",
            source, snapshot_id, len(rows), matched, changes,
        )
        return {
            "snapshot_id": snapshot_id,
            "source": source,
            "snapshot_date": captured,
            "deal_count": len(rows),
            "matched_count": matched,
            "price_change_count": changes,
            "previous_snapshot_id": previous_id,
        }

    def _latest_snapshots(self) -> list[sqlite3.Row]:
        """Newest snapshot of every source."""
        return self._conn.execute(
            """SELECT s.* FROM competitor_snapshots s
               WHERE s.rowid = (
                   SELECT s2.rowid FROM competitor_snapshots s2
                   WHERE s2.source = s.source
                   ORDER BY s2.snapshot_date DESC, s2.rowid DESC LIMIT 1
               )
               ORDER BY s.snapshot_date DESC, s.rowid DESC"""
        ).fetchall()

    def _latest_deal_rows(
        self, extra_where: str = ""
    ) -> tuple[list[sqlite3.Row], list[sqlite3.Row]]:
        with self._lock:
            snapshots = self._latest_snapshots()
            if not snapshots:
                return [], []
            ids = [row["id"] for row in snapshots]
            placeholders = ", ".join(["?"] * len(ids))
            rows = self._conn.execute(
                f"""SELECT d.*, s.snapshot_date FROM competitor_deals d
                    JOIN competitor_snapshots s ON s.id = d.snapshot_id
                    WHERE d.snapshot_id IN ({placeholders}) {extra_where}
                    ORDER BY d.deal_count DESC, d.id""",
                ids,
            ).fetchall()
        return snapshots, rows

    def fetch_competitor_deals(self, contract_type: str | None = None) -> CompetitorSnapshot:
        snapshots, rows = self._latest_deal_rows()
        if not snapshots:
            return CompetitorSnapshot()
        deals = tuple(
            deal
            for deal in (self._row_to_deal(row) for row in rows)
            if deal_lease_type_matches(deal.lease_type, contract_type)
        )
        newest = snapshots[0]
        return CompetitorSnapshot(
            snapshot_id=newest["id"],
            snapshot_date=self._parse_iso_datetime(newest["snapshot_date"]),
            deals=deals,
        )

    def fetch_unmatched_competitor_deals(
        self, contract_type: str | None = None
    ) -> list[CompetitorDeal]:
        """Latest deals that matched none of our rates when they were captured."""
        _, rows = self._latest_deal_rows("AND d.matched_cap_code IS NULL")
        return [
            deal
            for deal in (self._row_to_deal(row) for row in rows)
            if deal_lease_type_matches(deal.lease_type, contract_type)
        ]

    def fetch_price_changes(
        self,
        contract_type: str | None = None,
        min_change_percent: float = 5.0,
    ) -> list[PriceChange]:
        _, rows = self._latest_deal_rows(
            "AND d.previous_price IS NOT NULL AND d.price_change_percent IS NOT NULL"
        )
        changes = [
            PriceChange(
                manufacturer=deal.manufacturer,
                model=deal.model,
                source=deal.source,
                previous_price_minor_units=deal.previous_price_minor_units,
                current_price_minor_units=deal.monthly_price_minor_units,
                change_percent=deal.price_change_percent,
            )
            for deal in (self._row_to_deal(row) for row in rows)
            if deal_lease_type_matches(deal.lease_type, contract_type)
            and abs(deal.price_change_percent) >= min_change_percent
        ]
        changes.sort(key=lambda change: abs(change.change_percent), reverse=True)
        return changes

    # ── Scoring config ─────────────────────────────────────────────

    def fetch_scoring_config(self) -> ScoringConfig:
        with self._lock:
            row = self._conn.execute(
                "SELECT config FROM scoring_config WHERE is_active = 1 ORDER BY id DESC LIMIT 1"
            ).fetchone()
        if row is None:
            return ScoringConfig()
        try:
            raw = json.loads(row["config"])
        except (TypeError, json.JSONDecodeError):
            logger.warning("Active scoring config is not valid JSON; using defaults")
            return ScoringConfig()
        return ScoringConfig.from_dict(raw)

    def set_scoring_config(self, config: ScoringConfig) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute("UPDATE scoring_config SET is_active = 0 WHERE is_active = 1")
                self._conn.execute(
                    "INSERT INTO scoring_config (config, is_active, created_at) VALUES (?, 1, ?)",
                    (json.dumps(config.to_dict()), self._now()),
                )
        logger.info("Activated new scoring config")
