"""Effective-dated price versions for gold karats and currencies.

One store class serves both instrument families; an `InstrumentKind` names the
tables, the instrument lookup column and the rounding precision. Each price
record covers ``[effective_from, effective_until)``; the record with no
``effective_until`` is the instrument's *open* record.

Versioning rules:
  - `create` closes the open record and inserts its successor inside one
    ``BEGIN IMMEDIATE`` transaction, using a single timestamp for both, so the
    timeline has neither gaps nor overlaps.
  - `update` of an open record is a revision (new version); `update` of a closed
    record amends history in place without opening a version.
  - `delete` removes any record (admin correction), after auditing it.

A partial unique index (see `db.schema`) rejects a second open record if two
writers ever raced past the transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import math
import sqlite3
from typing import Any, Dict, Iterable, List, Optional, Tuple

from goldmarket.core.errors import NotFoundError, ValidationError
from goldmarket.db.dal import Database, utc_before, utc_now
from .audit import SYSTEM, Actor, AuditLog
from .money import round_to
from .pricing import (
    AUTO_UPDATE_MARGIN,
    ConversionResult,
    calculate_spread,
    convert_between,
    derive_karat_prices,
    final_rate,
    spread_percentage,
)

logger = logging.getLogger("goldmarket.prices")


@dataclass(frozen=True)
class InstrumentKind:
    name: str
    label: str
    record_label: str
    price_table: str
    instrument_table: str
    instrument_column: str
    instrument_fields: Tuple[str, ...]
    lookup_column: str
    entity_type: str
    convert_places: int
    stats_places: int
    compare_places: int
    order_by: str


GOLD = InstrumentKind(
    name="gold",
    label="Gold type",
    record_label="Gold price",
    price_table="gold_prices",
    instrument_table="gold_types",
    instrument_column="gold_type_id",
    instrument_fields=("name_ar", "name_en", "karat", "purity"),
    lookup_column="karat",
    entity_type="GOLD_PRICE",
    convert_places=2,
    stats_places=2,
    compare_places=2,
    order_by="i.display_order, i.karat DESC",
)

CURRENCY = InstrumentKind(
    name="currency",
    label="Currency",
    record_label="Currency rate",
    price_table="currency_rates",
    instrument_table="currencies",
    instrument_column="currency_id",
    instrument_fields=("code", "name_ar", "name_en", "symbol", "flag_emoji", "is_base"),
    lookup_column="code",
    entity_type="CURRENCY_RATE",
    convert_places=4,
    stats_places=6,
    compare_places=4,
    order_by="i.display_order, i.code",
)

_PRICE_COLUMNS = (
    "id",
    "buy_raw",
    "sell_raw",
    "spread",
    "margin_buy",
    "margin_sell",
    "is_manual",
    "updated_by",
    "effective_from",
    "effective_until",
    "created_at",
)


@dataclass
class PriceRecord:
    id: Optional[int]
    instrument_id: int
    buy: Optional[float]
    sell: Optional[float]
    spread: Optional[float]
    margin_buy: float = 0.0
    margin_sell: float = 0.0
    is_manual: bool = False
    updated_by: Optional[int] = None
    effective_from: Optional[str] = None
    effective_until: Optional[str] = None
    created_at: Optional[str] = None
    instrument: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_price(self) -> bool:
        return self.id is not None

    @property
    def is_open(self) -> bool:
        return self.has_price and self.effective_until is None

    def final(self, side: str) -> float:
        """Quoted price for `side`: buy raw + buy margin, sell raw - sell margin."""
        if side == "sell":
            return final_rate("sell", self.sell or 0.0, self.margin_sell)
        return final_rate(side, self.buy or 0.0, self.margin_buy)

    def values(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "instrument_id": self.instrument_id,
            "buy": self.buy,
            "sell": self.sell,
            "spread": self.spread,
            "margin_buy": self.margin_buy,
            "margin_sell": self.margin_sell,
            "is_manual": self.is_manual,
            "effective_from": self.effective_from,
            "effective_until": self.effective_until,
        }


def _record_from_row(row: Any) -> PriceRecord:
    data = dict(row)
    instrument = {k: v for k, v in data.items() if k not in _PRICE_COLUMNS and k != "instrument_id"}
    if "is_base" in instrument:
        instrument["is_base"] = bool(instrument["is_base"])
    return PriceRecord(
        id=data["id"],
        instrument_id=data["instrument_id"],
        buy=data["buy_raw"],
        sell=data["sell_raw"],
        spread=data["spread"],
        margin_buy=data["margin_buy"] or 0.0,
        margin_sell=data["margin_sell"] or 0.0,
        is_manual=bool(data["is_manual"]),
        updated_by=data["updated_by"],
        effective_from=data["effective_from"],
        effective_until=data["effective_until"],
        created_at=data["created_at"],
        instrument=instrument,
    )


def _check_prices(buy: Any, sell: Any) -> Tuple[float, float]:
    try:
        buy_f, sell_f = float(buy), float(sell)
    except (TypeError, ValueError):
        raise ValidationError("Prices must be positive numbers", "INVALID_PRICES")
    if not (math.isfinite(buy_f) and math.isfinite(sell_f)) or buy_f <= 0 or sell_f <= 0:
        raise ValidationError("Prices must be positive numbers", "INVALID_PRICES")
    return buy_f, sell_f


def _check_margin(value: Any, name: str) -> float:
    try:
        margin = float(value or 0.0)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number", "INVALID_MARGIN")
    if not math.isfinite(margin) or margin < 0 or margin >= 1:
        raise ValidationError(f"{name} must be a fraction between 0 and 1", "INVALID_MARGIN")
    return margin


class PriceVersionStore:
    def __init__(self, db: Database, kind: InstrumentKind, audit: Optional[AuditLog] = None):
        self.db = db
        self.kind = kind
        self.audit = audit or AuditLog(db)

    # ------------------------------------------------------------------
    # SQL fragments
    def _select(self, join: str = "JOIN") -> str:
        k = self.kind
        price_cols = ", ".join(f"p.{c}" for c in _PRICE_COLUMNS)
        inst_cols = ", ".join(f"i.{c}" for c in k.instrument_fields)
        return (
            f"SELECT {price_cols}, i.id AS instrument_id, {inst_cols} "
            f"FROM {k.instrument_table} i {join} {k.price_table} p "
        )

    def _current_filter(self) -> str:
        return "p.effective_from <= ? AND (p.effective_until IS NULL OR p.effective_until > ?)"

    # ------------------------------------------------------------------
    # Instruments
    def list_instruments(self) -> List[Dict[str, Any]]:
        return self.db.fetch_all(
            f"SELECT * FROM {self.kind.instrument_table} i WHERE i.is_active = 1 "
            f"ORDER BY {self.kind.order_by}"
        )

    def get_instrument(self, instrument_id: int) -> Optional[Dict[str, Any]]:
        return self.db.fetch_one(
            f"SELECT * FROM {self.kind.instrument_table} WHERE id = ?", (instrument_id,)
        )

    def _require_instrument(self, conn: sqlite3.Connection, instrument_id: int) -> None:
        row = conn.execute(
            f"SELECT id FROM {self.kind.instrument_table} WHERE id = ?", (instrument_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"{self.kind.label} not found", "INSTRUMENT_NOT_FOUND")

    # ------------------------------------------------------------------
    # Reads
    def find_by_id(self, record_id: int) -> Optional[PriceRecord]:
        k = self.kind
        row = self.db.fetch_one(
            self._select() + f"ON p.{k.instrument_column} = i.id WHERE p.id = ?",
            (record_id,),
        )
        return _record_from_row(row) if row else None

    def get_current(self, instrument_id: int) -> Optional[PriceRecord]:
        k = self.kind
        now = utc_now()
        row = self.db.fetch_one(
            self._select()
            + f"ON p.{k.instrument_column} = i.id "
            f"WHERE i.id = ? AND {self._current_filter()} "
            "ORDER BY p.effective_from DESC, p.id DESC LIMIT 1",
            (instrument_id, now, now),
        )
        return _record_from_row(row) if row else None

    def get_current_by_lookup(self, value: Any) -> Optional[PriceRecord]:
        """Current record resolved by karat (gold) or ISO code (currency)."""
        k = self.kind
        now = utc_now()
        row = self.db.fetch_one(
            self._select()
            + f"ON p.{k.instrument_column} = i.id "
            f"WHERE i.{k.lookup_column} = ? AND {self._current_filter()} "
            "ORDER BY p.effective_from DESC, p.id DESC LIMIT 1",
            (value, now, now),
        )
        return _record_from_row(row) if row else None

    def get_current_by_code(self, code: str) -> Optional[PriceRecord]:
        return self.get_current_by_lookup(code.upper())

    def list_current(self) -> List[PriceRecord]:
        """Every active instrument with its current record (empty price when none)."""
        k = self.kind
        now = utc_now()
        sql = (
            self._select("LEFT JOIN")
            + f"""ON p.id = (
                SELECT c.id FROM {k.price_table} c
                WHERE c.{k.instrument_column} = i.id
                AND c.effective_from <= ? AND (c.effective_until IS NULL OR c.effective_until > ?)
                ORDER BY c.effective_from DESC, c.id DESC LIMIT 1
            )
            WHERE i.is_active = 1
            ORDER BY {k.order_by}"""
        )
        return [_record_from_row(r) for r in self.db.fetch_all(sql, (now, now))]

    def history(
        self,
        instrument_id: int,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[PriceRecord]:
        k = self.kind
        sql = self._select() + f"ON p.{k.instrument_column} = i.id WHERE i.id = ?"
        params: List[Any] = [instrument_id]
        if start_date:
            sql += " AND p.effective_from >= ?"
            params.append(start_date)
        if end_date:
            # A bare YYYY-MM-DD end date includes that whole day.
            column = "substr(p.effective_from, 1, 10)" if len(end_date) == 10 else "p.effective_from"
            sql += f" AND {column} <= ?"
            params.append(end_date)
        sql += " ORDER BY p.effective_from DESC, p.id DESC"
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
            if offset:
                sql += " OFFSET ?"
                params.append(offset)
        return [_record_from_row(r) for r in self.db.fetch_all(sql, params)]

    def statistics(self, instrument_id: int, window_days: int = 30) -> Dict[str, Any]:
        k = self.kind
        row = self.db.fetch_one(
            f"""
            SELECT MIN(buy_raw) AS min_buy, MAX(buy_raw) AS max_buy, AVG(buy_raw) AS avg_buy,
                   MIN(sell_raw) AS min_sell, MAX(sell_raw) AS max_sell, AVG(sell_raw) AS avg_sell,
                   COUNT(*) AS total_records
            FROM {k.price_table}
            WHERE {k.instrument_column} = ? AND effective_from >= ?
            """,
            (instrument_id, utc_before(window_days)),
        ) or {}
        stats = dict(row)
        for key in ("avg_buy", "avg_sell"):
            if stats.get(key) is not None:
                stats[key] = round_to(stats[key], k.stats_places)
        stats["total_records"] = stats.get("total_records") or 0
        return stats

    def compare(self) -> List[Tuple[PriceRecord, Optional[float]]]:
        places = self.kind.compare_places
        return [
            (record, spread_percentage(record.spread or 0.0, record.buy or 0.0, places))
            for record in self.list_current()
            if record.has_price
        ]

    def convert(self, amount: float, from_value: Any, to_value: Any, side: str = "buy") -> ConversionResult:
        if amount is None or not math.isfinite(amount) or amount <= 0:
            raise ValidationError("Amount must be a positive number", "INVALID_AMOUNT")
        source = self.get_current_by_lookup(from_value)
        target = self.get_current_by_lookup(to_value)
        if source is None or target is None:
            missing = from_value if source is None else to_value
            raise NotFoundError(f"{self.kind.record_label} not found for {missing}", "RATE_NOT_FOUND")
        return convert_between(
            amount,
            source.final(side),
            target.final(side),
            self.kind.convert_places,
            from_code=str(from_value),
            to_code=str(to_value),
            side=side,
        )

    # ------------------------------------------------------------------
    # Writes
    def _insert_version(
        self,
        conn: sqlite3.Connection,
        instrument_id: int,
        buy: float,
        sell: float,
        margin_buy: float,
        margin_sell: float,
        is_manual: bool,
        actor: Actor,
    ) -> int:
        """Close the open record and insert its successor on `conn` (in a transaction)."""
        k = self.kind
        self._require_instrument(conn, instrument_id)
        previous = conn.execute(
            f"""
            SELECT * FROM {k.price_table}
            WHERE {k.instrument_column} = ? AND effective_until IS NULL
            """,
            (instrument_id,),
        ).fetchone()
        now = utc_now()
        if previous is not None and previous["effective_from"] > now:
            now = previous["effective_from"]
        conn.execute(
            f"""
            UPDATE {k.price_table} SET effective_until = ?
            WHERE {k.instrument_column} = ? AND effective_until IS NULL
            """,
            (now, instrument_id),
        )
        spread = calculate_spread(buy, sell)
        cur = conn.execute(
            f"""
            INSERT INTO {k.price_table}
                ({k.instrument_column}, buy_raw, sell_raw, spread, margin_buy, margin_sell,
                 is_manual, updated_by, effective_from, effective_until, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, ?)
            """,
            (instrument_id, buy, sell, spread, margin_buy, margin_sell,
             int(is_manual), actor.user_id, now, now),
        )
        record_id = int(cur.lastrowid)
        self.audit.record(
            "CREATE",
            k.entity_type,
            record_id,
            old_values=dict(previous) if previous is not None else None,
            new_values={
                "instrument_id": instrument_id,
                "buy": buy,
                "sell": sell,
                "spread": spread,
                "margin_buy": margin_buy,
                "margin_sell": margin_sell,
                "is_manual": bool(is_manual),
                "effective_from": now,
            },
            actor=actor,
            conn=conn,
        )
        return record_id

    def create(
        self,
        instrument_id: int,
        buy: float,
        sell: float,
        margin_buy: float = 0.0,
        margin_sell: float = 0.0,
        is_manual: bool = False,
        actor: Actor = SYSTEM,
    ) -> PriceRecord:
        buy, sell = _check_prices(buy, sell)
        margin_buy = _check_margin(margin_buy, "marginBuy")
        margin_sell = _check_margin(margin_sell, "marginSell")
        with self.db.transaction() as conn:
            record_id = self._insert_version(
                conn, instrument_id, buy, sell, margin_buy, margin_sell, is_manual, actor
            )
        logger.info(
            "price version created",
            extra={"context": {"kind": self.kind.name, "instrument_id": instrument_id, "record_id": record_id}},
        )
        return self.find_by_id(record_id)  # type: ignore[return-value]

    def update(self, record_id: int, changes: Dict[str, Any], actor: Actor = SYSTEM) -> PriceRecord:
        record = self.find_by_id(record_id)
        if record is None:
            raise NotFoundError(f"{self.kind.record_label} not found", "NOT_FOUND")
        if record.is_open:
            return self.revise_open(record, changes, actor)
        return self.amend_closed(record, changes, actor)

    @staticmethod
    def _merge(record: PriceRecord, changes: Dict[str, Any]) -> Dict[str, Any]:
        def pick(name: str, current: Any) -> Any:
            value = changes.get(name)
            return current if value is None else value

        return {
            "buy": pick("buy", record.buy),
            "sell": pick("sell", record.sell),
            "margin_buy": pick("margin_buy", record.margin_buy),
            "margin_sell": pick("margin_sell", record.margin_sell),
            "is_manual": bool(pick("is_manual", record.is_manual)),
        }

    def revise_open(self, record: PriceRecord, changes: Dict[str, Any], actor: Actor = SYSTEM) -> PriceRecord:
        """Supersede the open record with a new version carrying the merged fields."""
        merged = self._merge(record, changes)
        return self.create(record.instrument_id, actor=actor, **merged)

    def amend_closed(self, record: PriceRecord, changes: Dict[str, Any], actor: Actor = SYSTEM) -> PriceRecord:
        """Correct a closed (historical) record in place; no version is opened."""
        merged = self._merge(record, changes)
        buy, sell = _check_prices(merged["buy"], merged["sell"])
        margin_buy = _check_margin(merged["margin_buy"], "marginBuy")
        margin_sell = _check_margin(merged["margin_sell"], "marginSell")
        spread = calculate_spread(buy, sell)
        with self.db.transaction() as conn:
            conn.execute(
                f"""
                UPDATE {self.kind.price_table}
                SET buy_raw = ?, sell_raw = ?, spread = ?, margin_buy = ?, margin_sell = ?,
                    is_manual = ?, updated_by = ?
                WHERE id = ?
                """,
                (buy, sell, spread, margin_buy, margin_sell,
                 int(merged["is_manual"]), actor.user_id, record.id),
            )
            self.audit.record(
                "UPDATE",
                self.kind.entity_type,
                record.id,
                old_values=record.values(),
                new_values={**merged, "spread": spread},
                actor=actor,
                conn=conn,
            )
        return self.find_by_id(record.id)  # type: ignore[arg-type,return-value]

    def delete(self, record_id: int, actor: Actor = SYSTEM) -> None:
        record = self.find_by_id(record_id)
        if record is None:
            raise NotFoundError(f"{self.kind.record_label} not found", "NOT_FOUND")
        with self.db.transaction() as conn:
            self.audit.record(
                "DELETE", self.kind.entity_type, record_id,
                old_values=record.values(), actor=actor, conn=conn,
            )
            conn.execute(f"DELETE FROM {self.kind.price_table} WHERE id = ?", (record_id,))
        logger.info(
            "price record deleted",
            extra={"context": {"kind": self.kind.name, "record_id": record_id, "was_open": record.is_open}},
        )

    # ------------------------------------------------------------------
    # Batch operations
    def auto_update(self, base_price_24k: float, actor: Actor = SYSTEM) -> List[PriceRecord]:
        """Derive and version every active karat from the 24K base price."""
        if self.kind is not GOLD:
            raise ValidationError("Auto update is only available for gold", "UNSUPPORTED")
        karats = self.list_instruments()
        derived = [(t["id"], derive_karat_prices(base_price_24k, t["purity"])) for t in karats]
        ids: List[int] = []
        with self.db.transaction() as conn:
            for type_id, prices in derived:
                ids.append(
                    self._insert_version(
                        conn, type_id, prices["buy"], prices["sell"],
                        AUTO_UPDATE_MARGIN, AUTO_UPDATE_MARGIN, False, actor,
                    )
                )
        logger.info(
            "gold prices auto-updated",
            extra={"context": {"base_price_24k": base_price_24k, "count": len(ids)}},
        )
        return [r for r in (self.find_by_id(i) for i in ids) if r is not None]

    def bulk_update(self, entries: Iterable[Dict[str, Any]], actor: Actor = SYSTEM) -> Dict[str, Any]:
        """Create one version per entry; failures are collected, not raised."""
        updated: List[PriceRecord] = []
        errors: List[Dict[str, Any]] = []
        total = 0
        for entry in entries:
            total += 1
            instrument_id = entry.get("instrument_id")
            if not instrument_id or entry.get("buy") is None or entry.get("sell") is None:
                errors.append({"instrument_id": instrument_id, "error": "Missing required fields"})
                continue
            try:
                updated.append(
                    self.create(
                        instrument_id,
                        entry["buy"],
                        entry["sell"],
                        entry.get("margin_buy") or 0.0,
                        entry.get("margin_sell") or 0.0,
                        bool(entry.get("is_manual")),
                        actor,
                    )
                )
            except (NotFoundError, ValidationError, sqlite3.Error) as exc:
                message = getattr(exc, "message", None) or str(exc)
                errors.append({"instrument_id": instrument_id, "error": message})
        if errors:
            logger.warning(
                "bulk update finished with errors",
                extra={"context": {"kind": self.kind.name, "errors": len(errors), "total": total}},
            )
        return {
            "updated": updated,
            "errors": errors,
            "total_processed": total,
            "success_count": len(updated),
            "error_count": len(errors),
        }
