"""
Normalize - Field mapping between local rows and remote rows.

Local transactions keep wall-clock ``date`` + ``time`` (UTC) and boolean
flags; the remote ``txns`` table stores a single ``occurred_on`` timestamp, a
``Ingreso|Gasto|Settled`` type string and a ``deleted_at`` stamp. Settlement
direction has no column of its own remotely, so it travels as a marker at the
end of ``description``.

All transforms are pure and accept rows already in the target shape.

Usage:
    from logbook.normalize import get_descriptor

    txns = get_descriptor('txns')
    payload = txns.to_push(local_row, user_id='u-1')
    local_row = txns.to_local(payload)
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

REMOTE_INCOME = "Ingreso"
REMOTE_EXPENSE = "Gasto"
REMOTE_SETTLED = "Settled"

CURRENCIES = ("COP", "USD", "EUR")
DEFAULT_CURRENCY = "COP"

# Direction markers appended to settlement descriptions
SETTLEMENT_MARKERS = {"income": "[ingreso]", "expense": "[gasto]"}
_MARKER_RE = re.compile(r"\s*\[(ingreso|gasto)\]", re.IGNORECASE)
_MARKER_DIRECTION = {"ingreso": "income", "gasto": "expense"}

# Columns only the settlement endpoint writes; never sent by push
SERVER_OWNED_TXN_COLUMNS = ("settled",)

REMOTE_TXN_COLUMNS = (
    "id",
    "client_id",
    "user_id",
    "amount",
    "type",
    "currency",
    "occurred_on",
    "vertical_id",
    "category_id",
    "contributor_id",
    "retreat_id",
    "description",
    "settled",
    "deleted_at",
    "created_at",
    "updated_at",
)

_FOREIGN_KEYS = ("vertical_id", "category_id", "contributor_id", "retreat_id")


# -------------------------------------------------------------------------
# Scalar coercion
# -------------------------------------------------------------------------


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_utc(dt: datetime) -> str:
    """Format an aware datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (``Z``, offsets or naive) into an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        text = value.strip().replace(" ", "T", 1)
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def coerce_amount(value: Any) -> float:
    """
    Coerce an amount to a non-negative float rounded to cents.

    Accepts numbers and formatted strings ("1,234.50", "$ 1.234,50", "-20").
    Anything unparseable becomes 0.0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        number = _parse_amount_string(value)
    else:
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return round(abs(number), 2)


def _parse_amount_string(text: str) -> float:
    cleaned = re.sub(r"[^0-9,.\-]", "", text)
    if not cleaned or not re.search(r"\d", cleaned):
        return 0.0

    if "," in cleaned and "." in cleaned:
        # Whichever separator comes last is the decimal point
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        head, _, tail = cleaned.rpartition(",")
        if cleaned.count(",") == 1 and len(tail) != 3:
            cleaned = f"{head}.{tail}"
        else:
            cleaned = cleaned.replace(",", "")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")

    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def normalize_txn_type(value: Any) -> str:
    """Map any known spelling of a transaction direction to 'income' or 'expense'."""
    normalized = str(value if value is not None else "").strip().lower()
    if normalized in ("income", "ingreso"):
        return "income"
    return "expense"


def normalize_currency(value: Any, default: str = DEFAULT_CURRENCY) -> str:
    upper = str(value or default).strip().upper()
    return upper if upper in CURRENCIES else default


def null_if_blank(value: Any) -> Any:
    """Empty or whitespace-only strings become None."""
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _normalize_time(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    for fmt in ("%H:%M", "%H:%M:%S", "%H:%M:%S.%f"):
        try:
            return datetime.strptime(value.strip(), fmt).strftime("%H:%M")
        except ValueError:
            continue
    return None


def _normalize_date(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.strptime(value.strip()[:10], "%Y-%m-%d").strftime("%Y-%m-%d")
    except ValueError:
        return None


def compose_occurred_on(date: Any, time: Any, now: Optional[datetime] = None) -> str:
    """
    Combine local date + time (UTC wall clock) into a remote timestamp.

    A missing or invalid date falls back to ``now``; a missing time means
    midnight.
    """
    day = _normalize_date(date)
    if day is None:
        return iso_utc(now or utc_now())
    clock = _normalize_time(time) or "00:00"
    dt = datetime.strptime(f"{day}T{clock}", "%Y-%m-%dT%H:%M").replace(tzinfo=timezone.utc)
    return iso_utc(dt)


def split_occurred_on(value: Any) -> Optional[tuple[str, str]]:
    """Split a remote timestamp into UTC (date, 'HH:MM'), or None if unparseable."""
    dt = parse_timestamp(value)
    if dt is None:
        return None
    return dt.strftime("%Y-%m-%d"), dt.strftime("%H:%M")


# -------------------------------------------------------------------------
# Settlement markers
# -------------------------------------------------------------------------


def strip_settlement_marker(description: Any) -> Optional[str]:
    if description is None:
        return None
    return null_if_blank(_MARKER_RE.sub("", str(description)).strip())


def settlement_direction(description: Any) -> Optional[str]:
    """Return the direction encoded by the last marker in a description, if any."""
    if not description:
        return None
    found = _MARKER_RE.findall(str(description))
    if not found:
        return None
    return _MARKER_DIRECTION[found[-1].lower()]


def with_settlement_marker(description: Any, direction: str) -> str:
    base = strip_settlement_marker(description)
    marker = SETTLEMENT_MARKERS[direction]
    return f"{base} {marker}" if base else marker


# -------------------------------------------------------------------------
# Transactions
# -------------------------------------------------------------------------


def _txn_kind(row: dict) -> tuple[str, bool]:
    """Return (direction, is_settlement) for a row in either shape."""
    raw_type = str(row.get("type") or "").strip()
    if raw_type.lower() == REMOTE_SETTLED.lower():
        return settlement_direction(row.get("description")) or "expense", True
    return normalize_txn_type(raw_type), bool(row.get("is_settlement"))


def txn_to_remote(row: dict, user_id: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    """
    Map a local transaction to the remote ``txns`` payload.

    Args:
        row: Local (or already remote-shaped) transaction
        user_id: Authenticated owner; falls back to the row's own user_id
        now: Instant used for fresh rows without a date

    Returns:
        Dict restricted to REMOTE_TXN_COLUMNS
    """
    direction, is_settlement = _txn_kind(row)
    now = now or utc_now()

    if row.get("date") is None and row.get("occurred_on") is not None:
        occurred = parse_timestamp(row["occurred_on"])
        occurred_on = iso_utc(occurred) if occurred else iso_utc(now)
    else:
        occurred_on = compose_occurred_on(row.get("date"), row.get("time"), now=now)

    description = null_if_blank(row.get("description"))
    if is_settlement:
        description = with_settlement_marker(description, direction)
        remote_type = REMOTE_SETTLED
    else:
        remote_type = REMOTE_INCOME if direction == "income" else REMOTE_EXPENSE

    if "deleted_at" in row:
        deleted_at = row["deleted_at"]
    elif row.get("deleted"):
        deleted_at = row.get("updated_at") or iso_utc(now)
    else:
        deleted_at = None

    payload = {
        "id": row["id"],
        "client_id": row.get("client_id") or row["id"],
        "user_id": user_id or row.get("user_id"),
        "amount": coerce_amount(row.get("amount")),
        "type": remote_type,
        "currency": normalize_currency(row.get("currency")),
        "occurred_on": occurred_on,
        "description": description,
        "settled": bool(row.get("settled")),
        "deleted_at": deleted_at,
        "created_at": row.get("created_at"),
        "updated_at": row.get("updated_at"),
    }
    for key in _FOREIGN_KEYS:
        payload[key] = null_if_blank(row.get(key))
    return {k: payload[k] for k in REMOTE_TXN_COLUMNS}


def txn_to_local(row: dict) -> dict:
    """Map a remote ``txns`` row (or an already local row) to the local shape."""
    direction, is_settlement = _txn_kind(row)

    parts = split_occurred_on(row.get("occurred_on"))
    if parts is None:
        day = _normalize_date(row.get("date"))
        if day is not None:
            parts = (day, _normalize_time(row.get("time")) or "00:00")
        else:
            parts = split_occurred_on(row.get("created_at")) or split_occurred_on(utc_now())
    date, time = parts

    description = null_if_blank(row.get("description"))
    if is_settlement:
        description = strip_settlement_marker(description)

    if "deleted_at" in row:
        deleted = row["deleted_at"] is not None
    else:
        deleted = bool(row.get("deleted"))

    local = {
        "id": row["id"],
        "amount": coerce_amount(row.get("amount")),
        "type": direction,
        "currency": normalize_currency(row.get("currency")),
        "date": date,
        "time": time,
        "description": description,
        "is_settlement": is_settlement,
        "settled": bool(row.get("settled")),
        "deleted": deleted,
        "created_at": row.get("created_at"),
        "updated_at": row.get("updated_at"),
    }
    for key in _FOREIGN_KEYS:
        local[key] = null_if_blank(row.get(key))
    return local


# -------------------------------------------------------------------------
# Simple tables
# -------------------------------------------------------------------------


def contributor_to_local(row: dict) -> dict:
    local = dict(row)
    local["auth_user_id"] = null_if_blank(row.get("auth_user_id"))
    local["name"] = null_if_blank(row.get("name"))
    local["email"] = row.get("email") or ""
    if not isinstance(local.get("created_at"), str):
        local["created_at"] = row.get("updated_at") or iso_utc(utc_now())
    return local


def retreat_to_local(row: dict) -> dict:
    local = dict(row)
    for key in ("end_date", "default_vertical_id", "default_category_id", "notes"):
        local[key] = null_if_blank(row.get(key))
    return local


def category_to_local(row: dict) -> dict:
    local = dict(row)
    local["vertical_id"] = null_if_blank(row.get("vertical_id"))
    return local


def settlement_payment_to_local(row: dict) -> dict:
    local = dict(row)
    local["amount"] = coerce_amount(row.get("amount"))
    return local


# -------------------------------------------------------------------------
# Table registry
# -------------------------------------------------------------------------


@dataclass(frozen=True)
class TableDescriptor:
    """How one mirrored table crosses between local and remote shapes.

    ``allowed_columns`` is the push whitelist: the payload sent upstream keeps
    only these keys, after ``to_remote`` (when set) has reshaped the row.
    """

    name: str
    to_local: Callable[[dict], dict]
    allowed_columns: tuple[str, ...]
    to_remote: Optional[Callable[..., dict]] = None
    soft_delete: bool = False
    push: bool = True

    def to_push(self, row: dict, user_id: Optional[str] = None, now: Optional[datetime] = None) -> dict:
        """Remote payload for an outbox row, restricted to ``allowed_columns``."""
        payload = self.to_remote(row, user_id=user_id, now=now) if self.to_remote else row
        return {k: payload[k] for k in self.allowed_columns if k in payload}


TABLES: dict[str, TableDescriptor] = {
    "verticals": TableDescriptor(
        name="verticals",
        to_local=dict,
        allowed_columns=("id", "name"),
    ),
    "categories": TableDescriptor(
        name="categories",
        to_local=category_to_local,
        allowed_columns=("id", "name", "vertical_id"),
    ),
    "contributors": TableDescriptor(
        name="contributors",
        to_local=contributor_to_local,
        allowed_columns=("id", "auth_user_id", "email", "name"),
    ),
    "retreats": TableDescriptor(
        name="retreats",
        to_local=retreat_to_local,
        allowed_columns=(
            "id",
            "name",
            "start_date",
            "end_date",
            "default_vertical_id",
            "default_category_id",
            "notes",
        ),
    ),
    "txns": TableDescriptor(
        name="txns",
        to_local=txn_to_local,
        allowed_columns=tuple(c for c in REMOTE_TXN_COLUMNS if c not in SERVER_OWNED_TXN_COLUMNS),
        to_remote=txn_to_remote,
        soft_delete=True,
    ),
    # Recorded through the settlement endpoint, never through the outbox
    "settlement_payments": TableDescriptor(
        name="settlement_payments",
        to_local=settlement_payment_to_local,
        allowed_columns=("id", "txn_id", "amount", "occurred_on", "created_at"),
        push=False,
    ),
}

# Parents before children so foreign keys resolve on a fresh device
PULL_ORDER = ("verticals", "categories", "contributors", "retreats", "txns", "settlement_payments")

SYNC_TABLES = frozenset(name for name, d in TABLES.items() if d.push)


def get_descriptor(table: str) -> Optional[TableDescriptor]:
    """Look up a table descriptor; None for tables the sync engine does not know."""
    return TABLES.get(table)
