from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_money(value: Decimal | float | int | str) -> Decimal:
    """Quantize an amount to cents, going through str() for floats."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def ensure_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def join_names(names: tuple[str, ...]) -> str:
    return ",".join(names)


def split_names(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(value.split(","))
