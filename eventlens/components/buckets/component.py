"""
Time bucketer component.

Maps a time range and a granularity onto an ordered sequence of half-open
buckets anchored to local-time boundaries in the range's time zone.

Key behaviors:
- Day and coarser buckets start at local midnight, so DST transitions yield
  23- or 25-hour days
- Sub-day buckets are aligned to local boundaries and stepped in absolute time
- The first and last buckets are clipped to the range (partial buckets)
- Sequences are lazy, finite and restartable; their size is checked against
  a ceiling before anything is scanned (GranularityTooFine)

Invariants:
- buckets[0].start == range.start and buckets[-1].end == range.end
- buckets[i].end == buckets[i + 1].start (no gaps, no overlaps)
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from eventlens.core.entities import Bucket, Granularity, TimeRange
from eventlens.core.errors import GranularityTooFine, InvalidRange
from eventlens.core.ports.time import TimePort
from eventlens.rules.models import DEFAULT_RULES, Rules

from .models import PRESETS, BucketizeInput, PastMinutesRange, RangeSpec, RelativeRange

_FIXED_STEPS: dict[Granularity, timedelta] = {
    Granularity.MINUTE: timedelta(minutes=1),
    Granularity.FIVE_MINUTES: timedelta(minutes=5),
    Granularity.TEN_MINUTES: timedelta(minutes=10),
    Granularity.FIFTEEN_MINUTES: timedelta(minutes=15),
    Granularity.HOUR: timedelta(hours=1),
}

_LABEL_FORMATS: dict[Granularity, str] = {
    Granularity.MINUTE: "%Y-%m-%d %H:%M",
    Granularity.FIVE_MINUTES: "%Y-%m-%d %H:%M",
    Granularity.TEN_MINUTES: "%Y-%m-%d %H:%M",
    Granularity.FIFTEEN_MINUTES: "%Y-%m-%d %H:%M",
    Granularity.HOUR: "%Y-%m-%d %H:00",
    Granularity.DAY: "%Y-%m-%d",
    Granularity.WEEK: "%Y-%m-%d",
    Granularity.MONTH: "%Y-%m",
    Granularity.YEAR: "%Y",
}


# --- Parsing ---


def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA time zone name."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidRange(f"Unknown time zone: {name}", field_name="time_zone") from None


def parse_granularity(value: Granularity | str) -> Granularity:
    """Parse a granularity string."""
    try:
        return Granularity(value.lower() if isinstance(value, str) else value)
    except ValueError:
        allowed = ", ".join(g.value for g in Granularity)
        raise InvalidRange(
            f"Invalid bucket: {value}. Must be one of: {allowed}",
            field_name="granularity",
        ) from None


# --- Bucket calculation ---


def _localize(day: date, tz: ZoneInfo) -> datetime:
    """Local midnight of ``day`` as a UTC datetime."""
    return datetime.combine(day, time(0), tzinfo=tz).astimezone(UTC)


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    return date(day.year + month_index // 12, month_index % 12 + 1, 1)


def calculate_bucket_start(ts: datetime, granularity: Granularity, tz: ZoneInfo) -> datetime:
    """
    Start of the bucket containing ``ts``, in UTC.

    Naive timestamps are treated as UTC.
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    local = ts.astimezone(tz)

    if granularity in _FIXED_STEPS:
        # Floored in absolute time; the result is always within one step of ts
        step_minutes = int(_FIXED_STEPS[granularity].total_seconds() // 60)
        floored = ts - timedelta(
            minutes=local.minute % step_minutes,
            seconds=local.second,
            microseconds=local.microsecond,
        )
        return floored.astimezone(UTC)

    day = local.date()
    if granularity == Granularity.DAY:
        return _localize(day, tz)
    if granularity == Granularity.WEEK:
        return _localize(day - timedelta(days=day.weekday()), tz)
    if granularity == Granularity.MONTH:
        return _localize(day.replace(day=1), tz)
    if granularity == Granularity.YEAR:
        return _localize(date(day.year, 1, 1), tz)

    msg = f"Unknown granularity: {granularity}"
    raise ValueError(msg)


def calculate_bucket_end(bucket_start: datetime, granularity: Granularity, tz: ZoneInfo) -> datetime:
    """Nominal end of a bucket (exclusive), in UTC."""
    if granularity in _FIXED_STEPS:
        return bucket_start + _FIXED_STEPS[granularity]

    day = bucket_start.astimezone(tz).date()
    if granularity == Granularity.DAY:
        return _localize(day + timedelta(days=1), tz)
    if granularity == Granularity.WEEK:
        return _localize(day + timedelta(days=7), tz)
    if granularity == Granularity.MONTH:
        return _localize(_add_months(day, 1), tz)
    if granularity == Granularity.YEAR:
        return _localize(date(day.year + 1, 1, 1), tz)

    msg = f"Unknown granularity: {granularity}"
    raise ValueError(msg)


def bucket_label(bucket_start: datetime, granularity: Granularity, tz: ZoneInfo) -> str:
    """Local start of a bucket rendered for its granularity."""
    return bucket_start.astimezone(tz).strftime(_LABEL_FORMATS[granularity])


# --- Sequence ---


class BucketSequence:
    """
    Lazy, restartable sequence of buckets tiling a range.

    The number of buckets is counted once, up to the ceiling, at construction.
    """

    def __init__(self, time_range: TimeRange, granularity: Granularity, max_buckets: int) -> None:
        self.range = time_range
        self.granularity = granularity
        self._tz = get_zone(time_range.time_zone)

        count = 0
        for _ in self._generate():
            count += 1
            if count > max_buckets:
                raise GranularityTooFine(
                    f"Granularity '{granularity.value}' yields more than {max_buckets} buckets "
                    "for this range",
                    field_name="granularity",
                )
        self._count = count

    def _generate(self) -> Iterator[Bucket]:
        current = self.range.start
        end = self.range.end
        while current < end:
            nominal_start = calculate_bucket_start(current, self.granularity, self._tz)
            nominal_end = calculate_bucket_end(nominal_start, self.granularity, self._tz)
            bucket_end = min(nominal_end, end)
            yield Bucket(
                start=current,
                end=bucket_end,
                label=bucket_label(nominal_start, self.granularity, self._tz),
            )
            current = bucket_end

    def __iter__(self) -> Iterator[Bucket]:
        return self._generate()

    def __len__(self) -> int:
        return self._count

    def __repr__(self) -> str:
        return (
            f"BucketSequence({self.range.start.isoformat()}..{self.range.end.isoformat()}, "
            f"{self.granularity.value}, {self._count} buckets)"
        )


def bucketize(
    time_range: TimeRange,
    granularity: Granularity | str,
    max_buckets: int = DEFAULT_RULES.buckets.max_buckets,
) -> BucketSequence:
    """
    Tile a resolved range with buckets.

    Raises:
        InvalidRange: start > end or unknown time zone.
        GranularityTooFine: more than ``max_buckets`` buckets.
    """
    validate_range(time_range)
    return BucketSequence(time_range, parse_granularity(granularity), max_buckets)


# --- Range resolution ---


def validate_range(time_range: TimeRange) -> TimeRange:
    get_zone(time_range.time_zone)
    if time_range.start.tzinfo is None or time_range.end.tzinfo is None:
        raise InvalidRange("Range bounds must be timezone-aware")
    if time_range.start > time_range.end:
        raise InvalidRange(
            f"Range start {time_range.start.isoformat()} is after end {time_range.end.isoformat()}"
        )
    return time_range


def _as_utc(value: datetime, tz: ZoneInfo) -> datetime:
    """Naive datetimes are wall time in the range time zone."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value.astimezone(UTC)


def _preset_bounds(preset: str, now: datetime, tz: ZoneInfo) -> tuple[datetime, datetime]:
    today = now.astimezone(tz).date()
    tomorrow = today + timedelta(days=1)

    if preset == "today":
        return _localize(today, tz), _localize(tomorrow, tz)
    if preset == "yesterday":
        return _localize(today - timedelta(days=1), tz), _localize(today, tz)
    if preset == "last_24_hours":
        return now - timedelta(hours=24), now
    if preset in ("last_7_days", "last_30_days", "last_90_days"):
        days = int(preset.split("_")[1])
        return _localize(today - timedelta(days=days - 1), tz), _localize(tomorrow, tz)
    if preset == "this_month":
        first = today.replace(day=1)
        return _localize(first, tz), _localize(_add_months(first, 1), tz)
    if preset == "last_month":
        first = today.replace(day=1)
        return _localize(_add_months(first, -1), tz), _localize(first, tz)
    if preset == "this_year":
        return _localize(date(today.year, 1, 1), tz), _localize(date(today.year + 1, 1, 1), tz)

    raise InvalidRange(
        f"Unknown range preset: {preset}. Must be one of: {', '.join(sorted(PRESETS))}",
        field_name="preset",
    )


def resolve_range(spec: RangeSpec, now_utc: datetime) -> TimeRange:
    """
    Resolve a range specification to absolute UTC bounds.

    Raises:
        InvalidRange: start > end after resolution, unknown preset or time zone.
    """
    tz = get_zone(spec.time_zone)

    if isinstance(spec, RelativeRange):
        start, end = _preset_bounds(spec.preset, now_utc.astimezone(UTC), tz)
    elif isinstance(spec, PastMinutesRange):
        start = now_utc - timedelta(minutes=spec.start_minutes)
        end = now_utc - timedelta(minutes=spec.end_minutes)
    else:
        start, end = _as_utc(spec.start, tz), _as_utc(spec.end, tz)

    return validate_range(TimeRange(start=start, end=end, time_zone=spec.time_zone))


# --- Component Entry Points ---


def run_bucketize(
    inp: BucketizeInput,
    *,
    time_port: TimePort,
    rules: Rules | None = None,
) -> BucketSequence:
    """
    Resolve a range and tile it with buckets.

    Args:
        inp: Range specification and granularity.
        time_port: Clock used to resolve relative ranges.
        rules: Optional rules for the bucket ceiling.

    Returns:
        BucketSequence over the resolved range.
    """
    rules = rules or DEFAULT_RULES
    time_range = resolve_range(inp.range, time_port.now_utc())
    return bucketize(time_range, inp.granularity, rules.buckets.max_buckets)
