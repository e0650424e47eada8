# (c) Copyright Datacraft, 2026
"""Time-based capability restrictions."""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import TimeRestrictions, TimeOfDay, CapabilityConfigurationError

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
_MINUTES_PER_DAY = 24 * 60


def _as_utc(value: datetime) -> datetime:
	"""Naive datetimes are taken to be UTC."""
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc)


def parse_hhmm(value: str) -> int:
	"""Minutes since midnight for an `HH:MM` string."""
	try:
		hours, minutes = str(value).strip().split(":")
		h, m = int(hours), int(minutes)
	except ValueError:
		raise CapabilityConfigurationError(f"Invalid time of day: {value!r}") from None
	if not (0 <= h <= 23 and 0 <= m <= 59):
		raise CapabilityConfigurationError(f"Invalid time of day: {value!r}")
	return h * 60 + m


def sunday_weekday(moment: datetime) -> int:
	"""Day of week with Sunday = 0 ... Saturday = 6."""
	return (moment.weekday() + 1) % 7


def local_time(now: datetime, tz_name: str | None) -> datetime:
	"""
	Wall clock used for day-of-week and time-of-day checks.

	Without a zone the caller's `now` is used as given.
	"""
	if not tz_name:
		return now
	try:
		zone = ZoneInfo(tz_name)
	except (ZoneInfoNotFoundError, ValueError):
		raise CapabilityConfigurationError(f"Unknown timezone: {tz_name!r}") from None
	return _as_utc(now).astimezone(zone)


def in_time_window(window: TimeOfDay, moment: datetime) -> bool:
	"""
	Inclusive minute-granularity check. When end < start the window wraps
	midnight and covers [start, 24:00) and [00:00, end].
	"""
	start = parse_hhmm(window.start)
	end = parse_hhmm(window.end)
	current = (moment.hour * 60 + moment.minute) % _MINUTES_PER_DAY
	if start <= end:
		return start <= current <= end
	return current >= start or current <= end


def is_expired(expires_at: datetime | None, now: datetime) -> bool:
	if expires_at is None:
		return False
	return _as_utc(now) > _as_utc(expires_at)


def check_time_restrictions(
	restrictions: TimeRestrictions | None,
	now: datetime,
	default_timezone: str | None = None,
) -> list[str]:
	"""Return every reason `now` falls outside the restrictions (empty if valid)."""
	if restrictions is None:
		return []

	reasons = []
	moment = _as_utc(now)
	if restrictions.valid_from and moment < _as_utc(restrictions.valid_from):
		reasons.append(f"Not valid until {restrictions.valid_from.isoformat()}")
	if restrictions.valid_until and moment > _as_utc(restrictions.valid_until):
		reasons.append(f"Expired on {restrictions.valid_until.isoformat()}")

	local = local_time(now, restrictions.timezone or default_timezone)

	if restrictions.days_of_week:
		invalid = [d for d in restrictions.days_of_week if not isinstance(d, int) or not 0 <= d <= 6]
		if invalid:
			raise CapabilityConfigurationError(f"Invalid days_of_week: {invalid}")
		if sunday_weekday(local) not in restrictions.days_of_week:
			allowed = ", ".join(DAY_NAMES[d] for d in sorted(restrictions.days_of_week))
			reasons.append(f"Only allowed on: {allowed}")

	if restrictions.time_of_day and not in_time_window(restrictions.time_of_day, local):
		tod = restrictions.time_of_day
		reasons.append(f"Only allowed between {tod.start} - {tod.end}")

	return reasons


def is_temporally_valid(
	restrictions: TimeRestrictions | None,
	now: datetime,
	default_timezone: str | None = None,
) -> bool:
	return not check_time_restrictions(restrictions, now, default_timezone)
