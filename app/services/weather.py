"""Hourly forecast parsing, summaries and the per-session weather cache.

Timestamps are treated as local wall-clock values: any timezone suffix is
ignored, never converted.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?")

# Semaphore default used when prefetching weather for several jobs
DEFAULT_PREFETCH_CONCURRENCY = 3


@dataclass
class HourlyEntry:
    """One hour of forecast data."""

    time: str
    temp_f: float = 0.0
    feels_like_f: float = 0.0
    condition: str = ""
    rain_chance: float = 0.0
    rain_inches: float = 0.0
    wind_speed_mph: float = 0.0

    def to_payload(self) -> dict:
        """Serialize with the camelCase keys the backend uses."""
        return {
            "time": self.time,
            "tempF": self.temp_f,
            "feelsLikeF": self.feels_like_f,
            "condition": self.condition,
            "rainChance": self.rain_chance,
            "rainInches": self.rain_inches,
            "windSpeedMph": self.wind_speed_mph,
        }


@dataclass
class JobWeather:
    """Forecast for one job on one date."""

    daily_high_temp_f: Optional[float] = None
    daily_low_temp_f: Optional[float] = None
    worst_hour: Optional[dict] = None
    hourly: list[HourlyEntry] = field(default_factory=list)

    @property
    def peak(self) -> Optional[HourlyEntry]:
        return compute_peak(self.hourly)

    def to_payload(self) -> dict:
        peak = self.peak
        return {
            "daily_high_temp_f": self.daily_high_temp_f,
            "daily_low_temp_f": self.daily_low_temp_f,
            "worst_hour": self.worst_hour,
            "hourly_weather": [entry.to_payload() for entry in self.hourly],
            "peak": peak.to_payload() if peak else None,
        }


def _to_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_hourly(raw: Any) -> list[HourlyEntry]:
    """Parse an hourly payload (JSON string or list of dicts).

    Entries without a time are dropped. Feels-like falls back to temperature.

    Raises:
        ValueError: If ``raw`` is a string that is not valid JSON.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError("Failed to parse hourly weather.") from exc
    if not isinstance(raw, list):
        return []

    entries = []
    for row in raw:
        if not isinstance(row, dict):
            continue
        time_value = str(row.get("time") or "")
        if not time_value:
            continue
        temp_f = _to_float(row.get("tempF"))
        feels_like = row.get("feelsLikeF")
        entries.append(
            HourlyEntry(
                time=time_value,
                temp_f=temp_f,
                feels_like_f=temp_f if feels_like is None else _to_float(feels_like, temp_f),
                condition=str(row.get("condition") or ""),
                rain_chance=_to_float(row.get("rainChance")),
                rain_inches=_to_float(row.get("rainInches")),
                wind_speed_mph=_to_float(row.get("windSpeedMph")),
            )
        )
    return entries


def normalize_weather_row(row: Any) -> Optional[JobWeather]:
    """Turn a ``get_job_hourly_weather`` result into ``JobWeather``.

    The RPC may return a list of rows or a single row. An empty result
    means no forecast exists for the job.
    """
    if isinstance(row, list):
        row = row[0] if row else None
    if not row:
        return None

    worst_hour = row.get("worst_hour")
    return JobWeather(
        daily_high_temp_f=_to_optional_float(row.get("daily_high_temp_f")),
        daily_low_temp_f=_to_optional_float(row.get("daily_low_temp_f")),
        worst_hour=worst_hour if isinstance(worst_hour, dict) else None,
        hourly=parse_hourly(row.get("hourly_weather")),
    )


def compute_peak(hourly: list[HourlyEntry]) -> Optional[HourlyEntry]:
    """Pick the wettest hour.

    Uses maximum rain inches; if no hour has measurable rain, falls back to
    maximum rain chance. The first entry wins ties.
    """
    if not hourly:
        return None

    peak = hourly[0]
    for entry in hourly[1:]:
        if entry.rain_inches > peak.rain_inches:
            peak = entry
    if peak.rain_inches > 0:
        return peak

    peak = hourly[0]
    for entry in hourly[1:]:
        if entry.rain_chance > peak.rain_chance:
            peak = entry
    return peak


# Wall-clock parsing


def _time_part(value: str) -> str:
    value = value.strip()
    if "T" in value:
        value = value.split("T", 1)[1]
    elif " " in value:
        value = value.split(" ", 1)[1]
    # Drop "+00", "Z" or "-07:00" suffixes
    return re.split(r"[+Z-]", value, maxsplit=1)[0]


def parse_clock(value: Optional[str]) -> Optional[tuple[int, int]]:
    """Extract ``(hour, minute)`` from a timestamp or bare ``HH:MM[:SS]``."""
    if not value:
        return None
    match = _CLOCK_RE.match(_time_part(value))
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour, minute


def parse_hour(value: Optional[str]) -> Optional[int]:
    clock = parse_clock(value)
    return clock[0] if clock else None


def format_hour_label(value: str) -> str:
    """``"2026-01-07T14:30"`` -> ``"2:30 PM"``; unparseable input is returned as-is."""
    clock = parse_clock(value)
    if clock is None:
        return value
    hour, minute = clock
    suffix = "PM" if hour >= 12 else "AM"
    hour12 = hour % 12 or 12
    minutes = "" if minute == 0 else f":{minute:02d}"
    return f"{hour12}{minutes} {suffix}"


def temperature_style(temp_f: float, condition: str) -> str:
    """Colour band for an hour tile."""
    lowered = condition.lower()
    if temp_f <= 33:
        return "freezing"
    if temp_f >= 65 and ("sun" in lowered or "clear" in lowered):
        return "warm"
    return "mild"


@dataclass
class HourSlot:
    """One rendered hour in the forecast strip."""

    entry: HourlyEntry
    hour: Optional[int]
    label: str
    within_job: bool
    is_job_start: bool
    is_job_end: bool
    style: str


@dataclass
class WeatherWindow:
    slots: list[HourSlot]
    start_hour: Optional[int]
    end_hour: Optional[int]

    @property
    def scroll_to_hour(self) -> Optional[int]:
        """Hour to bring into view when the strip is expanded."""
        if self.start_hour is None:
            return None
        if any(slot.hour == self.start_hour for slot in self.slots):
            return self.start_hour
        return None


def build_display_window(
    hourly: list[HourlyEntry],
    route_start_time: Optional[str],
    route_end_time: Optional[str],
) -> WeatherWindow:
    """Mark the hours that fall inside ``[start_hour, end_hour]``."""
    start_hour = parse_hour(route_start_time)
    end_hour = parse_hour(route_end_time)

    slots = []
    for entry in hourly:
        hour = parse_hour(entry.time)
        within = (
            hour is not None
            and start_hour is not None
            and end_hour is not None
            and start_hour <= hour <= end_hour
        )
        slots.append(
            HourSlot(
                entry=entry,
                hour=hour,
                label=format_hour_label(entry.time),
                within_job=within,
                is_job_start=hour is not None and hour == start_hour,
                is_job_end=hour is not None and hour == end_hour,
                style=temperature_style(entry.temp_f, entry.condition),
            )
        )
    return WeatherWindow(slots=slots, start_hour=start_hour, end_hour=end_hour)


# Session cache

WeatherFetcher = Callable[[int, str], Awaitable[Optional[JobWeather]]]


class WeatherCache:
    """Per-session weather results keyed by job id.

    A cached ``None`` means "no forecast" and is never refetched. Failed
    fetches are not cached. Concurrent requests for the same job share a
    single backend call.
    """

    def __init__(self, fetch: WeatherFetcher, concurrency: int = DEFAULT_PREFETCH_CONCURRENCY):
        self._fetch = fetch
        self._entries: dict[int, Optional[JobWeather]] = {}
        self._in_flight: dict[int, asyncio.Task] = {}
        self._semaphore = asyncio.Semaphore(concurrency)

    def __contains__(self, job_id: int) -> bool:
        return job_id in self._entries

    def peek(self, job_id: int) -> Optional[JobWeather]:
        return self._entries.get(job_id)

    def is_loading(self, job_id: int) -> bool:
        return job_id in self._in_flight

    async def get(self, job_id: int, forecast_date: str) -> Optional[JobWeather]:
        if job_id in self._entries:
            return self._entries[job_id]

        task = self._in_flight.get(job_id)
        if task is None:
            task = asyncio.ensure_future(self._load(job_id, forecast_date))
            self._in_flight[job_id] = task
        return await asyncio.shield(task)

    async def _load(self, job_id: int, forecast_date: str) -> Optional[JobWeather]:
        try:
            async with self._semaphore:
                weather = await self._fetch(job_id, forecast_date)
            self._entries[job_id] = weather
            return weather
        finally:
            self._in_flight.pop(job_id, None)

    async def prefetch(
        self, jobs: Iterable[tuple[int, str]]
    ) -> dict[int, Optional[JobWeather]]:
        """Fetch weather for several jobs concurrently.

        Duplicate job ids are collapsed. Jobs whose fetch fails are left out
        of the result and stay uncached.
        """
        unique = list(dict.fromkeys(jobs))

        async def fetch_one(job_id: int, forecast_date: str):
            return job_id, await self.get(job_id, forecast_date)

        results = await asyncio.gather(
            *(fetch_one(job_id, date) for job_id, date in unique),
            return_exceptions=True,
        )

        output: dict[int, Optional[JobWeather]] = {}
        for result in results:
            if isinstance(result, Exception):
                logger.warning("Weather prefetch failed: %s", result)
                continue
            job_id, weather = result
            output[job_id] = weather
        return output

