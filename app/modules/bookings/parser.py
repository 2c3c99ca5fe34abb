"""Rule-based extraction of booking details from free-form chat messages."""
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
_WEEKDAY_ALT = "|".join(WEEKDAYS)

REQUIRED_BOOKING_FIELDS = ("date", "time", "name", "email")

CONFIDENCE_WEIGHTS = {
    "date": 25,
    "time": 25,
    "name": 20,
    "email": 20,
    "phone": 5,
    "timezone": 5,
}

_CONFIRMATION_PATTERNS = [
    re.compile(r"^(yes|yep|yeah|yup|sure|ok|okay|correct|right)$", re.I),
    re.compile(r"^(confirm|confirmed|confirm it|book it|proceed)$", re.I),
    re.compile(r"\b(yes|confirm|book it|proceed|go ahead|looks good|that'?s (right|correct|good|fine))\b", re.I),
    re.compile(r"\b(confirm|confirmation|book|schedule).*\b(appointment|booking|meeting)\b", re.I),
    re.compile(r"^(no notes?|no additional|nothing else),?\s*(confirm|yes|proceed|book it)", re.I),
    re.compile(r"^(confirm|yes|proceed|book it).*\b(please|thanks?|thank you)\b", re.I),
]

# The first three are explicit booking vocabulary; any one of them is enough
_BOOKING_PATTERNS = [
    re.compile(r"\b(book|schedule|appointment|meeting|reserve|set up|arrange)\b", re.I),
    re.compile(r"\b(available|availability|free time|open slot)\b", re.I),
    re.compile(r"\b(calendar|date|time|when can)\b", re.I),
    re.compile(r"\b(today|tomorrow|tonight)\b", re.I),
    re.compile(rf"\b(next (week|month|{_WEEKDAY_ALT}))\b", re.I),
    re.compile(rf"\b(on ({_WEEKDAY_ALT}))\b", re.I),
    re.compile(rf"\b(this ({_WEEKDAY_ALT}))\b", re.I),
    re.compile(r"\b(\d{1,2}:\d{2}\s*(am|pm)?)\b", re.I),
    re.compile(r"\b(\d{1,2}\s*(am|pm))\b", re.I),
    re.compile(r"\b(morning|afternoon|evening|noon|midnight)\b", re.I),
    re.compile(r"\b(\d{1,2}/\d{1,2}(/\d{2,4})?)\b", re.I),
    re.compile(r"\b(\d{4}-\d{1,2}-\d{1,2})\b", re.I),
    re.compile(r"([a-zA-Z0-9._-]+@[a-zA-Z0-9._-]+\.[a-zA-Z0-9_-]+)", re.I),
    re.compile(r"\b(name|email|phone|mobile|contact|number)[-:\s]", re.I),
    re.compile(r"\b(timezone|tz|time zone|utc|gmt|est|pst|cst|mst|ist)\b", re.I),
    re.compile(r"\b(confirm|yes|proceed|book it|that'?s correct|looks good)\b", re.I),
]

_MONTHS = ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"]
_MONTH_ALT = "|".join(_MONTHS)

_NUMERIC_DATES = [
    (re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})"), ("m", "d", "y")),
    (re.compile(r"(\d{1,2})/(\d{1,2})/(\d{2})\b"), ("m", "d", "yy")),
    (re.compile(r"(\d{1,2})-(\d{1,2})-(\d{4})"), ("m", "d", "y")),
    (re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})"), ("y", "m", "d")),
]
_DAY_MONTH = re.compile(rf"\b(\d{{1,2}})\s+({_MONTH_ALT})[a-z]*(?:\s+(\d{{4}}))?", re.I)
_MONTH_DAY = re.compile(rf"\b({_MONTH_ALT})[a-z]*\s+(\d{{1,2}})(?:st|nd|rd|th)?,?(?:\s+(\d{{4}}))?", re.I)

_TIME_24H = re.compile(r"(\d{1,2}):(\d{2})(?:\s*hours?)?", re.I)
_TIME_12H = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)", re.I)
NATURAL_TIMES = {
    "morning": "09:00",
    "afternoon": "14:00",
    "evening": "18:00",
    "noon": "12:00",
    "midnight": "00:00",
}

_TIMEZONE_PATTERNS = [
    re.compile(r"\b(EST|EDT|CST|CDT|MST|MDT|PST|PDT)\b", re.I),
    re.compile(r"\b(UTC|GMT)([+-]\d{1,2})?\b", re.I),
    re.compile(r"\btimezone:?\s*([A-Z]{3,4})\b", re.I),
    re.compile(r"\btimezone[-:\s]+(india|ist|asia)\b", re.I),
    re.compile(r"\b(eastern|central|mountain|pacific)\s+time\b", re.I),
    re.compile(r"\b(india|indian)\s*(standard)?\s*time\b", re.I),
]
TIMEZONE_MAP = {
    "est": "America/New_York",
    "edt": "America/New_York",
    "cst": "America/Chicago",
    "cdt": "America/Chicago",
    "mst": "America/Denver",
    "mdt": "America/Denver",
    "pst": "America/Los_Angeles",
    "pdt": "America/Los_Angeles",
    "eastern": "America/New_York",
    "central": "America/Chicago",
    "mountain": "America/Denver",
    "pacific": "America/Los_Angeles",
    "utc": "UTC",
    "gmt": "UTC",
    "india": "Asia/Kolkata",
    "indian": "Asia/Kolkata",
    "ist": "Asia/Kolkata",
    "asia": "Asia/Kolkata",
}
DEFAULT_TIMEZONE = "UTC"

_NAME_PATTERNS = [
    re.compile(r"(?:my name is|i'?m|this is|name:?)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)", re.I),
    re.compile(r"(?:call me|it'?s)\s+([A-Z][a-z]+)", re.I),
    re.compile(r"\bname[-:\s]+([a-zA-Z]+(?:\s+[a-zA-Z]+)*)", re.I),
]
_EMAIL = re.compile(r"([a-zA-Z0-9._-]+@[a-zA-Z0-9._-]+\.[a-zA-Z0-9_-]+)")
_PHONE_NUMBER = r"([+]?\d{1,3}[-.\s]?)?\(?\d{3,4}\)?[-.\s]?\d{3,4}[-.\s]?\d{4}"
_PHONE_PATTERNS = [
    re.compile(r"(?:phone|mobile|cell|tel|contact|number)(?:\s*:?\s*|-)" + _PHONE_NUMBER, re.I),
    re.compile(r"\b" + _PHONE_NUMBER + r"\b"),
]
_NOTE_PATTERNS = [
    re.compile(r"(?:notes?|comments?|details?|reason|about|regarding):?\s*(.+)", re.I),
    re.compile(r"(?:i need|looking for|interested in)\s+(.+)", re.I),
]


def days_until_weekday(target: int, today: date = None) -> int:
    """Days to the next occurrence of target (Monday=0); never 0, so 'friday' on a Friday is a week out."""
    today = today or date.today()
    days = target - today.weekday()
    if days <= 0:
        days += 7
    return days


class BookingParser:
    """Extracts booking fields from one message.

    Fields that were not found are None. Timezone defaults to UTC in the
    result but only counts towards confidence when stated in the message.
    """

    def __init__(self, today: date = None):
        self.today = today or date.today()
        self._found: Dict[str, Any] = {}

    def parse_booking_request(self, message: str) -> Dict[str, Any]:
        self._found = {}
        normalized = message.lower().strip()
        result = {
            "date": self.extract_date(message, normalized),
            "time": self.extract_time(message, normalized),
            "timezone": self.extract_timezone(message),
            "name": self.extract_name(message),
            "email": self.extract_email(message),
            "phone": self.extract_phone(message),
            "notes": self.extract_notes(message),
        }
        result["isComplete"] = self.check_completeness()
        result["confidence"] = self.calculate_confidence()
        result["metadata"] = {
            "parsedAt": datetime.now(timezone.utc).isoformat(),
            "originalMessage": message,
        }
        return result

    @staticmethod
    def is_confirmation_intent(message: str) -> bool:
        normalized = message.lower().strip()
        return any(p.search(normalized) for p in _CONFIRMATION_PATTERNS)

    @staticmethod
    def is_booking_intent(message: str) -> bool:
        """Two or more booking signals, or any explicit booking keyword."""
        matches = [bool(p.search(message)) for p in _BOOKING_PATTERNS]
        return sum(matches) >= 2 or any(matches[:3])

    def extract_date(self, original: str, normalized: str = None) -> Optional[str]:
        normalized = normalized if normalized is not None else original.lower()
        relative = {"today": 0, "tomorrow": 1}
        for i, day in enumerate(WEEKDAYS):
            relative[f"next {day}"] = days_until_weekday(i, self.today)
        for i, day in enumerate(WEEKDAYS):
            relative[day] = days_until_weekday(i, self.today)
        for keyword, offset in relative.items():
            if keyword in normalized:
                return self._remember("date", (self.today + timedelta(days=offset)).isoformat())

        for pattern, order in _NUMERIC_DATES:
            match = pattern.search(original)
            if match:
                parts = dict(zip(order, (int(g) for g in match.groups())))
                year = parts.get("y") or 2000 + parts["yy"]
                parsed = self._safe_date(year, parts["m"], parts["d"])
                if parsed:
                    return self._remember("date", parsed.isoformat())

        match = _DAY_MONTH.search(original)
        if match:
            day, month, year = match.groups()
            parsed = self._safe_date(int(year) if year else self.today.year, _MONTHS.index(month[:3].lower()) + 1, int(day))
            if parsed:
                return self._remember("date", parsed.isoformat())
        match = _MONTH_DAY.search(original)
        if match:
            month, day, year = match.groups()
            parsed = self._safe_date(int(year) if year else self.today.year, _MONTHS.index(month[:3].lower()) + 1, int(day))
            if parsed:
                return self._remember("date", parsed.isoformat())
        return None

    def extract_time(self, original: str, normalized: str = None) -> Optional[str]:
        normalized = normalized if normalized is not None else original.lower()
        match = _TIME_24H.search(original)
        if match:
            hours, minutes = int(match.group(1)), int(match.group(2))
            if 0 <= hours < 24 and 0 <= minutes < 60:
                # "4:30 pm" also matches here; apply the period when one follows
                period = _TIME_12H.match(original, match.start())
                if period and period.group(3):
                    hours = _to_24h(hours, period.group(3))
                return self._remember("time", f"{hours:02d}:{minutes:02d}")

        match = _TIME_12H.search(original)
        if match:
            hours = _to_24h(int(match.group(1)), match.group(3))
            minutes = int(match.group(2)) if match.group(2) else 0
            return self._remember("time", f"{hours:02d}:{minutes:02d}")

        for keyword, value in NATURAL_TIMES.items():
            if keyword in normalized:
                return self._remember("time", value)
        return None

    def extract_timezone(self, original: str) -> str:
        for pattern in _TIMEZONE_PATTERNS:
            match = pattern.search(original)
            if match:
                return self._remember("timezone", TIMEZONE_MAP.get(match.group(1).lower(), DEFAULT_TIMEZONE))
        return DEFAULT_TIMEZONE

    def extract_name(self, original: str) -> Optional[str]:
        for pattern in _NAME_PATTERNS:
            match = pattern.search(original)
            if match:
                name = " ".join(word.capitalize() for word in match.group(1).strip().split(" "))
                return self._remember("name", name)
        return None

    def extract_email(self, original: str) -> Optional[str]:
        match = _EMAIL.search(original)
        if match:
            return self._remember("email", match.group(1).lower())
        return None

    def extract_phone(self, original: str) -> Optional[str]:
        number = re.compile(_PHONE_NUMBER)
        for pattern in _PHONE_PATTERNS:
            match = pattern.search(original)
            if match:
                phone = match.group(0)
                inner = number.search(phone)
                if inner:
                    phone = inner.group(0)
                return self._remember("phone", re.sub(r"[^\d+]", "", phone))
        return None

    def extract_notes(self, original: str) -> Optional[str]:
        for pattern in _NOTE_PATTERNS:
            match = pattern.search(original)
            if match:
                return self._remember("notes", match.group(1).strip())
        return None

    def check_completeness(self) -> bool:
        return all(self._found.get(field) for field in REQUIRED_BOOKING_FIELDS)

    def calculate_confidence(self) -> float:
        score = sum(weight for field, weight in CONFIDENCE_WEIGHTS.items() if self._found.get(field))
        return score / 100

    def _remember(self, field: str, value: Any) -> Any:
        self._found[field] = value
        return value

    @staticmethod
    def _safe_date(year: int, month: int, day: int) -> Optional[date]:
        try:
            return date(year, month, day)
        except ValueError:
            return None


def _to_24h(hours: int, period: str) -> int:
    period = period.lower()
    if period == "pm" and hours != 12:
        return hours + 12
    if period == "am" and hours == 12:
        return 0
    return hours


def _parse_hhmm(value: str) -> time:
    hours, minutes = (int(p) for p in value.split(":")[:2])
    return time(hours, minutes)


class AvailabilityChecker:
    """Checks requested slots against a calendar's weekday availability windows."""

    @staticmethod
    def is_slot_available(calendar: Dict[str, Any], requested_date: str, requested_time: str,
                          duration: int = None) -> Dict[str, Any]:
        rules = calendar.get("availability_rules") or {}
        day_name = WEEKDAYS[date.fromisoformat(requested_date).weekday()]
        windows = rules.get(day_name) or []
        if not windows:
            return {"available": False, "reason": "No availability on this day"}

        requested = _parse_hhmm(requested_time)
        for window in windows:
            if _parse_hhmm(window["start"]) <= requested < _parse_hhmm(window["end"]):
                return {"available": True}
        return {"available": False, "reason": "Outside available hours"}

    @staticmethod
    def get_available_slots(calendar: Dict[str, Any], start_date: str, end_date: str,
                            booked: List[Dict[str, Any]] = None) -> List[Dict[str, str]]:
        """Slot start times inside each day's windows, stepping duration + buffer, minus booked times."""
        rules = calendar.get("availability_rules") or {}
        duration = calendar.get("booking_duration") or 30
        step = timedelta(minutes=duration + (calendar.get("buffer_time") or 0))
        taken = {(b.get("booking_date"), (b.get("booking_time") or "")[:5]) for b in booked or []}

        slots = []
        current = date.fromisoformat(start_date)
        last = date.fromisoformat(end_date)
        while current <= last:
            for window in rules.get(WEEKDAYS[current.weekday()]) or []:
                cursor = datetime.combine(current, _parse_hhmm(window["start"]))
                window_end = datetime.combine(current, _parse_hhmm(window["end"]))
                while cursor + timedelta(minutes=duration) <= window_end:
                    slot = (current.isoformat(), cursor.strftime("%H:%M"))
                    if slot not in taken:
                        slots.append({"date": slot[0], "time": slot[1]})
                    cursor += step
            current += timedelta(days=1)
        return slots


class TimezoneConverter:
    @staticmethod
    def convert(value: datetime, from_tz: str, to_tz: str) -> datetime:
        """Interpret a naive datetime in from_tz and express it in to_tz."""
        source = value if value.tzinfo else value.replace(tzinfo=ZoneInfo(from_tz))
        return source.astimezone(ZoneInfo(to_tz))

    @staticmethod
    def format_in_timezone(value: datetime, tz: str) -> str:
        localized = value.astimezone(ZoneInfo(tz)) if value.tzinfo else value.replace(tzinfo=ZoneInfo(tz))
        return localized.strftime("%b %d, %Y, %I:%M:%S %p %Z")
