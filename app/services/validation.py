"""
Fast validation of what the booking agent extracted from the call.

Catches obvious errors (impossible or reversed dates, stays in the past,
day numbers that do not match what the customer just said, parties with no
adult) before they reach the agent workflow. Every issue carries a severity,
and where possible an autoFix (partial profile, camelCase) and an agentHint
(a clarifying question the agent can read out).

confidence is 0-100: how sure we are that the flagged data is wrong.
"""
from __future__ import annotations

import calendar
import logging
import re
from datetime import date
from typing import Any, Sequence

from app.diarization.models import SpeakerRole
from app.schemas.validation import CustomerProfile, ValidationIssue, ValidationResult
from app.transcript.assembler import TranscriptEntry

logger = logging.getLogger(__name__)

SEVERITY_CONFIDENCE = {"error": 95, "warning": 75, "info": 50}
PARTY_SIZE_CONFIDENCE = 90

PAST_GRACE_DAYS = 1
MAX_NIGHTS = 30
LARGE_GROUP = 10

# "May 28 til the 6th" extracted as May 28 -> May 6
CROSS_MONTH_MIN_CHECK_IN_DAY = 25
CROSS_MONTH_MAX_CHECK_OUT_DAY = 10

OFF_BY_ONE_MESSAGES = 3
CROSS_MONTH_MESSAGES = 5

_ISO_DATE = re.compile(r"^\s*(\d{4})-(\d{1,2})-(\d{1,2})")
_ORDINAL_DAY = re.compile(r"(\d{1,2})(st|nd|rd|th)")
_BARE_DAY = re.compile(r"\b(\d{1,2})\b")
_UNTIL_DAY = re.compile(r"\b(till?|to|through)\s+(?:the\s+)?(\d{1,2})(st|nd|rd|th)?", re.IGNORECASE)

_DAY_WORDS = {
    "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5,
    "sixth": 6, "seventh": 7, "eighth": 8, "ninth": 9, "tenth": 10,
    "eleventh": 11, "twelfth": 12, "thirteenth": 13, "fourteenth": 14, "fifteenth": 15,
    "sixteenth": 16, "seventeenth": 17, "eighteenth": 18, "nineteenth": 19, "twentieth": 20,
    "twenty-first": 21, "twenty-second": 22, "twenty-third": 23, "twenty-fourth": 24,
    "twenty-fifth": 25, "twenty-sixth": 26, "twenty-seventh": 27, "twenty-eighth": 28,
    "twenty-ninth": 29, "thirtieth": 30, "thirty-first": 31,
}  # fmt: skip


def ordinal_suffix(n: int) -> str:
    if n % 10 == 1 and n % 100 != 11:
        return "st"
    if n % 10 == 2 and n % 100 != 12:
        return "nd"
    if n % 10 == 3 and n % 100 != 13:
        return "rd"
    return "th"


def _max_day(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _abbr(d: date) -> str:
    return calendar.month_abbr[d.month]


def _next_month(d: date) -> date:
    year, month = (d.year + 1, 1) if d.month == 12 else (d.year, d.month + 1)
    return date(year, month, min(d.day, _max_day(year, month)))


def _next_year(d: date) -> date:
    return date(d.year + 1, d.month, min(d.day, _max_day(d.year + 1, d.month)))


def parse_profile_date(value: str) -> tuple[date | None, bool]:
    """
    Parse YYYY-MM-DD. Returns (date, clamped): a day past the end of the month
    is clamped to the last day and clamped=True. (None, False) if unparseable.
    """
    match = _ISO_DATE.match(value or "")
    if not match:
        return None, False
    year, month, day = (int(g) for g in match.groups())
    if not 1 <= month <= 12 or day < 1:
        return None, False
    last = _max_day(year, month)
    if day > last:
        return date(year, month, last), True
    return date(year, month, day), False


def _result(issues: list[ValidationIssue], confidence: float | None = None) -> ValidationResult:
    if confidence is None:
        confidence = max((SEVERITY_CONFIDENCE[i.severity] for i in issues), default=100)
    return ValidationResult(
        valid=not any(i.severity == "error" for i in issues),
        issues=issues,
        confidence=confidence,
    )


def _recent_customer_text(messages: Sequence[TranscriptEntry], count: int) -> str:
    customer = [m.text.lower() for m in messages if m.speaker == SpeakerRole.CUSTOMER]
    return " ".join(customer[-count:])


def extract_mentioned_days(text: str) -> list[int]:
    """Day numbers (1-31) mentioned as 29th, 29 or twenty-ninth, first mention order, no repeats."""
    found: list[int] = []
    for pattern in (_ORDINAL_DAY, _BARE_DAY):
        found.extend(int(m.group(1)) for m in pattern.finditer(text))
    found.extend(n for word, n in _DAY_WORDS.items() if word in text)
    return list(dict.fromkeys(n for n in found if 1 <= n <= 31))


def validate_travel_dates(
    profile: CustomerProfile,
    recent_messages: Sequence[TranscriptEntry] | None = None,
    today: date | None = None,
) -> ValidationResult:
    dates = profile.travel_dates
    if dates is None or not dates.check_in or not dates.check_out:
        return _result([])

    current = dates.model_dump(by_alias=True, exclude_none=True)

    def fix(**changes: date) -> dict[str, Any]:
        return {"travelDates": {**current, **{k: v.isoformat() for k, v in changes.items()}}}

    check_in, check_in_clamped = parse_profile_date(dates.check_in)
    check_out, check_out_clamped = parse_profile_date(dates.check_out)
    if check_in is None or check_out is None:
        return _result(
            [
                ValidationIssue(
                    field="travelDates.checkIn" if check_in is None else "travelDates.checkOut",
                    severity="error",
                    message="Unrecognized date",
                    suggestion="Dates must be YYYY-MM-DD",
                )
            ]
        )

    today = today or date.today()
    issues: list[ValidationIssue] = []

    if check_out <= check_in:
        if (
            check_in.day >= CROSS_MONTH_MIN_CHECK_IN_DAY
            and check_out.day <= CROSS_MONTH_MAX_CHECK_OUT_DAY
            and check_in.month == check_out.month
        ):
            moved = _next_month(check_out)
            issues.append(
                ValidationIssue(
                    field="travelDates.checkOut",
                    severity="warning",
                    message=f"Check-out ({check_out.day}th) is before check-in ({check_in.day}th)",
                    suggestion=(
                        f"Did customer mean {_abbr(moved)} {check_out.day} "
                        f"instead of {_abbr(check_out)} {check_out.day}?"
                    ),
                    agent_hint=(
                        f"Ask: \"Just to confirm - when you said '{_abbr(check_in)} {check_in.day} til the "
                        f"{check_out.day}th', did you mean checking out on {_abbr(moved)} {check_out.day}?\""
                    ),
                    auto_fix=fix(checkOut=moved),
                )
            )
        else:
            issues.append(
                ValidationIssue(
                    field="travelDates",
                    severity="error",
                    message="Check-out date must be after check-in date",
                    suggestion=f"Check-in: {_abbr(check_in)} {check_in.day}, {check_in.year}, "
                    f"Check-out: {_abbr(check_out)} {check_out.day}, {check_out.year} seems wrong",
                )
            )

    if (today - check_in).days > PAST_GRACE_DAYS:
        issues.append(
            ValidationIssue(
                field="travelDates.checkIn",
                severity="error",
                message="Check-in date is in the past",
                suggestion=f"Did you mean {check_in.year + 1} instead of {check_in.year}?",
                auto_fix=fix(checkIn=_next_year(check_in), checkOut=_next_year(check_out)),
            )
        )

    nights = (check_out - check_in).days
    if nights == 0:
        issues.append(
            ValidationIssue(
                field="travelDates",
                severity="error",
                message="Same-day check-in and check-out",
                suggestion="This might be a mistake - typical stays are at least 1 night",
            )
        )
    elif nights > MAX_NIGHTS:
        issues.append(
            ValidationIssue(
                field="travelDates",
                severity="warning",
                message=f"Very long stay ({nights} nights)",
                suggestion="Please verify - this is unusually long for a vacation booking",
            )
        )
    elif nights < 0:
        issues.append(
            ValidationIssue(
                field="travelDates",
                severity="error",
                message="Negative stay duration detected",
                suggestion="Check-in and check-out dates are reversed",
            )
        )

    if recent_messages:
        issues.extend(_off_by_one_day(check_in, recent_messages, fix))
        issues.extend(_cross_month_mention(check_in, check_out, recent_messages, fix))

    for name, value, clamped in (("checkIn", check_in, check_in_clamped), ("checkOut", check_out, check_out_clamped)):
        if clamped:
            issues.append(
                ValidationIssue(
                    field=f"travelDates.{name}",
                    severity="error",
                    message=f"{calendar.month_name[value.month]} only has {value.day} days",
                    suggestion=f"Did you mean {value.day}{ordinal_suffix(value.day)} instead?",
                    auto_fix=fix(**{name: value}),
                )
            )

    if issues:
        logger.debug("Travel date issues: %s", [i.message for i in issues])
    return _result(issues)


def _off_by_one_day(check_in: date, messages: Sequence[TranscriptEntry], fix) -> list[ValidationIssue]:
    """Customer said the 29th but the profile has the 28th (ASR or extraction slip)."""
    mentioned = extract_mentioned_days(_recent_customer_text(messages, OFF_BY_ONE_MESSAGES))
    day = check_in.day
    close = next((m for m in mentioned if abs(m - day) == 1), None)
    if close is None or close > _max_day(check_in.year, check_in.month):
        return []
    said, have = f"{close}{ordinal_suffix(close)}", f"{day}{ordinal_suffix(day)}"
    return [
        ValidationIssue(
            field="travelDates.checkIn",
            severity="warning",
            message=f'Customer said "{said}" but extracted as {have}',
            suggestion=f"Did they mean {close}th instead of {day}th?",
            agent_hint=(
                f'Confirm: "I have you checking in on {calendar.month_name[check_in.month]} {have} '
                f'- is that correct, or did you mean the {said}?"'
            ),
            auto_fix=fix(checkIn=check_in.replace(day=close)),
        )
    ]


def _cross_month_mention(
    check_in: date, check_out: date, messages: Sequence[TranscriptEntry], fix
) -> list[ValidationIssue]:
    """Customer said "til the 6th" after a late check-in day; check-out probably belongs to next month."""
    match = _UNTIL_DAY.search(_recent_customer_text(messages, CROSS_MONTH_MESSAGES))
    if (
        match is None
        or check_in.day < CROSS_MONTH_MIN_CHECK_IN_DAY
        or check_out.day > CROSS_MONTH_MAX_CHECK_OUT_DAY
        or int(match.group(2)) != check_out.day
        or check_in.month != check_out.month
    ):
        return []
    moved = _next_month(check_out)
    return [
        ValidationIssue(
            field="travelDates.checkOut",
            severity="warning",
            message=f'Cross-month stay detected: "{match.group(0)}" likely means next month',
            suggestion=(
                f'Customer said "{_abbr(check_in)} {check_in.day} til the {check_out.day}th" '
                f"- probably means {_abbr(moved)} {check_out.day}"
            ),
            agent_hint=(
                f'Clarify: "Just to confirm - you mentioned {_abbr(check_in)} {check_in.day} {match.group(1)} '
                f'the {check_out.day}th. Did you mean {_abbr(moved)} {check_out.day}?"'
            ),
            auto_fix=fix(checkOut=moved),
        )
    ]


def validate_party_size(profile: CustomerProfile) -> ValidationResult:
    party = profile.party_size
    if party is None or (not party.adults and not party.children):
        return _result([])

    adults = party.adults or 0
    children = party.children or 0
    issues: list[ValidationIssue] = []

    if adults == 0 and children > 0:
        issues.append(
            ValidationIssue(
                field="partySize.adults",
                severity="error",
                message="At least one adult required",
                suggestion="Booking requires at least 1 adult",
            )
        )
    if adults + children > LARGE_GROUP:
        issues.append(
            ValidationIssue(
                field="partySize",
                severity="warning",
                message=f"Large group ({adults + children} people)",
                suggestion="Please verify - may need multiple rooms",
            )
        )
    if adults < 0 or children < 0:
        issues.append(
            ValidationIssue(
                field="partySize",
                severity="error",
                message="Party size cannot be negative",
                suggestion="Please correct the number of guests",
            )
        )
    return _result(issues, PARTY_SIZE_CONFIDENCE if issues else 100)


def validate_customer_profile(
    profile: CustomerProfile,
    recent_messages: Sequence[TranscriptEntry] | None = None,
    today: date | None = None,
) -> ValidationResult:
    """All checks combined; confidence is the mean of the individual checks."""
    results = [validate_travel_dates(profile, recent_messages, today), validate_party_size(profile)]
    issues = [issue for r in results for issue in r.issues]
    return _result(issues, sum(r.confidence for r in results) / len(results))
