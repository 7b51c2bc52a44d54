"""
Data Normalizer Module
======================

Converts raw record fields into canonical types: ISO dates, centimetre
heights, the closed result-status enumeration and US dollar amounts.

The module-level functions are pure and never raise on bad input; they
return an "unknown" value (empty string, 0, DidNotPlace) instead.
"""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import date
from typing import Mapping

from equine_agent.core.enums import RecordKind, ResultStatus
from equine_agent.core.schema import (
    NormalizedAnimal,
    NormalizedEvent,
    NormalizedRanking,
    NormalizedRecord,
    NormalizedResult,
)
from equine_agent.ingestion.adapters.base import RawRecord
from equine_agent.ingestion.errors import NormalizationError

logger = logging.getLogger(__name__)

CM_PER_INCH = 2.54
MAX_HEIGHT_CM = 300

_US_DATE = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b")
_ISO_DATE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_PLACING = re.compile(r"^\s*(?:#\s*)?(\d{1,4})(?:\s*(?:st|nd|rd|th))?\b", re.I)
_TIME = re.compile(r"^(?:(\d+):)?(\d+(?:\.\d+)?)$")

# Status keywords, checked in this order
WITHDRAWN_TOKENS = frozenset({"wd", "withdrawn", "withdrew", "scratched", "scratch", "scr", "dns"})
WITHDRAWN_PHRASES = ("didnotstart", "nonstarter")
RETIRED_TOKENS = frozenset({"ret", "retired", "rt"})
ELIMINATED_TOKENS = frozenset({"elim", "eliminated", "el"})
DID_NOT_PLACE_TOKENS = frozenset({"dnp", "np"})
DID_NOT_PLACE_PHRASES = ("didnotplace",)

# Currency symbols and codes recognised in earnings text
CURRENCY_SYMBOLS: dict[str, str] = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "fr": "CHF",
}
_CURRENCY_CODE = re.compile(r"\b([A-Z]{3})\b")


def normalize_date(text: str | None) -> str:
    """
    Normalize a date to ISO format.

    Accepts ``M/D/YYYY`` (US order) and ``YYYY-MM-DD``, anywhere in the
    text. Invalid calendar dates and anything else yield "".
    """
    if not text:
        return ""
    match = _ISO_DATE.search(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
    else:
        match = _US_DATE.search(text)
        if not match:
            return ""
        month, day, year = (int(g) for g in match.groups())
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return ""


def _detect_height_unit(text: str) -> str | None:
    lowered = text.lower()
    if "cm" in lowered or "centim" in lowered:
        return "cm"
    if re.search(r"hh|\bhands?\b|\d\s*h\b", lowered):
        return "hands"
    if "'" in text or "ft" in lowered or "feet" in lowered or "foot" in lowered:
        return "ft"
    if '"' in text or re.search(r"\bin(?:ch(?:es)?)?\b|\d\s*in\b", lowered):
        return "in"
    return None


def _hands_to_inches(text: str) -> float | None:
    match = re.search(r"(\d+)(?:\.(\d))?", text)
    if not match:
        return None
    hands = int(match.group(1))
    extra = int(match.group(2) or 0)
    # The digit after the point counts inches, one hand being four inches
    if extra > 3:
        return None
    return hands * 4 + extra


def _feet_to_inches(text: str) -> float | None:
    numbers = [float(n) for n in _NUMBER.findall(text)]
    if not numbers:
        return None
    inches = numbers[0] * 12
    if len(numbers) > 1:
        inches += numbers[1]
    return inches


def normalize_height(value: str | float | int | None, unit: str | None = None) -> int:
    """
    Normalize a height to whole centimetres.

    Args:
        value: Height value, e.g. "168", "16.2hh", "5'6\"", 66
        unit: One of "cm", "in", "ft", "hands"; detected from the text
            when omitted. Bare numbers are read as hands below 30, inches
            below 100 and centimetres otherwise.

    Returns:
        Height in cm, or 0 when unknown or out of range (<=0 or >=300)
    """
    if value is None:
        return 0
    text = str(value).strip()
    if not text:
        return 0

    unit = (unit or "").strip().lower() or _detect_height_unit(text)
    unit = {"hh": "hands", "h": "hands", "hand": "hands", "inch": "in", "inches": "in",
            "\"": "in", "feet": "ft", "foot": "ft", "'": "ft"}.get(unit or "", unit)

    if unit == "hands":
        inches = _hands_to_inches(text)
        cm = inches * CM_PER_INCH if inches is not None else 0.0
    elif unit == "ft":
        inches = _feet_to_inches(text)
        cm = inches * CM_PER_INCH if inches is not None else 0.0
    else:
        match = _NUMBER.search(text)
        if not match:
            return 0
        number = float(match.group())
        if unit is None:
            if number < 30:
                unit = "hands"
                inches = _hands_to_inches(match.group())
                number = inches if inches is not None else 0.0
            elif number < 100:
                unit = "in"
            else:
                unit = "cm"
        if unit == "cm":
            cm = number
        else:
            cm = number * CM_PER_INCH

    result = round(cm)
    if result <= 0 or result >= MAX_HEIGHT_CM:
        return 0
    return result


def _status_tokens(text: str) -> tuple[set[str], str]:
    lowered = text.lower()
    tokens = set(re.findall(r"[a-z]+", lowered))
    compact = re.sub(r"[^a-z]", "", lowered)
    return tokens, compact


def parse_placing(text: str | None) -> int | None:
    """Parse a placing such as "1", "1st", "3rd Place" or "#2"; None if absent."""
    if not text:
        return None
    match = _PLACING.match(text)
    if not match:
        return None
    placing = int(match.group(1))
    return placing if placing >= 1 else None


def is_withdrawal(text: str | None) -> bool:
    """True for pre-start withdrawals (withdrawn, scratched, did not start)."""
    if not text:
        return False
    tokens, compact = _status_tokens(text)
    return bool(tokens & WITHDRAWN_TOKENS) or any(p in compact for p in WITHDRAWN_PHRASES)


def normalize_status(text: str | None, placing: int | None = None) -> ResultStatus:
    """
    Translate a raw status string to the closed status enumeration.

    Withdrawal keywords win over everything else. Text that matches no
    keyword is Placed when a placing is known (passed in, or readable
    from the text itself as in "1st Place") and DidNotPlace otherwise.
    """
    text = text or ""
    if is_withdrawal(text):
        return ResultStatus.WITHDRAWN

    tokens, compact = _status_tokens(text)
    if tokens & RETIRED_TOKENS or compact == "r":
        return ResultStatus.RETIRED
    if tokens & ELIMINATED_TOKENS or compact == "e":
        return ResultStatus.ELIMINATED
    if tokens & DID_NOT_PLACE_TOKENS or any(p in compact for p in DID_NOT_PLACE_PHRASES):
        return ResultStatus.DID_NOT_PLACE

    if placing is None:
        placing = parse_placing(text)
    if placing is not None and placing >= 1:
        return ResultStatus.PLACED
    return ResultStatus.DID_NOT_PLACE


def detect_currency(text: str) -> str | None:
    """Currency code of an amount, from an ISO code or a symbol in the text."""
    match = _CURRENCY_CODE.search(text.upper())
    if match:
        return match.group(1)
    lowered = text.lower()
    for symbol, code in CURRENCY_SYMBOLS.items():
        if symbol in lowered:
            return code
    return None


def _parse_amount(raw: str) -> float | None:
    """Read a number that may use comma or dot as its decimal separator."""
    cleaned = re.sub(r"[^0-9.,\-]", "", raw)
    if re.fullmatch(r"-?\d{1,3}(?:\.\d{3}){2,}", cleaned):
        # "1.500.000": dots group thousands
        cleaned = cleaned.replace(".", "")
    elif re.search(r",\d{1,2}$", cleaned):
        # "1.500,00" or "1500,5": trailing comma is the decimal separator
        cleaned = cleaned.replace(".", "").replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")
    if not cleaned or cleaned.count(".") > 1:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def normalize_earnings(
    text: str | float | int | None,
    rates: Mapping[str, float] | None = None,
    currency: str | None = None,
) -> float:
    """
    Parse a prize-money amount into US dollars.

    Currency symbols, codes and thousands separators are stripped; a comma
    followed by one or two trailing digits is a decimal comma. Without
    a rate table the amount is returned as read. With one, a detected
    currency is converted to USD, and a currency missing from the table
    yields 0 since it cannot be expressed in dollars.

    Returns:
        Amount in USD, or 0.0 when unparseable
    """
    if text is None:
        return 0.0
    if isinstance(text, (int, float)):
        return float(text)
    raw = str(text).strip()
    amount = _parse_amount(raw)
    if amount is None:
        return 0.0

    if not rates:
        return amount
    code = (currency or "").strip().upper() or detect_currency(raw) or "USD"
    rate = rates.get(code)
    if rate is None:
        logger.debug(f"No exchange rate for {code}, treating amount as unknown")
        return 0.0
    return round(amount * rate, 2)


def parse_faults(text: str | None) -> float:
    """Parse a fault total ("4", "4.25 faults"); 0 when absent."""
    if not text:
        return 0.0
    match = re.search(r"-?\d+(?:\.\d+)?", text)
    return float(match.group()) if match else 0.0


def parse_time_seconds(text: str | None) -> float:
    """Parse an elapsed time ("1:05.32" or "65.32") into seconds; 0 when absent."""
    if not text:
        return 0.0
    match = _TIME.match(text.strip().rstrip("s").strip())
    if not match:
        return 0.0
    minutes = int(match.group(1) or 0)
    return round(minutes * 60 + float(match.group(2)), 3)


def parse_points(text: str | None) -> float:
    """Parse ranking points, ignoring thousands separators."""
    if not text:
        return 0.0
    cleaned = text.replace(",", "").replace(" ", "").strip()
    match = re.search(r"-?\d+(?:\.\d+)?", cleaned)
    return float(match.group()) if match else 0.0


def parse_year(text: str | None) -> int | None:
    """Four-digit year in the text, if any."""
    if not text:
        return None
    match = re.search(r"\b(19|20)\d{2}\b", text)
    return int(match.group()) if match else None


def stable_id(prefix: str, *parts: str) -> str:
    """Deterministic identifier from record content."""
    digest = hashlib.sha1("|".join(p.strip().lower() for p in parts).encode("utf-8"))
    return f"{prefix}_{digest.hexdigest()[:16]}"


class Normalizer:
    """
    Normalizes raw records into the canonical schema.

    Handles:
    - Country names and codes (e.g., "France" -> "FRA")
    - Sex aliases (e.g., "m" -> "Mare", "g" -> "Gelding")
    - Result status translation and withdrawal exclusion
    - Unit and currency conversion
    """

    # Country aliases: maps names and two-letter codes to IOC codes
    COUNTRY_ALIASES: dict[str, str] = {
        "france": "FRA",
        "fr": "FRA",
        "united states": "USA",
        "united states of america": "USA",
        "us": "USA",
        "germany": "GER",
        "deu": "GER",
        "de": "GER",
        "netherlands": "NED",
        "the netherlands": "NED",
        "nld": "NED",
        "nl": "NED",
        "belgium": "BEL",
        "be": "BEL",
        "great britain": "GBR",
        "united kingdom": "GBR",
        "uk": "GBR",
        "gb": "GBR",
        "ireland": "IRL",
        "ie": "IRL",
        "switzerland": "SUI",
        "che": "SUI",
        "ch": "SUI",
        "sweden": "SWE",
        "australia": "AUS",
        "canada": "CAN",
        "brazil": "BRA",
        "italy": "ITA",
        "spain": "ESP",
        "mexico": "MEX",
    }

    SEX_ALIASES: dict[str, str] = {
        "m": "Mare",
        "mare": "Mare",
        "f": "Mare",
        "g": "Gelding",
        "gelding": "Gelding",
        "s": "Stallion",
        "h": "Stallion",
        "stallion": "Stallion",
        "stal": "Stallion",
    }

    def __init__(self, currency_rates: Mapping[str, float] | None = None) -> None:
        self.currency_rates = dict(currency_rates or {})

    def normalize(self, raw: RawRecord) -> NormalizedRecord | None:
        """
        Normalize a raw record according to its kind.

        Args:
            raw: Extracted record

        Returns:
            A normalized model, or None when the row is a pre-start
            withdrawal that must not become a record

        Raises:
            NormalizationError: If the row lacks the fields its kind requires
        """
        if raw.kind == RecordKind.RESULTS:
            return self.normalize_result(raw)
        if raw.kind == RecordKind.ANIMALS:
            return self.normalize_animal(raw)
        if raw.kind == RecordKind.EVENTS:
            return self.normalize_event(raw)
        if raw.kind == RecordKind.RANKINGS:
            return self.normalize_ranking(raw)
        raise NormalizationError(f"Unsupported record kind: {raw.kind}", raw.source, raw.row_index)

    def is_excluded(self, raw: RawRecord) -> bool:
        """True when a result row is a withdrawal and must be left out."""
        if raw.kind != RecordKind.RESULTS:
            return False
        return is_withdrawal(raw.get("status")) or is_withdrawal(raw.get("placing"))

    def _clean_string(self, value: str | None) -> str:
        """Clean and normalize a string value."""
        if value is None:
            return ""
        return re.sub(r"\s+", " ", str(value)).strip()

    def _require_name(self, raw: RawRecord, what: str) -> str:
        name = self._clean_string(raw.get("name"))
        if not name:
            raise NormalizationError(f"Row has no {what} name", raw.source, raw.row_index)
        return name

    def normalize_country(self, value: str | None) -> str:
        """
        Normalize a country to its three-letter code.

        Args:
            value: Raw country name or code

        Returns:
            Upper-case code, the cleaned value if no alias is known, or ""
        """
        cleaned = self._clean_string(value)
        if not cleaned:
            return ""
        # Drop parenthesised qualifiers such as "FRA (France)"
        cleaned = re.sub(r"\s*\(.*?\)\s*", " ", cleaned).strip()
        alias = self.COUNTRY_ALIASES.get(cleaned.lower())
        if alias:
            return alias
        if len(cleaned) == 3 and cleaned.isalpha():
            return cleaned.upper()
        return cleaned

    def normalize_sex(self, value: str | None) -> str:
        cleaned = self._clean_string(value)
        return self.SEX_ALIASES.get(cleaned.lower(), cleaned)

    def normalize_animal(self, raw: RawRecord) -> NormalizedAnimal:
        """Build an identity candidate from an animal row."""
        name = self._require_name(raw, "horse")
        external_ids = {}
        external_id = self._clean_string(raw.get("external_id"))
        if external_id and raw.id_registry:
            external_ids[raw.id_registry] = external_id

        return NormalizedAnimal(
            name=name,
            breed=self._clean_string(raw.get("breed")),
            country=self.normalize_country(raw.get("country")),
            dob=normalize_date(raw.get("dob")),
            sex=self.normalize_sex(raw.get("sex")),
            height_cm=normalize_height(raw.get("height"), raw.get("height_unit")),
            color=self._clean_string(raw.get("color")),
            sire_name=self._clean_string(raw.get("sire")),
            dam_name=self._clean_string(raw.get("dam")),
            external_ids=external_ids,
            sources=[raw.source],
        )

    def normalize_result(self, raw: RawRecord) -> NormalizedResult | None:
        """
        Build a result from a result row.

        Returns None for withdrawals; a withdrawal never becomes a result.
        """
        raw_status = self._clean_string(raw.get("status"))
        raw_placing = self._clean_string(raw.get("placing"))
        if self.is_excluded(raw):
            return None
        name = self._require_name(raw, "horse")

        placing = parse_placing(raw_placing)
        # Some sources print the placing in the status column and vice versa
        status_text = raw_status or raw_placing
        status = normalize_status(status_text, placing)
        if placing is None and status == ResultStatus.PLACED:
            placing = parse_placing(status_text)
        if status != ResultStatus.PLACED:
            placing = None

        event_name = self._clean_string(raw.get("event"))
        class_name = self._clean_string(raw.get("class_name"))
        class_date = normalize_date(raw.get("date"))
        country = self.normalize_country(raw.get("country"))

        return NormalizedResult(
            result_id=stable_id(
                "result", raw.source, name, country, event_name, class_name, class_date, str(raw.row_index)
            ),
            animal_name=name,
            animal_country=country,
            animal_external_id=self._clean_string(raw.get("external_id")),
            rider_name=self._clean_string(raw.get("rider")),
            event_name=event_name,
            class_name=class_name,
            class_date=class_date,
            class_height_cm=normalize_height(raw.get("class_height")),
            placing=placing,
            status=status,
            faults=parse_faults(raw.get("faults")),
            time_seconds=parse_time_seconds(raw.get("time")),
            earnings_usd=normalize_earnings(
                raw.get("earnings"), self.currency_rates, raw.get("currency")
            ),
            source=raw.source,
            result_raw_status=raw_status or raw_placing,
        )

    def normalize_event(self, raw: RawRecord) -> NormalizedEvent:
        """Build an event from a calendar row."""
        name = self._require_name(raw, "event")
        start_date = normalize_date(raw.get("start_date") or raw.get("date"))
        end_date = normalize_date(raw.get("end_date"))
        venue = self._clean_string(raw.get("venue"))
        return NormalizedEvent(
            event_id=stable_id("event", raw.source, name, venue, start_date),
            name=name,
            venue=venue,
            location=self._clean_string(raw.get("location")),
            start_date=start_date,
            end_date=end_date,
            discipline=self._clean_string(raw.get("discipline")),
            federation=raw.source,
        )

    def normalize_ranking(self, raw: RawRecord) -> NormalizedRanking:
        """Build a ranking position from a ranking row."""
        name = self._require_name(raw, "horse")
        rank = parse_placing(raw.get("rank"))
        if rank is None:
            raise NormalizationError(f"Ranking row for '{name}' has no rank", raw.source, raw.row_index)
        return NormalizedRanking(
            animal_name=name,
            animal_external_id=self._clean_string(raw.get("external_id")),
            rider_name=self._clean_string(raw.get("rider")),
            nation=self.normalize_country(raw.get("country")),
            rank_position=rank,
            points=parse_points(raw.get("points")),
            year=parse_year(raw.get("year")),
            discipline=self._clean_string(raw.get("discipline")),
            source=raw.source,
        )

    def candidate_for(self, record: NormalizedRecord, id_registry: str = "") -> NormalizedAnimal | None:
        """
        Identity candidate implied by a normalized record.

        Results and rankings name an animal; the candidate carries what
        the record knows about it so it can be resolved with the rest.
        """
        if isinstance(record, NormalizedAnimal):
            return record
        if isinstance(record, NormalizedResult):
            name, country, external_id = record.animal_name, record.animal_country, record.animal_external_id
        elif isinstance(record, NormalizedRanking):
            name, country, external_id = record.animal_name, record.nation, record.animal_external_id
        else:
            return None
        external_ids = {id_registry: external_id} if id_registry and external_id else {}
        return NormalizedAnimal(
            name=name,
            country=country,
            external_ids=external_ids,
            sources=[record.source],
        )
