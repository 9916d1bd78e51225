"""
Cleanup rules for Gujarati village names and notice dates.

Gemini is told to return bare village names, but it regularly leaves in
survey-number phrases ("રેવન્યુ સર્વે નં"), the "ગામ"/"મોજે ગામ" prefixes
and the genitive suffixes ("ના", "ની", "નું"). Everything here is
deterministic so it can be re-run over stored records.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Pattern

logger = logging.getLogger(__name__)

GUJARATI_DIGITS = str.maketrans("૦૧૨૩૪૫૬૭૮૯", "0123456789")

# Substrings that mean survey boilerplate leaked into a village name
FORBIDDEN_VILLAGE_SUBSTRINGS = ("સર્વે", "રેવન્યુ")
# Candidates from the pattern cascade additionally must not contain "નં"
FORBIDDEN_CANDIDATE_SUBSTRINGS = FORBIDDEN_VILLAGE_SUBSTRINGS + ("નં",)

MAX_VILLAGE_LENGTH = 10
MIN_VILLAGE_LENGTH = 2

_SURVEY_BOILERPLATE = (
    re.compile(r"\s*રેવન્યુ\s*સર્વે\s*નં.*$"),
    re.compile(r"\s*સર્વે\s*નં.*$"),
)
_VILLAGE_PREFIX = re.compile(r"^(?:મોજે\s*)?ગામ(?:\s+|$)")
_GENITIVE_SUFFIX = re.compile(r"(?:ના|ની|નું)\s*$")
_DIGITS_AND_PUNCTUATION = re.compile(r"[0-9૦-૯.,:;/\\\-()\[\]\"'|]+")
_WHITESPACE = re.compile(r"\s+")

_DATE = re.compile(r"^\s*(\d{1,2})\s*[/.\-]\s*(\d{1,2})\s*[/.\-]\s*(\d{4})\s*$")
_ISO_DATE = re.compile(r"^\s*(\d{4})-(\d{1,2})-(\d{1,2})\s*$")


def normalize_digits(value: Optional[str]) -> Optional[str]:
    """Replace Gujarati numerals with ASCII digits."""
    if not value:
        return value
    return value.translate(GUJARATI_DIGITS)


def _strip_once(value: str) -> str:
    cleaned = _DIGITS_AND_PUNCTUATION.sub(" ", value)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    for pattern in _SURVEY_BOILERPLATE:
        cleaned = pattern.sub("", cleaned)
    cleaned = _VILLAGE_PREFIX.sub("", cleaned.strip())
    cleaned = _GENITIVE_SUFFIX.sub("", cleaned)
    return _WHITESPACE.sub(" ", cleaned).strip()


def strip_village_boilerplate(value: str) -> str:
    """Apply every cleanup rule until the value stops changing."""
    previous = None
    cleaned = value
    while cleaned != previous:
        previous = cleaned
        cleaned = _strip_once(cleaned)
    return cleaned


def clean_village_name(value: Optional[str], min_length: int = MIN_VILLAGE_LENGTH) -> Optional[str]:
    """
    Remove survey boilerplate, village prefixes/suffixes, digits and
    punctuation from a raw village name.

    Empty or missing input is returned unchanged. If cleaning leaves fewer
    than ``min_length`` characters the original value is returned instead,
    since it is the only signal available.
    """
    if not value or not value.strip():
        return value

    cleaned = strip_village_boilerplate(value)
    if len(cleaned) < min_length:
        return value
    return cleaned


@dataclass(frozen=True)
class VillagePatternRule:
    """A named regex that pulls a village name out of a boilerplate phrase"""
    name: str
    pattern: Pattern

    def candidate(self, text: str) -> Optional[str]:
        match = self.pattern.search(text)
        if not match:
            return None
        return match.group(1).strip()


# Evaluated in order against the original (uncleaned) value
VILLAGE_PATTERN_RULES = (
    VillagePatternRule("moje_gam_prefix", re.compile(r"મોજે\s+ગામ\s+([^\s,.]+)ના")),
    VillagePatternRule("gam_prefix", re.compile(r"ગામ\s+([^\s,.]+)ના")),
    VillagePatternRule("before_revenue_survey", re.compile(r"([^\s,.]+)ના\s+રેવન્યુ")),
    VillagePatternRule("before_survey", re.compile(r"([^\s,.]+)ના\s+સર્વે")),
    VillagePatternRule("trailing_genitive", re.compile(r"([^\s,.]+)ના$")),
    VillagePatternRule("first_word", re.compile(r"([^\s,.]{2,})")),
)


def is_valid_village_candidate(candidate: Optional[str]) -> bool:
    if not candidate:
        return False
    if not MIN_VILLAGE_LENGTH <= len(candidate) <= MAX_VILLAGE_LENGTH:
        return False
    return not any(bad in candidate for bad in FORBIDDEN_CANDIDATE_SUBSTRINGS)


def needs_pattern_extraction(cleaned: str) -> bool:
    return (
        len(cleaned) > MAX_VILLAGE_LENGTH
        or any(bad in cleaned for bad in FORBIDDEN_VILLAGE_SUBSTRINGS)
    )


def extract_with_rules(original: str, rules=VILLAGE_PATTERN_RULES) -> Optional[str]:
    """Return the first rule candidate that passes validation, or None."""
    for rule in rules:
        candidate = rule.candidate(original)
        if is_valid_village_candidate(candidate):
            logger.debug("Village name matched rule %s: %r", rule.name, candidate)
            return candidate
    return None


def _scrub_forbidden(value: str) -> str:
    for bad in FORBIDDEN_VILLAGE_SUBSTRINGS:
        value = value.replace(bad, " ")
    return _WHITESPACE.sub(" ", value).strip()


def postprocess_village_name(original: Optional[str]) -> Optional[str]:
    """
    Deterministic cleanup applied after every extraction.

    Steps:
    1. Strip boilerplate phrases, prefixes, suffixes, digits and punctuation.
    2. If the result is still too long or still has survey text, try the
       ordered pattern rules against the original value.
    3. If the result is shorter than two characters, fall back to the
       original value.

    The returned name never contains survey boilerplate. If nothing is left
    once that boilerplate is scrubbed, None is returned rather than "".
    """
    if original is None or not original.strip():
        return None

    cleaned = strip_village_boilerplate(original)

    if needs_pattern_extraction(cleaned):
        candidate = extract_with_rules(original)
        if candidate:
            cleaned = candidate

    if len(cleaned) < MIN_VILLAGE_LENGTH:
        logger.warning("Village name too short after cleaning: %r, using original %r", cleaned, original)
        cleaned = original.strip()

    if any(bad in cleaned for bad in FORBIDDEN_VILLAGE_SUBSTRINGS):
        cleaned = _scrub_forbidden(cleaned)

    if original != cleaned:
        logger.info("Village name processing: %r -> %r", original, cleaned)
    return cleaned or None


def parse_notice_date(value) -> Optional[date]:
    """
    Parse a notice date written day-first (DD/MM/YYYY, DD-MM-YYYY or
    DD.MM.YYYY, Gujarati numerals allowed). Stored dates come back as
    YYYY-MM-DD and are accepted too. Returns None when nothing matches or
    the value is not a real calendar date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    value_ascii = normalize_digits(value)
    match = _DATE.match(value_ascii)
    if match:
        day, month, year = (int(part) for part in match.groups())
    else:
        match = _ISO_DATE.match(value_ascii)
        if not match:
            return None
        year, month, day = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        logger.warning("Ignoring impossible notice date %r", value)
        return None
