"""Deterministic text heuristics that correct recurring LLM mistakes.

Every function here is pure: text in, optional value out. Applying the
results to an extraction (and the supplier lookups that gate them) is done
in ``postprocess``.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date

DEFAULT_HEADER_KEYWORDS = r"FACTURE|INVOICE"

_TOKEN = r"([A-Z0-9][A-Z0-9/\-_.]{1,30})"

# Tried in order; the first match containing a digit wins.
_INVOICE_NUMBER_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"(?:FACTURE|INVOICE)\s*(?:N\s*[°ºo]|No\.?|Num[ée]ro|Number|#)\s*[:.]?\s*" + _TOKEN,
        re.IGNORECASE,
    ),
    re.compile(r"\b(?:N\s*[°º]|Num[ée]ro)\s*(?:de\s+)?(?:facture\s*)?[:.]?\s*" + _TOKEN, re.IGNORECASE),
    re.compile(r"\b(?:R[ée]f(?:[ée]rence)?|Ref)\.?\s*(?:facture\s*)?[:.]\s*" + _TOKEN, re.IGNORECASE),
    re.compile(r"\b((?:FA|FAC|FCT|INV|F)[\-_/]?\d{3,}[A-Z0-9\-_/]*)\b", re.IGNORECASE),
)

_FRENCH_MONTHS = {
    "janvier": 1,
    "fevrier": 2,
    "mars": 3,
    "avril": 4,
    "mai": 5,
    "juin": 6,
    "juillet": 7,
    "aout": 8,
    "septembre": 9,
    "octobre": 10,
    "novembre": 11,
    "decembre": 12,
}

_ISO_DATE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_NUMERIC_DATE = re.compile(r"\b(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4}|\d{2})\b")
_WORD_DATE = re.compile(
    r"\b(\d{1,2})(?:er)?\s+"
    r"(janvier|f[ée]vrier|mars|avril|mai|juin|juillet|ao[uû]t|septembre|octobre|novembre|d[ée]cembre)"
    r"\s+(\d{4})\b",
    re.IGNORECASE,
)

# Dates on these lines are rarely the invoice date.
_SECONDARY_DATE_LINE = re.compile(
    r"\bdue\b|[ée]ch[ée]ance|imprim[ée]|printed|livraison|delivery|livr[ée]|exp[ée]di|shipping|command[ée]",
    re.IGNORECASE,
)

_BANNED_SUPPLIER_LINE = re.compile(
    r"factur|invoice|adresse|address|livraison|delivery|\btva\b|\bvat\b|siret|siren|\brcs\b|client|customer"
    r"|destinataire|contact|t[ée]l[ée]?phone|\bt[ée]l\b|\bfax\b|e-?mail|@|www\.|https?:|iban|\bbic\b"
    r"|\bdate\b|\bpage\b|total|capital"
    # address lines: street number, postal code, street type
    r"|^\d+\s*(?:bis|ter)?[\s,]|\b\d{5}\b|\bb\.?p\.?\s*\d|\bcedex\b"
    r"|\b(?:rue|avenue|av|bd|boulevard|chemin|route|place|impasse|all[ée]e|quai|cours|zac|zi|lieu-dit)\b",
    re.IGNORECASE,
)

_GENERIC_FILE_TOKENS = frozenset(
    {
        "scan",
        "scanned",
        "facture",
        "factures",
        "invoice",
        "invoices",
        "img",
        "image",
        "document",
        "doc",
        "file",
        "copie",
        "copy",
        "pdf",
        "fa",
        "fac",
        "inv",
    }
)

UNKNOWN_SUPPLIER = "UNKNOWN - needs verification"


def compact(value: str | None) -> str:
    """Accent-, case- and punctuation-insensitive form used for equality checks."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if ch.isalnum()).casefold()


def same_value(a: str | None, b: str | None) -> bool:
    ca, cb = compact(a), compact(b)
    return bool(ca) and ca == cb


def header_window(
    text: str,
    *,
    keywords: str = DEFAULT_HEADER_KEYWORDS,
    before: int = 400,
    after: int = 800,
) -> str | None:
    """Slice of ``text`` around the first document-type keyword, or None."""
    m = re.search(keywords, text, re.IGNORECASE)
    if m is None:
        return None
    return text[max(0, m.start() - before) : m.end() + after]


def find_invoice_number(window: str) -> str | None:
    for pattern in _INVOICE_NUMBER_PATTERNS:
        for m in pattern.finditer(window):
            value = m.group(1).strip(" .:-_/")
            if any(ch.isdigit() for ch in value):
                return value
    return None


def _iso(year: int, month: int, day: int) -> str | None:
    if year < 100:
        year += 2000
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _month_number(name: str) -> int:
    plain = unicodedata.normalize("NFD", name.lower())
    plain = "".join(ch for ch in plain if not unicodedata.combining(ch))
    return _FRENCH_MONTHS[plain]


def dates_in(line: str) -> list[str]:
    """ISO dates found in ``line``, in order of appearance. Numeric dates are day-first."""
    found: list[tuple[int, str]] = []
    for m in _ISO_DATE.finditer(line):
        iso = _iso(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        if iso:
            found.append((m.start(), iso))
    for m in _NUMERIC_DATE.finditer(line):
        if any(start == m.start() for start, _ in found):
            continue
        iso = _iso(int(m.group(3)), int(m.group(2)), int(m.group(1)))
        if iso:
            found.append((m.start(), iso))
    for m in _WORD_DATE.finditer(line):
        iso = _iso(int(m.group(3)), _month_number(m.group(2)), int(m.group(1)))
        if iso:
            found.append((m.start(), iso))
    return [iso for _, iso in sorted(found)]


def normalize_date(value: str | None) -> str | None:
    if not value:
        return None
    hits = dates_in(value)
    return hits[0] if hits else None


def find_invoice_date(window: str) -> str | None:
    """First date on a line that does not talk about due/print/delivery dates.

    Falls back to the first date found anywhere in the window.
    """
    fallback: str | None = None
    for line in window.splitlines():
        hits = dates_in(line)
        if not hits:
            continue
        if not _SECONDARY_DATE_LINE.search(line):
            return hits[0]
        if fallback is None:
            fallback = hits[0]
    return fallback


def supplier_header_candidate(text: str, *, max_lines: int = 40) -> str | None:
    """First all-caps line with letters among the first ``max_lines`` lines."""
    for raw in text.splitlines()[:max_lines]:
        line = " ".join(raw.split())
        if not line or _BANNED_SUPPLIER_LINE.search(line):
            continue
        letters = [ch for ch in line if ch.isalpha()]
        if len(letters) < 2:
            continue
        if line == line.upper():
            return line
    return None


def file_name_prefix(file_name: str | None) -> str | None:
    """Leading token of a file name, skipping generic words and numbers.

    ``"ACME_2024-03.pdf"`` gives ``"ACME"``; ``"scan_0042.pdf"`` gives None.
    """
    if not file_name:
        return None
    stem = file_name.rsplit("/", 1)[-1]
    if "." in stem:
        stem = stem.rsplit(".", 1)[0]
    for token in re.split(r"[_\-\s.]+", stem):
        if not token or token.casefold() in _GENERIC_FILE_TOKENS:
            continue
        if sum(ch.isalpha() for ch in token) < 2:
            continue
        return token
    return None
