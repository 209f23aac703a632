"""PII scanner: UK-centric personal data patterns over free text"""

import re
from dataclasses import dataclass


@dataclass
class PiiFinding:
    type: str   # email | phone | ni_number | postcode
    match: str  # verbatim substring of the scanned text

    def to_dict(self) -> dict:
        return {"type": self.type, "match": self.match}


# Order matters: findings are reported pattern by pattern.
PII_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("email", re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)),
    # "+" is not a word character, so the international form cannot start with \b
    ("phone", re.compile(r"(?:(?<!\w)\+44\s?7\d{3}|\b07\d{3})\s?\d{3}\s?\d{3}\b")),
    (
        "ni_number",
        re.compile(r"\b(?!BG|GB|KN|NK|NT|TN|ZZ)[A-CEGHJ-PR-TW-Z]{2}\d{6}[A-D]\b", re.IGNORECASE),
    ),
    ("postcode", re.compile(r"\b[A-Z]{1,2}\d[A-Z\d]?\s?\d[A-Z]{2}\b", re.IGNORECASE)),
]


def scan_pii(text: str) -> list[PiiFinding]:
    """Every match of every pattern, in pattern order then left to right. No dedup."""
    if not text:
        return []
    findings: list[PiiFinding] = []
    for pii_type, pattern in PII_PATTERNS:
        for m in pattern.finditer(text):
            findings.append(PiiFinding(type=pii_type, match=m.group(0)))
    return findings


def redact_pii(text: str) -> str:
    """Replace each match with ``[REDACTED_<TYPE>]`` for display and logs."""
    if not text:
        return text or ""
    redacted = text
    for pii_type, pattern in PII_PATTERNS:
        redacted = pattern.sub(f"[REDACTED_{pii_type.upper()}]", redacted)
    return redacted
