"""
CEP (Brazilian postal code) helpers.

Zone ranges are stored as ``[{"start": "58083000", "end": "58083500"}, ...]``
and typed by admins as text, one range per line:

    58083000...58083500
    58084-000 até 58084-999
    58090000
"""
import re
from typing import Dict, List, Optional
from urllib.parse import quote

from backend.app.core.settings import get_settings

CEP_LENGTH = 8

_CEP = r"(\d{5}-?\d{3})"
RANGE_RE = re.compile(_CEP + r"\s*(?:\.{2,3}|–|-|a|até)\s*" + _CEP, re.IGNORECASE)
SINGLE_RE = re.compile(r"^\s*" + _CEP + r"\s*$")
RANGE_SEPARATORS_RE = re.compile(r"[\n;,]+")


def clean_cep(value: Optional[str]) -> str:
    """Strip formatting and left-pad to 8 digits."""
    digits = re.sub(r"\D", "", value or "")
    return digits.zfill(CEP_LENGTH) if digits else ""


def is_valid_cep(value: Optional[str]) -> bool:
    """User-entered CEPs must carry all 8 digits; no zero-padding here."""
    return len(re.sub(r"\D", "", value or "")) == CEP_LENGTH


def format_cep(value: str) -> str:
    """58083000 -> 58083-000; anything that is not a CEP is returned unchanged."""
    cleaned = clean_cep(value)
    if len(cleaned) != CEP_LENGTH:
        return value
    return f"{cleaned[:5]}-{cleaned[5:]}"


def parse_ranges_from_text(text: str) -> List[Dict[str, str]]:
    """Parse admin range text into ``[{"start", "end"}]``. Unparseable chunks are skipped."""
    ranges: List[Dict[str, str]] = []
    for chunk in RANGE_SEPARATORS_RE.split(text or ""):
        chunk = chunk.strip()
        if not chunk:
            continue
        match = RANGE_RE.search(chunk)
        if match:
            start, end = clean_cep(match.group(1)), clean_cep(match.group(2))
        else:
            single = SINGLE_RE.match(chunk)
            if not single:
                continue
            start = end = clean_cep(single.group(1))
        if start > end:
            start, end = end, start
        ranges.append({"start": start, "end": end})
    return ranges


def ranges_to_text(ranges: List[Dict[str, str]]) -> str:
    return "\n".join(f"{r['start']}...{r['end']}" for r in ranges)


def cep_in_ranges(cep: str, ranges: List[Dict[str, str]]) -> bool:
    # Fixed-width digit strings compare correctly as strings
    cleaned = clean_cep(cep)
    return any(r["start"] <= cleaned <= r["end"] for r in ranges or [])


def ranges_overlap(a: Dict[str, str], b: Dict[str, str]) -> bool:
    return a["start"] <= b["end"] and a["end"] >= b["start"]


def whatsapp_contact_url(
    zip_code: str, event_name: Optional[str] = None, phone_number: Optional[str] = None
) -> str:
    """wa.me link with a pre-filled message asking whether the CEP is served."""
    phone_number = phone_number or get_settings().SUPPORT_WHATSAPP_NUMBER
    if event_name:
        message = (
            f'Olá! Meu CEP {zip_code} não foi reconhecido no sistema para o evento "{event_name}". '
            "Vocês atendem essa região?"
        )
    else:
        message = f"Olá! Meu CEP {zip_code} não foi reconhecido no sistema. Vocês atendem essa região?"
    return f"https://wa.me/{phone_number}?text={quote(message)}"
