"""
PHI redaction for free text leaving the trusted boundary.

Rules run in a fixed order and replace each match with a bracketed
placeholder ([PHONE], [DATE], ...). Placeholders contain no digits, no
lowercase letters and start with '[', so no rule can match one; running
sanitize() on its own output returns it unchanged.
"""

import re

from .keywords import CLINICAL_VOCABULARY

_ADDRESS_SUFFIX = (
    r'(?:Avenue|Ave|Street|St|Road|Rd|Boulevard|Blvd|Drive|Dr|Lane|Ln|Court|Ct|Way|'
    r'Place|Pl|Terrace|Ter|Parkway|Pkwy|Highway|Hwy)'
)
_MONTH = r'(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec)[a-z]*\.?'

# (category, pattern, placeholder); applied top to bottom
REDACTION_RULES = (
    ('url', re.compile(r'https?://[^\s]+'), '[URL]'),
    ('email', re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'), '[EMAIL]'),
    ('mrn', re.compile(r'(?i:\b(?:MRN|MR#|medical record(?: number)?))\s*[:#]?\s*[A-Z]{0,3}\d{4,12}\b'), '[MRN]'),
    ('ssn', re.compile(r'\b\d{3}[-\s]?\d{2}[-\s]?\d{4}\b'), '[SSN]'),
    ('phone', re.compile(r'(?<!\w)\+?1[-.\s]?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b'), '[PHONE]'),
    ('phone', re.compile(r'\(\d{3}\)\s*\d{3}[-.\s]?\d{4}\b'), '[PHONE]'),
    ('phone', re.compile(r'\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b'), '[PHONE]'),
    ('mrn', re.compile(r'\b[A-Z]{1,3}\d{5,10}\b'), '[MRN]'),
    ('date', re.compile(r'\b(?:0?[1-9]|1[0-2])[/-](?:0?[1-9]|[12]\d|3[01])[/-](?:19|20)\d{2}\b'), '[DATE]'),
    ('date', re.compile(r'\b(?:19|20)\d{2}[/-](?:0?[1-9]|1[0-2])[/-](?:0?[1-9]|[12]\d|3[01])\b'), '[DATE]'),
    ('date', re.compile(r'\b' + _MONTH + r' (?:0?[1-9]|[12]\d|3[01])(?:st|nd|rd|th)?,? (?:19|20)\d{2}\b', re.I), '[DATE]'),
    ('address', re.compile(r'\b\d{1,6}\s+(?:[A-Z][a-z]+\.?\s+){1,4}' + _ADDRESS_SUFFIX + r'\b\.?'), '[ADDRESS]'),
    ('zip', re.compile(r'\b\d{5}-\d{4}\b'), '[ZIP]'),
    # bare 5-digit numbers only after ", ST " so CPT codes like 72148 survive
    ('zip', re.compile(r'(?<=, [A-Z]{2} )\d{5}\b'), '[ZIP]'),
    ('name', re.compile(r'\b[A-Z][a-z]+(?:\s+[A-Z]\.?)?(?:\s+[A-Z][a-z]+)+\b'), '[NAME]'),
    ('name', re.compile(r'\b[A-Z][a-z]+,\s+[A-Z][a-z]+(?:\s+[A-Z]\.)?'), '[NAME]'),
)


def _keep_clinical_phrase(match):
    # "Lumbar Spine" or "Chest Pain" are capitalised headings, not names
    words = re.findall(r'[A-Za-z]+', match.group(0))
    if words and all(w.lower() in CLINICAL_VOCABULARY for w in words):
        return match.group(0)
    return '[NAME]'


def sanitize(text):
    """Return `text` with identifiers replaced by placeholder tokens. Never raises."""
    if not text:
        return ''
    sanitized = str(text)
    for category, pattern, placeholder in REDACTION_RULES:
        replacement = _keep_clinical_phrase if category == 'name' else placeholder
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def redaction_counts(text):
    """Placeholders added per category; for logging without echoing the text itself."""
    original = str(text or '')
    sanitized = sanitize(original)
    counts = {}
    for category, _pattern, placeholder in REDACTION_RULES:
        if category in counts:
            continue
        added = sanitized.count(placeholder) - original.count(placeholder)
        if added > 0:
            counts[category] = added
    return counts
