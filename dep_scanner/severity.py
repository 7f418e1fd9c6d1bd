# dep_scanner/severity.py
import logging
from typing import Any, Mapping, Optional

from cvss import CVSS2, CVSS3, CVSS4

from .models import Severity

logger = logging.getLogger(__name__)

RawVulnerability = Mapping[str, Any]

# Substring -> level, first hit wins
_TEXT_SEVERITIES = (
    ("CRITICAL", Severity.CRITICAL),
    ("HIGH", Severity.HIGH),
    ("MEDIUM", Severity.MEDIUM),
    ("MODERATE", Severity.MEDIUM),
    ("LOW", Severity.LOW),
)


def severity_from_score(score: float) -> Severity:
    if score >= 9.0:
        return Severity.CRITICAL
    if score >= 7.0:
        return Severity.HIGH
    if score >= 4.0:
        return Severity.MEDIUM
    return Severity.LOW


def severity_from_text(text: str) -> Severity | None:
    upper = text.upper()
    for needle, severity in _TEXT_SEVERITIES:
        if needle in upper:
            return severity
    return None


def _score_from_vector(vector: str) -> Optional[float]:
    """Computes the base score of a CVSS vector string with the cvss library."""
    try:
        if vector.startswith('CVSS:4'):
            return float(CVSS4(vector).base_score)
        if vector.startswith('CVSS:3'):
            return float(CVSS3(vector).base_score)
        return float(CVSS2(vector).base_score)
    except Exception as e:  # cvss raises assorted errors on malformed vectors
        logger.debug(f"Failed CVSS parse for vector '{vector}': {e}")
        return None


def _as_score(value: Any) -> Optional[float]:
    """Accepts numbers and numeric strings such as "9.5"."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _severity_entries(vuln: RawVulnerability) -> list[Mapping[str, Any]]:
    entries = vuln.get('severity')
    if not isinstance(entries, list):
        return []
    return [entry for entry in entries if isinstance(entry, Mapping)]


def get_cvss_score(vuln: RawVulnerability) -> Optional[float]:
    """
    Finds a numeric CVSS score on a raw OSV record.

    ``database_specific.cvss_score`` wins; otherwise the first ``severity`` entry whose
    type mentions CVSS and whose score is either a number or a parseable vector.
    """
    database_specific = vuln.get('database_specific')
    if isinstance(database_specific, Mapping):
        score = _as_score(database_specific.get('cvss_score'))
        if score is not None and score > 0:
            return score

    for entry in _severity_entries(vuln):
        entry_type = entry.get('type')
        raw_score = entry.get('score')
        if not isinstance(entry_type, str) or 'CVSS' not in entry_type.upper():
            continue
        if isinstance(raw_score, (int, float)) and not isinstance(raw_score, bool):
            return float(raw_score)
        if not isinstance(raw_score, str):
            continue
        try:
            return float(raw_score)
        except ValueError:
            pass
        score = _score_from_vector(raw_score.strip())
        if score is not None:
            return score

    return None


def _database_specific_texts(vuln: RawVulnerability) -> list[str]:
    texts = []
    database_specific = vuln.get('database_specific')
    if isinstance(database_specific, Mapping) and isinstance(database_specific.get('severity'), str):
        texts.append(database_specific['severity'])
    affected = vuln.get('affected')
    if isinstance(affected, list):
        for entry in affected:
            if not isinstance(entry, Mapping):
                continue
            entry_specific = entry.get('database_specific')
            if isinstance(entry_specific, Mapping) and isinstance(entry_specific.get('severity'), str):
                texts.append(entry_specific['severity'])
    return texts


def classify_severity(vuln: RawVulnerability) -> Severity:
    """
    Maps a raw OSV record onto the four-level scale.

    CVSS score first, then textual ``severity`` scores, then database-specific
    severity text. Records carrying none of these are treated as MEDIUM so that
    missing data never reads as "no risk".
    """
    score = get_cvss_score(vuln)
    if score is not None:
        return severity_from_score(score)

    for entry in _severity_entries(vuln):
        text = entry.get('score')
        if isinstance(text, str):
            severity = severity_from_text(text)
            if severity:
                return severity

    for text in _database_specific_texts(vuln):
        severity = severity_from_text(text)
        if severity:
            return severity

    return Severity.MEDIUM
