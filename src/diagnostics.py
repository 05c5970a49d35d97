"""
Envelope diagnostics.

Cheap structural health checks on stored envelopes. No key is derived and
nothing is decrypted, so a report can be produced without the user's
identifier and used to pre-filter rows before paying for PBKDF2.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Any

from src.envelope import MIN_ENCODED_LEN, is_base64_text, validate_structure
from src.exceptions import FormatError

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 50


@dataclass(frozen=True)
class DiagnosticsReport:
    is_valid: bool
    is_base64: bool
    has_minimum_length: bool
    length: int
    details: str
    failed_check: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "isBase64": self.is_base64,
            "hasMinimumLength": self.has_minimum_length,
            "length": self.length,
            "details": self.details,
        }


def diagnose(envelope: str) -> DiagnosticsReport:
    """
    Structurally inspect one envelope string.

    The flags are computed independently; ``details`` describes the first
    check that failed, in the same order decode_envelope() applies them.
    """
    length = len(envelope) if isinstance(envelope, str) else 0
    is_base64 = is_base64_text(envelope) if length else False
    has_minimum_length = length >= MIN_ENCODED_LEN

    try:
        validate_structure(envelope)
    except FormatError as e:
        return DiagnosticsReport(
            is_valid=False,
            is_base64=is_base64,
            has_minimum_length=has_minimum_length,
            length=length,
            details=str(e),
            failed_check=e.check,
        )

    return DiagnosticsReport(
        is_valid=True,
        is_base64=is_base64,
        has_minimum_length=has_minimum_length,
        length=length,
        details="Data appears valid",
    )


def _preview(envelope) -> str:
    if not isinstance(envelope, str) or not envelope:
        return "<empty>"
    if len(envelope) <= PREVIEW_CHARS:
        return envelope
    return envelope[:PREVIEW_CHARS] + "..."


def _mark(flag: bool) -> str:
    return "ok" if flag else "FAIL"


def log_envelope_diagnostics(
        item_id: str,
        encrypted_query: str,
        encrypted_results: str,
        level: int = logging.WARNING
) -> Dict[str, DiagnosticsReport]:
    """
    Log a diagnostics block for both envelopes of a stored row.

    Returns:
        {"query": report, "results": report}
    """
    reports = {
        "query": diagnose(encrypted_query),
        "results": diagnose(encrypted_results),
    }
    if not logger.isEnabledFor(level):
        return reports

    envelopes = {"query": encrypted_query, "results": encrypted_results}
    lines = [f"Encryption diagnostics for item {item_id}:"]
    for field, report in reports.items():
        lines.append(
            f"  [{field}] valid={_mark(report.is_valid)} "
            f"base64={_mark(report.is_base64)} "
            f"min_length={_mark(report.has_minimum_length)} "
            f"length={report.length} details={report.details!r} "
            f"preview={_preview(envelopes[field])!r}"
        )
    logger.log(level, "\n".join(lines))
    return reports
