"""
Input validators for the intake engine.

Message text, clinician responses, attachment references.  Each
validator returns the cleaned value or raises ValidationError.
"""

from __future__ import annotations

from medichat import settings
from medichat.intake.errors import ValidationError

DIAGNOSIS_MAX_LENGTH = 5000
RECOMMENDATIONS_MAX_LENGTH = 5000
REFERRALS_MAX_LENGTH = 10000
NOTES_MAX_LENGTH = 5000
FILENAME_MAX_LENGTH = 255


def clean_message(text: str | None, max_length: int = settings.MAX_MESSAGE_LENGTH) -> str:
    """
    Validate a patient message and return it stripped.

    Empty or whitespace-only text is rejected, as is text longer than
    ``max_length`` after stripping.
    """
    if text is None:
        raise ValidationError("Message is required")
    cleaned = text.strip()
    if not cleaned:
        raise ValidationError("Message cannot be empty")
    if len(cleaned) > max_length:
        raise ValidationError(f"Message must be at most {max_length} characters")
    return cleaned


def _required(value: str | None, field: str, max_length: int) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{field} is required")
    if len(cleaned) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return cleaned


def _optional(value: str | None, field: str, max_length: int) -> str | None:
    cleaned = (value or "").strip()
    if len(cleaned) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return cleaned or None


def clean_clinician_response(
    diagnosis: str | None,
    recommendations: str | None,
    referrals: str | None = None,
    notes: str | None = None,
) -> dict[str, str | None]:
    return {
        "diagnosis": _required(diagnosis, "Diagnosis", DIAGNOSIS_MAX_LENGTH),
        "recommendations": _required(recommendations, "Recommendations", RECOMMENDATIONS_MAX_LENGTH),
        "referrals": _optional(referrals, "Referrals", REFERRALS_MAX_LENGTH),
        "clinician_notes": _optional(notes, "Notes", NOTES_MAX_LENGTH),
    }


def clean_filename(filename: str | None) -> str:
    cleaned = (filename or "").strip()
    if not cleaned:
        raise ValidationError("Filename is required")
    if len(cleaned) > FILENAME_MAX_LENGTH:
        raise ValidationError(f"Filename must be at most {FILENAME_MAX_LENGTH} characters")
    if "/" in cleaned or "\\" in cleaned:
        raise ValidationError("Filename must not contain path separators")
    return cleaned
