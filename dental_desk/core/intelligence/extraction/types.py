"""Fields extracted from caller messages, and their validation rules."""

import logging
import re
from dataclasses import dataclass, fields
from typing import Any, Optional

from dental_desk.core.scheduling.treatments import Treatment, canonical_provider

logger = logging.getLogger(__name__)

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
NAME_PATTERN = re.compile(r"^[A-Za-z\s'-]+$")
UNIT_COUNT_MIN = 1
UNIT_COUNT_MAX = 32
DATE_TIME_TEXT_MIN_LENGTH = 3
DATE_TIME_TEXT_MAX_LENGTH = 200


@dataclass
class ExtractedFields:
    """Booking details found in a message. Every field is optional."""

    patient_name: Optional[str] = None
    treatment: Optional[Treatment] = None
    provider: Optional[str] = None
    unit_count: Optional[int] = None
    date_time_text: Optional[str] = None

    # Metadata
    raw_response: str = ""
    processing_time_ms: float = 0.0

    def has_any(self) -> bool:
        """Check if any field was extracted."""
        return any([
            self.patient_name,
            self.treatment,
            self.provider,
            self.unit_count,
            self.date_time_text,
        ])

    @classmethod
    def from_raw(cls, data: dict[str, Any]) -> "ExtractedFields":
        """
        Build from untrusted model output, dropping anything invalid.

        Args:
            data: Parsed JSON from the extraction model

        Returns:
            ExtractedFields containing only values that passed validation
        """
        return cls(
            patient_name=_valid_name(data.get("patient_name")),
            treatment=_valid_treatment(data.get("treatment")),
            provider=_valid_provider(data.get("provider")),
            unit_count=_valid_unit_count(data.get("unit_count")),
            date_time_text=_valid_date_time_text(data.get("date_time_text")),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary, omitting empty fields."""
        result = {}
        for f in fields(self):
            if f.name in ("raw_response", "processing_time_ms"):
                continue
            value = getattr(self, f.name)
            if value is None:
                continue
            result[f.name] = value.value if isinstance(value, Treatment) else value
        return result


def _dropped(field_name: str, value: Any) -> None:
    logger.warning(f"Dropping invalid extracted {field_name}: {value!r}")


def _valid_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    name = " ".join(str(value).split())
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH or not NAME_PATTERN.match(name):
        _dropped("patient_name", value)
        return None
    return name


def _valid_treatment(value: Any) -> Optional[Treatment]:
    if value is None:
        return None
    treatment = Treatment.parse(str(value))
    if treatment is None:
        _dropped("treatment", value)
    return treatment


def _valid_provider(value: Any) -> Optional[str]:
    if value is None:
        return None
    provider = canonical_provider(str(value))
    if provider is None:
        _dropped("provider", value)
    return provider


def _valid_unit_count(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        count = int(str(value).strip())
    except ValueError:
        _dropped("unit_count", value)
        return None
    if not UNIT_COUNT_MIN <= count <= UNIT_COUNT_MAX:
        _dropped("unit_count", value)
        return None
    return count


def _valid_date_time_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not DATE_TIME_TEXT_MIN_LENGTH <= len(text) <= DATE_TIME_TEXT_MAX_LENGTH:
        _dropped("date_time_text", value)
        return None
    return text
