"""Treatment catalogue, provider roster and appointment durations."""

import re
from enum import Enum
from typing import Optional


class Treatment(str, Enum):
    """Treatments that can be booked."""

    CONSULTATION = "Consultation"
    CLEANING = "Cleaning"
    FILLING = "Filling"
    BRACES_MAINTENANCE = "Braces Maintenance"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Treatment"]:
        """Match free text to a treatment, case-insensitively."""
        if not value:
            return None
        key = _normalize(value)
        for treatment in cls:
            if _normalize(treatment.value) == key:
                return treatment
        return None


BRACES_PROVIDERS = ("Dr BracesA", "Dr BracesB")
GENERAL_PROVIDERS = ("Dr GeneralA", "Dr GeneralB")
ALL_PROVIDERS = BRACES_PROVIDERS + GENERAL_PROVIDERS

# Minutes; Filling and Braces Maintenance are resolved in required_minutes()
BASE_DURATIONS: dict[Treatment, int] = {
    Treatment.CONSULTATION: 15,
    Treatment.CLEANING: 30,
    Treatment.FILLING: 30,
    Treatment.BRACES_MAINTENANCE: 45,
}

FILLING_EXTRA_TOOTH_MINUTES = 15
FILLING_UNKNOWN_COUNT_MINUTES = 15

BRACES_DURATION_BY_PROVIDER = {
    "Dr BracesA": 15,
    "Dr BracesB": 45,
}


def _normalize(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


def canonical_provider(value: Optional[str]) -> Optional[str]:
    """Resolve free text like "dr. bracesb" to a roster name."""
    if not value:
        return None
    key = _normalize(value)
    for provider in ALL_PROVIDERS:
        name = _normalize(provider)
        if key == name or key == name[2:]:
            return provider
    return None


def eligible_providers(treatment: Treatment) -> tuple[str, ...]:
    """Providers who perform the treatment."""
    if treatment == Treatment.BRACES_MAINTENANCE:
        return BRACES_PROVIDERS
    return GENERAL_PROVIDERS


def is_eligible(treatment: Treatment, provider: str) -> bool:
    return provider in eligible_providers(treatment)


def required_minutes(
    treatment: Treatment,
    provider: Optional[str] = None,
    unit_count: Optional[int] = None,
) -> int:
    """
    Appointment length for a treatment.

    Args:
        treatment: Treatment being booked
        provider: Provider performing it, when known
        unit_count: Number of teeth for fillings

    Returns:
        Duration in minutes
    """
    if treatment == Treatment.FILLING:
        if not unit_count:
            return FILLING_UNKNOWN_COUNT_MINUTES
        return BASE_DURATIONS[treatment] + FILLING_EXTRA_TOOTH_MINUTES * (unit_count - 1)

    if treatment == Treatment.BRACES_MAINTENANCE and provider:
        return BRACES_DURATION_BY_PROVIDER.get(provider, BASE_DURATIONS[treatment])

    return BASE_DURATIONS[treatment]


def needs_unit_count(treatment: Optional[Treatment]) -> bool:
    """Fillings are sized by tooth count."""
    return treatment == Treatment.FILLING
