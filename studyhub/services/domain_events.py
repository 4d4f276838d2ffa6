# studyhub/services/domain_events.py
"""
Domain events raised by study and enrollment transitions.

They carry identifiers only; handlers reload whatever they need, so they
always see committed state.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class StudyCreated:
    study_id: int


@dataclass(frozen=True)
class StudyUpdated:
    study_id: int
    message: str


@dataclass(frozen=True)
class EnrollmentDecided:
    enrollment_id: int
    event_id: int
    account_id: int
    accepted: bool
