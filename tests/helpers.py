"""Shared test doubles and constants."""

from datetime import datetime, timedelta, timezone
from typing import Any

from hospital_service.core.security import create_access_token
from hospital_service.models.hospital_user import HospitalUser
from hospital_service.services.events import EventPublisher

HOSPITAL_ID = "hospital-1"
OTHER_HOSPITAL_ID = "hospital-2"
PATIENT_ID = "patient-1"
OTHER_PATIENT_ID = "patient-2"

# Wednesday, inside every role's time window
WEEKDAY_MORNING = datetime(2024, 1, 10, 10, 0, tzinfo=timezone.utc)
WEEKDAY_NIGHT = datetime(2024, 1, 10, 22, 0, tzinfo=timezone.utc)
SATURDAY_MORNING = datetime(2024, 1, 13, 10, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingEventPublisher(EventPublisher):
    """Publisher that keeps every event in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        self.events.append((topic, payload))

    @property
    def topics(self) -> list[str]:
        return [topic for topic, _ in self.events]


def staff_headers(user: HospitalUser) -> dict[str, str]:
    """Authorization headers for a hospital staff member."""
    token = create_access_token(
        subject=user.id,
        additional_claims={
            "actor_type": "staff",
            "hospital_id": user.hospital_id,
            "tenant_id": user.tenant_id,
        },
    )
    return {"Authorization": f"Bearer {token}"}


def patient_headers(patient_id: str = PATIENT_ID) -> dict[str, str]:
    """Authorization headers for a patient."""
    token = create_access_token(
        subject=patient_id,
        additional_claims={"actor_type": "patient"},
    )
    return {"Authorization": f"Bearer {token}"}
