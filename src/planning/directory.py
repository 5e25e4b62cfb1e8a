"""Read-only doctor directory consulted while presenting occurrences."""

from types import MappingProxyType
from typing import Iterable

from src.planning.models import Doctor, Occurrence
from src.planning.store.base import ScheduleStore


class DoctorDirectory:
    """Immutable id -> Doctor lookup. Unknown ids are kept as opaque strings."""

    def __init__(self, doctors: Iterable[Doctor]) -> None:
        self._doctors = MappingProxyType({doctor.id: doctor for doctor in doctors})

    @classmethod
    async def load(cls, store: ScheduleStore) -> "DoctorDirectory":
        return cls(await store.list_doctors())

    def __len__(self) -> int:
        return len(self._doctors)

    def __contains__(self, doctor_id: object) -> bool:
        return doctor_id in self._doctors

    def get(self, doctor_id: str) -> Doctor | None:
        return self._doctors.get(doctor_id)

    def name(self, doctor_id: str | None) -> str:
        if doctor_id is None:
            return ""
        doctor = self._doctors.get(doctor_id)
        return doctor.name if doctor else doctor_id

    def involved(self, occurrence: Occurrence) -> list[Doctor]:
        """Known doctors involved in the occurrence, sorted by name."""
        doctors = [self._doctors[i] for i in occurrence.involved_doctor_ids if i in self._doctors]
        return sorted(doctors, key=lambda d: d.name)
