"""Create/update payload validation.

Validation happens before a mutation is handed to the mutation
controller: a non-empty error list means the change is never applied, not
even optimistically. The :class:`Validator` protocol is the seam; callers
with their own form rules pass their own implementation to the client.

Every method takes a field mapping and a ``partial`` flag. Partial
(update) payloads only have the fields they carry checked; full (create)
payloads also have their required fields checked.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from fieldsync._constants import DEFAULT_PROJECT_DAYS, DEFAULT_TIME_SLOTS
from fieldsync.exceptions import FieldSyncValidationError
from fieldsync.models import TaskPriority, TaskStatus, VehicleStatus
from fieldsync.normalize import safe_float, safe_int


class Validator(Protocol):
    def validate_vehicle(self, data: Mapping[str, Any], *, partial: bool = False) -> list[str]: ...

    def validate_location(self, data: Mapping[str, Any], *, partial: bool = False) -> list[str]: ...

    def validate_team_member(self, data: Mapping[str, Any], *, partial: bool = False) -> list[str]: ...

    def validate_task(self, data: Mapping[str, Any], *, partial: bool = False) -> list[str]: ...

    def validate_comment(self, data: Mapping[str, Any], *, partial: bool = False) -> list[str]: ...


def ensure_valid(errors: Sequence[str], *, entity: str = "") -> None:
    """Raise :class:`FieldSyncValidationError` when *errors* is non-empty."""
    if errors:
        raise FieldSyncValidationError(list(errors), entity=entity)


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _enum_value(value: Any) -> str:
    return value.value if hasattr(value, "value") else str(value)


class DefaultValidator:
    """Rules equivalent to the operator forms of the installation tracker."""

    def __init__(
        self,
        *,
        project_days: int = DEFAULT_PROJECT_DAYS,
        time_slots: Sequence[str] = DEFAULT_TIME_SLOTS,
    ) -> None:
        self._project_days = project_days
        self._time_slots = tuple(time_slots)

    def _required(self, data: Mapping[str, Any], fields: Mapping[str, str], partial: bool) -> list[str]:
        errors: list[str] = []
        for name, label in fields.items():
            if partial and name not in data:
                continue
            if _blank(data.get(name)):
                errors.append(f"{label} is required")
        return errors

    def _non_negative(self, data: Mapping[str, Any], fields: Mapping[str, str]) -> list[str]:
        errors: list[str] = []
        for name, label in fields.items():
            if name not in data:
                continue
            value = safe_int(data[name])
            if value is None or value < 0:
                errors.append(f"{label} must be a non-negative number")
        return errors

    def validate_vehicle(self, data: Mapping[str, Any], *, partial: bool = False) -> list[str]:
        errors = self._required(data, {"id": "Vehicle ID", "location": "Location", "time_slot": "Time slot"}, partial)

        if "day" in data or not partial:
            day = safe_int(data.get("day"))
            if day is None or not 1 <= day <= self._project_days:
                errors.append(f"Day must be between 1 and {self._project_days}")

        slot = data.get("time_slot")
        if not _blank(slot) and slot not in self._time_slots:
            errors.append(f"Time slot must be one of: {', '.join(self._time_slots)}")

        if "status" in data and _enum_value(data["status"]) not in {s.value for s in VehicleStatus}:
            errors.append("Status must be Pending, In Progress or Completed")

        errors += self._non_negative(
            data,
            {"gps_required": "GPS devices", "fuel_sensors": "Fuel sensors", "fuel_tanks": "Fuel tanks"},
        )
        sensors = safe_int(data.get("fuel_sensors"))
        tanks = safe_int(data.get("fuel_tanks"))
        if sensors is not None and tanks is not None and sensors > tanks:
            errors.append("Fuel sensors cannot exceed fuel tanks")
        return errors

    def validate_location(self, data: Mapping[str, Any], *, partial: bool = False) -> list[str]:
        errors = self._required(data, {"name": "Location name"}, partial)
        errors += self._non_negative(
            data,
            {"vehicles": "Vehicle count", "gps_devices": "GPS devices", "fuel_sensors": "Fuel sensors"},
        )
        return errors

    def validate_team_member(self, data: Mapping[str, Any], *, partial: bool = False) -> list[str]:
        errors = self._required(data, {"id": "Member ID", "name": "Name"}, partial)
        for name, label in (("completion_rate", "Completion rate"), ("quality_score", "Quality score")):
            if name not in data:
                continue
            value = safe_float(data[name])
            if value is None or not 0 <= value <= 100:
                errors.append(f"{label} must be between 0 and 100")
        if "average_task_time" in data:
            value = safe_float(data["average_task_time"])
            if value is None or value < 0:
                errors.append("Average task time must be a non-negative number")
        return errors

    def validate_task(self, data: Mapping[str, Any], *, partial: bool = False) -> list[str]:
        errors = self._required(
            data,
            {"id": "Task ID", "name": "Task name", "vehicle_id": "Vehicle", "assigned_to": "Assignee"},
            partial,
        )
        if "status" in data and _enum_value(data["status"]) not in {s.value for s in TaskStatus}:
            errors.append("Status must be Pending, In Progress, Completed or Blocked")
        if "priority" in data and _enum_value(data["priority"]) not in {p.value for p in TaskPriority}:
            errors.append("Priority must be High, Medium or Low")
        errors += self._non_negative(
            data,
            {"estimated_duration": "Estimated duration", "duration_days": "Duration (days)"},
        )
        start = data.get("start_date")
        end = data.get("end_date")
        if start and end and str(end) < str(start):
            errors.append("End date cannot be before start date")
        return errors

    def validate_comment(self, data: Mapping[str, Any], *, partial: bool = False) -> list[str]:
        return self._required(data, {"task_id": "Task", "author": "Author", "text": "Comment text"}, partial)
