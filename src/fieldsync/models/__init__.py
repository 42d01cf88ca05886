"""Typed entity models for store rows."""

from fieldsync.models._base import FieldSyncModel, TaskPriority, TaskStatus, VehicleStatus
from fieldsync.models.comment import Comment
from fieldsync.models.location import Location
from fieldsync.models.project_settings import ProjectSettings
from fieldsync.models.task import Task
from fieldsync.models.team_member import TeamMember
from fieldsync.models.vehicle import Vehicle

__all__ = [
    "Comment",
    "FieldSyncModel",
    "Location",
    "ProjectSettings",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "TeamMember",
    "Vehicle",
    "VehicleStatus",
]
