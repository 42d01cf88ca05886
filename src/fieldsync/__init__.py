"""fieldsync - Async cache and sync client for a vehicle installation tracker."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("fieldsync")
except PackageNotFoundError:
    __version__ = "0+local"
from fieldsync.aggregation import (
    AggregationEngine,
    FleetStats,
    IntegrityReport,
    LocationProgress,
    MemberWorkload,
)
from fieldsync.cache import CacheStore, CacheView, CollectionKey, FetchStatus
from fieldsync.client import FieldSyncClient
from fieldsync.config import FieldSyncConfig
from fieldsync.exceptions import (
    FieldSyncConfigError,
    FieldSyncDuplicateError,
    FieldSyncError,
    FieldSyncNotFoundError,
    FieldSyncStoreError,
    FieldSyncTransportError,
    FieldSyncValidationError,
)
from fieldsync.models import (
    Comment,
    Location,
    ProjectSettings,
    Task,
    TaskPriority,
    TaskStatus,
    TeamMember,
    Vehicle,
    VehicleStatus,
)
from fieldsync.mutations import MutationPhase, OptimisticMutationController
from fieldsync.prefetch import PrefetchScheduler
from fieldsync.schedule import ReschedulePreview, ScheduleEngine, build_grid, date_for_day
from fieldsync.validation import DefaultValidator, Validator

__all__ = [
    "__version__",
    "AggregationEngine",
    "CacheStore",
    "CacheView",
    "CollectionKey",
    "Comment",
    "DefaultValidator",
    "FetchStatus",
    "FieldSyncClient",
    "FieldSyncConfig",
    "FieldSyncConfigError",
    "FieldSyncDuplicateError",
    "FieldSyncError",
    "FieldSyncNotFoundError",
    "FieldSyncStoreError",
    "FieldSyncTransportError",
    "FieldSyncValidationError",
    "FleetStats",
    "IntegrityReport",
    "Location",
    "LocationProgress",
    "MemberWorkload",
    "MutationPhase",
    "OptimisticMutationController",
    "PrefetchScheduler",
    "ProjectSettings",
    "ReschedulePreview",
    "ScheduleEngine",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "TeamMember",
    "Validator",
    "Vehicle",
    "VehicleStatus",
    "build_grid",
    "date_for_day",
]
