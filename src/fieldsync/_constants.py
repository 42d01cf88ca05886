"""Internal constants shared across the library."""

USER_AGENT = "fieldsync/1.0"
REST_PREFIX = "/rest/v1"

#: Postgres error code for a unique constraint violation.
UNIQUE_VIOLATION_CODE = "23505"

# ------------------------------------------------------------------
# Project calendar defaults
# ------------------------------------------------------------------

DEFAULT_PROJECT_DAYS = 14
DAYS_PER_WEEK = 7

DEFAULT_TIME_SLOTS: tuple[str, ...] = (
    "08:00-10:00",
    "10:00-12:00",
    "12:00-14:00",
    "14:00-16:00",
    "16:00-18:00",
    "18:00-20:00",
)

PROJECT_SETTINGS_ID = "default"

# ------------------------------------------------------------------
# Table names and primary keys
# ------------------------------------------------------------------

TABLE_VEHICLES = "vehicles"
TABLE_LOCATIONS = "locations"
TABLE_TEAM_MEMBERS = "team_members"
TABLE_TASKS = "tasks"
TABLE_COMMENTS = "comments"
TABLE_PROJECT_SETTINGS = "project_settings"

PRIMARY_KEYS: dict[str, str] = {
    TABLE_VEHICLES: "id",
    TABLE_LOCATIONS: "name",
    TABLE_TEAM_MEMBERS: "id",
    TABLE_TASKS: "id",
    TABLE_COMMENTS: "id",
    TABLE_PROJECT_SETTINGS: "id",
}

# ------------------------------------------------------------------
# Prefetch route table (navigation target -> tables worth warming)
# ------------------------------------------------------------------

ROUTE_PREFETCH: dict[str, tuple[str, ...]] = {
    "/project": (),
    "/schedule": (TABLE_VEHICLES, TABLE_LOCATIONS),
    "/timeline": (TABLE_VEHICLES, TABLE_LOCATIONS),
    "/gantt": (TABLE_VEHICLES, TABLE_LOCATIONS),
    "/tasks": (TABLE_TASKS, TABLE_TEAM_MEMBERS, TABLE_VEHICLES),
    "/team": (TABLE_TEAM_MEMBERS, TABLE_TASKS),
}
