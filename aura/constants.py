"""Shared constants for the aura workflow engine."""

TASK_COMPLETE_SENTINEL = "TASK_COMPLETE"

DEFAULT_MAX_TURNS = 50
DEFAULT_STEP_MAX_RETRIES = 3
DEFAULT_MAX_STEPS_PER_INVOCATION = 25

PLAN_VERSION = 1
AUTO_APPROVER = "auto"
DEFAULT_APPROVER = "user"
