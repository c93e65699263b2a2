"""Reminder error taxonomy."""


class ReminderError(Exception):
    """Base class for reminder errors."""


class ValidationError(ReminderError):
    """Malformed input, rejected before any side effect."""


class NotFound(ReminderError):
    """No reminder (or task) with this id for this user."""


class SchedulingFailure(ReminderError):
    """The job registry or notification sink rejected a schedule request."""


class PersistenceFailure(ReminderError):
    """Storage layer error."""
