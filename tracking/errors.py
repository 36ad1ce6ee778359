"""Exceptions raised by the tracking package.

Route handlers in :mod:`app` translate these into JSON error responses, so
the messages are written to be shown to the tutor as-is.
"""


class ValidationError(ValueError):
    """Input rejected before anything was written."""


class DuplicateClassError(ValueError):
    """A class already exists for the same student, date and start time."""

    def __init__(self, student_id, date, start_time):
        self.student_id = student_id
        self.date = date
        self.start_time = start_time
        super().__init__(
            f'A class already exists for student {student_id} on {date} at {start_time}.'
        )
