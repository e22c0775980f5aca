class ExamError(Exception):
    """Base for errors surfaced by the exam session engine."""
    status_code = 400


class NotFound(ExamError):
    status_code = 404


class Unavailable(ExamError):
    """Exam is outside its availability window."""
    status_code = 403


class QuotaExceeded(ExamError):
    status_code = 409

    def __init__(self, used: int, limit: int):
        super().__init__(f"Maximum number of attempts reached ({used}/{limit})")
        self.used = used
        self.limit = limit


class InvalidState(ExamError):
    """Operation not allowed in the session's current state."""
    status_code = 409


class PersistenceFailure(ExamError):
    """The attempt record could not be written. Retrying submit() re-sends the same record."""
    status_code = 503
