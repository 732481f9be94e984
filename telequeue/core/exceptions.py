"""
Error taxonomy shared by the queue services, the REST layer and the live
connection handler.

Services raise these; FastAPI exception handlers map them to HTTP status
codes and the websocket handler turns them into an ``ERROR`` event for the
originating connection only.
"""


class QueueError(Exception):
    status_code = 500
    user_message = "Something went wrong, please retry"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.user_message
        super().__init__(self.detail)


class NotFoundError(QueueError):
    status_code = 404
    user_message = "Not found"


class ConflictError(QueueError):
    status_code = 409
    user_message = "Conflicting state"


class ValidationError(QueueError):
    status_code = 400
    user_message = "Invalid request"


class NoWaitingPatients(QueueError):
    status_code = 200
    user_message = "No waiting patients"
