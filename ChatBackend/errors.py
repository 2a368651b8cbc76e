from fastapi import HTTPException


# Request input is missing or malformed
class ValidationError(HTTPException):
    def __init__(self, detail: str = "Invalid request"):
        super().__init__(status_code=400, detail=detail)


# No session, or the session is unknown/expired
class Unauthorized(HTTPException):
    def __init__(self, detail: str = "Not authenticated"):
        super().__init__(status_code=401, detail=detail)


# Missing, or owned by someone else (never distinguished)
class NotFound(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=404, detail=detail)


class Conflict(HTTPException):
    def __init__(self, detail: str = "Conflict"):
        super().__init__(status_code=409, detail=detail)


# The completion provider failed before anything was streamed
class UpstreamFailure(HTTPException):
    def __init__(self, detail: str = "Failed to send message"):
        super().__init__(status_code=502, detail=detail)


class InternalError(HTTPException):
    def __init__(self, detail: str = "Internal server error"):
        super().__init__(status_code=500, detail=detail)
