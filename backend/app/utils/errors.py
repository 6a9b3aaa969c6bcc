from fastapi import HTTPException


class APIError(HTTPException):
    """HTTPException that can tell the dashboard to prompt for a reconnect."""

    def __init__(self, status_code: int, detail: str, *, requires_reconnect: bool = False, **extra):
        super().__init__(status_code=status_code, detail=detail)
        self.requires_reconnect = requires_reconnect
        self.extra = extra
