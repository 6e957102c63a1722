from awale.enums import ErrorCode


class ProtocolError(Exception):
    """A request that is refused and reported to the sender only"""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def to_message(self) -> dict:
        return {"type": "error", "code": self.code.value, "message": self.message}
