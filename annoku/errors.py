from __future__ import annotations


class AnnokuError(Exception):
    pass


class ValidationError(AnnokuError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class InvalidJSONError(ValidationError):
    def __init__(self, message: str = "Invalid JSON body") -> None:
        super().__init__("body", message)


class StoreFullError(AnnokuError):
    def __init__(self, capacity: int) -> None:
        super().__init__(
            f"Maximum of {capacity} annotations reached. "
            "Resolve or delete existing annotations first."
        )
        self.capacity = capacity


class BodyTooLargeError(AnnokuError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"Request body too large (limit {limit} bytes)")
        self.limit = limit
