"""
Error taxonomy for CampusKart

Every failure the marketplace core reports is a MarketError with a stable
`kind` and a message that is safe to show to the caller.
"""

from typing import Any, Dict, List, Optional

_REQUEST_SOURCES = ("body", "query", "path", "header")


class MarketError(Exception):
    kind = "error"
    http_status = 500
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(MarketError):
    """Input failed a field constraint. `fields` names the offending fields."""

    kind = "validation_error"
    http_status = 400
    default_message = "Invalid input"

    def __init__(self, message: Optional[str] = None, fields: Optional[List[str]] = None):
        self.fields = list(fields or [])
        if message is None and self.fields:
            message = "Invalid value for: " + ", ".join(self.fields)
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["fields"] = self.fields
        return body

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationError":
        fields = []
        for err in exc.errors():
            loc = list(err.get("loc", ()))
            if loc and loc[0] in _REQUEST_SOURCES:
                loc = loc[1:]
            name = ".".join(str(part) for part in loc)
            if name and name not in fields:
                fields.append(name)
        return cls(fields=fields)


class NotFound(MarketError):
    kind = "not_found"
    http_status = 404
    default_message = "Not found"


class Forbidden(MarketError):
    kind = "forbidden"
    http_status = 403
    default_message = "Forbidden"


class StoreUnavailable(MarketError):
    kind = "store_unavailable"
    http_status = 503
    default_message = "Storage is unavailable"
