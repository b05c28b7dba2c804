"""Exception types raised by the location-input engine."""
from __future__ import annotations

from enum import Enum
from typing import Optional


class CampusRideError(Exception):
    """Base class for engine errors."""


class SourceUnavailable(CampusRideError):
    """One suggestion source failed; its contribution is dropped."""

    def __init__(self, source: str, cause: Optional[BaseException] = None) -> None:
        self.source = source
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{source} unavailable{detail}")


class ResolutionFailure(str, Enum):
    NO_COORDINATE_FOUND = "no_coordinate_found"
    NETWORK_FAILURE = "network_failure"
    EMPTY_QUERY = "empty_query"


_FAILURE_MESSAGES = {
    ResolutionFailure.NO_COORDINATE_FOUND: (
        "Không thể xác định tọa độ cho địa chỉ đã nhập. "
        "Vui lòng nhập địa chỉ cụ thể hơn hoặc chọn từ danh sách gợi ý."
    ),
    ResolutionFailure.NETWORK_FAILURE: (
        "Không thể kết nối dịch vụ bản đồ. Vui lòng thử lại."
    ),
    ResolutionFailure.EMPTY_QUERY: "Vui lòng nhập điểm đón và điểm đến",
}


class ResolutionError(CampusRideError):
    """A suggestion or free-text address could not be turned into a coordinate."""

    def __init__(
        self,
        reason: ResolutionFailure,
        query: str = "",
        cause: Optional[BaseException] = None,
    ) -> None:
        self.reason = reason
        self.query = query
        self.cause = cause
        super().__init__(f"{reason.value}: {query!r}")

    @property
    def user_message(self) -> str:
        return _FAILURE_MESSAGES[self.reason]


class StaleSelection(CampusRideError):
    """A resolution finished after its input field changed or was closed."""


class QuoteError(CampusRideError):
    """The backend refused or failed a route/quote request."""


__all__ = [
    "CampusRideError",
    "QuoteError",
    "ResolutionError",
    "ResolutionFailure",
    "SourceUnavailable",
    "StaleSelection",
]
