"""Location input engine for campus ride booking."""

# Re-export the value types and errors most callers need. Clients that pull
# in httpx, openrouteservice or folium are imported from their own modules.
from .errors import (
    CampusRideError,
    QuoteError,
    ResolutionError,
    ResolutionFailure,
    SourceUnavailable,
    StaleSelection,
)
from .geo import Address, GeoPoint
from .models import (
    CampusAnchor,
    CurrentLocationSuggestion,
    PoiLocation,
    PoiSuggestion,
    RemoteSuggestion,
    ResolvedLocation,
    Suggestion,
)

__all__ = [
    "Address",
    "CampusAnchor",
    "CampusRideError",
    "CurrentLocationSuggestion",
    "GeoPoint",
    "PoiLocation",
    "PoiSuggestion",
    "QuoteError",
    "RemoteSuggestion",
    "ResolutionError",
    "ResolutionFailure",
    "ResolvedLocation",
    "SourceUnavailable",
    "StaleSelection",
    "Suggestion",
]
