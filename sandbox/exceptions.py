"""
Exceptions for the policy sandbox.

Numeric problems are clamped and illegal player actions are ignored, so
the only errors that escape the engine concern bad reference data.
"""


class SandboxError(Exception):
    """Base exception for all sandbox errors."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        """Convert exception to a dictionary for display or export."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


# Reference data errors

class CountryError(SandboxError):
    """Base class for country reference data errors."""
    pass


class UnknownCountryError(CountryError, LookupError):
    """Raised when a country id is not in the loaded reference data."""

    def __init__(self, country_id):
        super().__init__(
            f"Unknown country: {country_id!r}",
            {"country_id": country_id}
        )


class MalformedCountryError(CountryError, ValueError):
    """Raised when a country record is missing fields or has invalid values."""
    pass


# Persistence errors

class ExportError(SandboxError):
    """Raised when an export document cannot be written."""
    pass
