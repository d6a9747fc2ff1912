from __future__ import annotations


class FieldOpsError(Exception):
    """Base error for fieldops."""


class ConfigurationError(FieldOpsError):
    """Invalid RLS or resource wiring; raised at startup, never per request."""


class UnknownResourceError(ConfigurationError):
    """Resource type is not part of the resource catalog."""


class PolicyTableError(ConfigurationError):
    """Policy table failed validation."""


class RlsEnforcementError(FieldOpsError):
    """A row filter was required but the data layer did not apply it."""


class QueryValidationError(FieldOpsError):
    """List query or payload references unknown fields or malformed values."""
