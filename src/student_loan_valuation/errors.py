# Requires Python 3.12+
# Uses native type hints: list[x], tuple[x, y], X | None (PEP 585, PEP 604)
from __future__ import annotations

__version__ = "0.3.1"


# =============================================================================
# Error taxonomy
# =============================================================================
#
#   ValidationError   malformed or missing required input (dates, principal).
#                     Not recoverable inside the call that raised it.
#   DataUnavailable   a required reference table (risk curves) has not been
#                     loaded yet. The caller must defer the computation.
#
# Non-economic loans (zero balance, no remaining term, invalid basics) are
# not errors: valuation returns a "closed" or "unvalued" result instead.
# =============================================================================


class LoanValuationError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(LoanValuationError, ValueError):
    """Malformed or missing required input."""


class DataUnavailable(LoanValuationError, LookupError):
    """A required reference table has not been loaded."""
