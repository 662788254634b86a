"""
Venue Safety - Exceptions.

============================================================
CUSTOM EXCEPTIONS
============================================================

SafetyAssessmentError (base)
├── DataSourceError         signal / restriction / user fetch failed
├── CacheStoreError         persistent cache tier read/write failed
├── ScoringError            pipeline computation failed
├── WeightRegistryError     weight load or update failed
│   └── WeightValidationError
└── BulkRecalculationError  stale-key enumeration failed

============================================================
FAILURE SAFETY
============================================================

- Callers facing users must never see these: the service
  facade converts any failure into a conservative DANGER
  assessment
- The bulk scheduler records them per item and continues
- Administrative weight updates propagate them

============================================================
"""

from typing import Any, Dict, Optional


class SafetyAssessmentError(Exception):
    """
    Base exception for safety assessment errors.

    All engine exceptions inherit from this class.
    """

    def __init__(
        self,
        message: str,
        venue_id: Optional[str] = None,
        restriction_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            venue_id: Venue affected, if any
            restriction_id: Restriction affected, if any
            details: Additional error details
        """
        self.message = message
        self.venue_id = venue_id
        self.restriction_id = restriction_id
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message."""
        if self.venue_id:
            scope = f"{self.venue_id}/{self.restriction_id or 'overall'}"
            return f"[{scope}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "venue_id": self.venue_id,
            "restriction_id": self.restriction_id,
            "details": self.details,
        }


class DataSourceError(SafetyAssessmentError):
    """
    Raised when the external store cannot provide signals.

    Transient by nature; the next recomputation may succeed.
    """

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        venue_id: Optional[str] = None,
        restriction_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = dict(details or {})
        if table:
            details["table"] = table
        self.table = table
        super().__init__(message, venue_id, restriction_id, details)


class CacheStoreError(SafetyAssessmentError):
    """Raised when the persistent cache tier cannot be read or written."""
    pass


class ScoringError(SafetyAssessmentError):
    """Raised when the scoring pipeline cannot produce a result."""
    pass


class WeightRegistryError(SafetyAssessmentError):
    """Raised when scoring weights cannot be loaded or updated."""
    pass


class WeightValidationError(WeightRegistryError):
    """
    Raised for an invalid weight update.

    Unknown categories, out-of-range base weights and unknown
    severities in the multiplier table are all rejected.
    """

    def __init__(self, message: str, category: Optional[str] = None) -> None:
        super().__init__(message, details={"category": category} if category else None)
        self.category = category


class BulkRecalculationError(SafetyAssessmentError):
    """Raised when a sweep cannot determine which keys are stale."""
    pass
