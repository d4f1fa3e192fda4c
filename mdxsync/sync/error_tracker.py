"""
Error taxonomy and per-run error tracking for the sync engine.

Exceptions carry the path (or other identifier) they relate to and an
optional recovery suggestion. Item-level failures are converted into
SyncError entries by the orchestrator and never unwind past a batch;
only credential failures and an unreachable store abort a run.

Hierarchy:
    SyncException
    ├── ConfigurationError
    ├── AuthError
    ├── SourceFetchError
    │   ├── NotFoundError
    │   └── RateLimitedError
    ├── ParseError
    └── StoreError
        └── StoreUnavailableError
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any


class ErrorSeverity(Enum):
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


_SEVERITY_ORDER = {
    ErrorSeverity.WARNING: 1,
    ErrorSeverity.ERROR: 2,
    ErrorSeverity.CRITICAL: 3,
}


class ErrorKind(str, Enum):
    """Classification of a failed work item, as reported in sync summaries."""
    FETCH = "fetch"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    PARSE = "parse"
    STORE = "store"
    INTERNAL = "internal"


@dataclass
class SyncError:
    """
    A single problem recorded during a sync run.
    """
    message: str
    source_id: Optional[str] = None
    severity: ErrorSeverity = ErrorSeverity.ERROR
    details: Dict[str, Any] = field(default_factory=dict)
    recovery_suggestion: Optional[str] = None

    def to_dict(self):
        return {
            "message": self.message,
            "source_id": self.source_id,
            "severity": self.severity.value,
            "details": self.details,
            "recovery_suggestion": self.recovery_suggestion
        }


class SyncException(Exception):
    """Base class for all sync exceptions."""
    kind: Optional[ErrorKind] = None

    def __init__(self, message: str, source_id: Optional[str] = None, recovery_suggestion: Optional[str] = None):
        self.message = message
        self.source_id = source_id
        self.recovery_suggestion = recovery_suggestion
        super().__init__(self.message)


class ConfigurationError(SyncException):
    """Invalid or incomplete sync configuration (missing token, secret, repository)."""
    pass


class AuthError(SyncException):
    """Rejected remote credential or invalid webhook signature. Never retried."""
    pass


class SourceFetchError(SyncException):
    """Failure to fetch a listing or a file from the remote repository."""
    kind = ErrorKind.FETCH


class NotFoundError(SourceFetchError):
    """The remote path does not exist (deleted, renamed, or wrong branch)."""
    kind = ErrorKind.NOT_FOUND


class RateLimitedError(SourceFetchError):
    """Rate limit still in force after the client exhausted its waits."""
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, source_id: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(message, source_id, recovery_suggestion="Retry the sync after the rate limit window resets")
        self.retry_after = retry_after


class ParseError(SyncException):
    """Malformed front-matter block or invalid settings JSON."""
    kind = ErrorKind.PARSE


class StoreError(SyncException):
    """An upsert failed for a single record."""
    kind = ErrorKind.STORE


class StoreUnavailableError(StoreError):
    """The content store cannot be reached at all; remaining work is abandoned."""
    pass


class ErrorTracker:
    """
    Aggregates errors reported during one sync run.
    """
    def __init__(self):
        self.errors: List[SyncError] = []

    def report(self, message: str, source_id: Optional[str] = None, severity: ErrorSeverity = ErrorSeverity.ERROR, details: Optional[Dict[str, Any]] = None, recovery_suggestion: Optional[str] = None):
        self.errors.append(SyncError(
            message=message,
            source_id=source_id,
            severity=severity,
            details=details or {},
            recovery_suggestion=recovery_suggestion
        ))

    def report_exception(self, exc: SyncException, severity: ErrorSeverity = ErrorSeverity.ERROR):
        """
        Record a SyncException, keeping its type name in the details.
        """
        self.report(
            message=exc.message,
            source_id=exc.source_id,
            severity=severity,
            details={"error_type": type(exc).__name__},
            recovery_suggestion=exc.recovery_suggestion
        )

    def get_errors(self, min_severity: ErrorSeverity = ErrorSeverity.WARNING) -> List[SyncError]:
        min_level = _SEVERITY_ORDER[min_severity]
        return [e for e in self.errors if _SEVERITY_ORDER[e.severity] >= min_level]

    def has_critical_errors(self) -> bool:
        return any(e.severity == ErrorSeverity.CRITICAL for e in self.errors)

    def clear(self):
        self.errors = []

    def generate_report(self) -> Dict[str, Any]:
        """
        Summarize all recorded errors, grouped by severity.
        """
        return {
            "total_errors": len(self.errors),
            "critical_count": len([e for e in self.errors if e.severity == ErrorSeverity.CRITICAL]),
            "error_count": len([e for e in self.errors if e.severity == ErrorSeverity.ERROR]),
            "warning_count": len([e for e in self.errors if e.severity == ErrorSeverity.WARNING]),
            "errors": [e.to_dict() for e in self.errors],
        }
