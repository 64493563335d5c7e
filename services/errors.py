"""Ledger error taxonomy.

Every failure a ledger operation can report is a ``LedgerError``. The
``kind`` names the family (how a caller should react), the class name is
the concrete error code.
"""


class LedgerError(Exception):
    kind = "LedgerError"
    retryable = False

    def __init__(self, message="", **context):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.context = context

    @property
    def code(self):
        return self.__class__.__name__


# =========================
# Families
# =========================
class ValidationError(LedgerError):
    """Malformed input; never retried."""

    kind = "ValidationError"


class ConflictError(LedgerError):
    """State moved underneath the caller; re-fetch and retry with corrected intent."""

    kind = "ConflictError"


class PolicyViolation(LedgerError):
    """Business rule breach; surfaced to the end user verbatim."""

    kind = "PolicyViolation"


class ConcurrencyError(LedgerError):
    kind = "ConcurrencyError"
    retryable = True


class IntegrityFault(LedgerError):
    """Fatal. The transaction is rolled back and an operator must look."""

    kind = "IntegrityFault"


# =========================
# Validation
# =========================
class MissingField(ValidationError):
    pass


class UnknownReference(ValidationError):
    pass


class StaffNotFound(ValidationError):
    pass


class ApplicationNotFound(ValidationError):
    pass


class QualificationNotFound(ValidationError):
    pass


class InvalidDateOrder(ValidationError):
    pass


class SpansYearBoundary(ValidationError):
    pass


class InvalidStatusTransition(ValidationError):
    pass


class InvalidDecision(ValidationError):
    pass


# =========================
# Conflict
# =========================
class DuplicateIdentity(ConflictError):
    pass


class DuplicateEntitlement(ConflictError):
    pass


class DuplicateQualification(ConflictError):
    pass


class AlreadyDecided(ConflictError):
    pass


class CycleDetected(ConflictError):
    pass


class OverlappingLeave(ConflictError):
    pass


# =========================
# Policy
# =========================
class InsufficientBalance(PolicyViolation):
    pass


class NoticeViolation(PolicyViolation):
    pass


class ConsecutiveLimitExceeded(PolicyViolation):
    pass


class EntitlementNotFound(PolicyViolation):
    pass


class StaffNotActive(PolicyViolation):
    pass


class PermissionDenied(PolicyViolation):
    pass


# =========================
# Concurrency
# =========================
class LockTimeout(ConcurrencyError):
    pass


class StaleVersion(ConcurrencyError):
    pass


# =========================
# Integrity
# =========================
class AuditWriteFailed(IntegrityFault):
    pass


class AuditCountMismatch(IntegrityFault):
    pass


class BalanceInvariantBroken(IntegrityFault):
    pass
