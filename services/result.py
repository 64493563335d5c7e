import logging
from dataclasses import dataclass, field
from typing import Any

from services.errors import LedgerError

logger = logging.getLogger(__name__)


@dataclass
class Result:
    """Outcome of a ledger call: a value, or an error kind/code and message."""

    ok: bool
    value: Any = None
    error_kind: str | None = None
    error_code: str | None = None
    message: str = ""
    context: dict = field(default_factory=dict)

    @classmethod
    def success(cls, value=None):
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, exc: LedgerError):
        return cls(
            ok=False,
            error_kind=exc.kind,
            error_code=exc.code,
            message=exc.message,
            context=dict(exc.context),
        )


def call(operation, *args, **kwargs) -> Result:
    """Run a ledger operation and fold its LedgerError into a Result.

    Integrity faults are still logged loudly; anything that is not a
    LedgerError (bugs, lost database) propagates unchanged.
    """
    try:
        return Result.success(operation(*args, **kwargs))
    except LedgerError as exc:
        if exc.kind == "IntegrityFault":
            logger.critical("%s failed with integrity fault %s: %s", operation.__name__, exc.code, exc.message)
        elif exc.kind == "PolicyViolation":
            logger.warning("%s rejected: %s", operation.__name__, exc.message)
        return Result.failure(exc)
