# Overview: Tagged Ok/Err results shared by the sync pipeline and its collaborators.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union


# Error codes stored on failed operation log entries
BRANCH_FROZEN = "BRANCH_FROZEN"
VALIDATION_FAILED = "VALIDATION_FAILED"
DEPENDENCY_MISSING = "DEPENDENCY_MISSING"
CONFLICT = "CONFLICT"
NOT_IMPLEMENTED = "NOT_IMPLEMENTED"

# Audit outcomes
OUTCOME_SUCCESS = "SUCCESS"
OUTCOME_REJECTED = "REJECTED"
OUTCOME_FAILED = "FAILED"

# Audit denial reasons
DENIAL_VALIDATION_FAILED = "VALIDATION_FAILED"
DENIAL_BRANCH_FROZEN = "BRANCH_FROZEN"
DENIAL_DEPENDENCY_MISSING = "DEPENDENCY_MISSING"
DENIAL_POLICY_BLOCKED = "POLICY_BLOCKED"


@dataclass(frozen=True)
class Ok:
    value: Any = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """
    Expected, typed failure.

    outcome / denial_reason describe how the failure is audited. A code with
    no explicit denial reason is audited as a plain FAILED outcome.
    """
    code: str
    message: str
    outcome: str = OUTCOME_REJECTED
    denial_reason: Optional[str] = None
    details: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok, Err]


def validation_failed(message: str, **details) -> Err:
    return Err(VALIDATION_FAILED, message, OUTCOME_REJECTED, DENIAL_VALIDATION_FAILED, details)


def dependency_missing(message: str, **details) -> Err:
    return Err(DEPENDENCY_MISSING, message, OUTCOME_FAILED, DENIAL_DEPENDENCY_MISSING, details)


def conflict(message: str, **details) -> Err:
    return Err(CONFLICT, message, OUTCOME_FAILED, None, details)
