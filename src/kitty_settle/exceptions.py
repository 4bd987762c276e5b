"""Custom exceptions for Kitty Settle."""

from typing import Any


class KittySettleError(Exception):
    """Base exception for all Kitty Settle errors."""

    pass


class ConfigurationError(KittySettleError):
    """Raised when configuration is invalid or missing."""

    pass


class InvalidInputError(KittySettleError):
    """Raised when a contribution or participation record is malformed."""

    def __init__(self, message: str, record: Any | None = None):
        self.record = record
        super().__init__(message)


class UnknownEntityError(InvalidInputError):
    """Raised when a record references a person or gift outside the kitty."""

    pass


class GroupTooLargeError(InvalidInputError):
    """Raised when a group exceeds the configured participant limit."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Group has {size} participants, the search is limited to {limit}"
        )


class InfeasibleError(KittySettleError):
    """Raised when no plan satisfies the hard constraints for any epsilon."""

    pass


class InfeasibleBoundError(KittySettleError):
    """Raised when the requested fairness bound cannot be met.

    Carries the best epsilon the group can actually reach so the caller can
    relax the bound and retry.
    """

    def __init__(self, achievable_epsilon: int, requested_epsilon: int):
        self.achievable_epsilon = achievable_epsilon
        self.requested_epsilon = requested_epsilon
        super().__init__(
            f"Requested epsilon {requested_epsilon} is unattainable; "
            f"the best achievable epsilon is {achievable_epsilon}"
        )


class ConstraintViolationError(KittySettleError):
    """Raised when a produced plan breaks a settlement rule."""

    def __init__(self, rule: str, detail: str):
        self.rule = rule
        self.detail = detail
        super().__init__(f"Plan violates {rule}: {detail}")
