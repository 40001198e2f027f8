"""Billing and analysis fault hierarchy.

Expected outcomes such as an exhausted quota are returned as values by the
services (see :mod:`ilyzlist.services.quota`); the classes below are true
faults. Each carries a ``user_message`` that is safe to show to end users,
while ``str(exc)`` holds the operator-facing detail.
"""
from __future__ import annotations

GENERIC_FAILURE = "Something went wrong on our side. Please try again later."


class BillingError(Exception):
    """Base class for billing and quota faults."""

    user_message: str = GENERIC_FAILURE
    retryable: bool = False


class PaymentProviderError(BillingError):
    """The billing provider was unreachable, timed out or rejected the call."""

    user_message = "Payment provider unavailable, please try again."
    retryable = True


class PlanNotConfigured(BillingError):
    """A plan has no billing-provider price configured."""


class UnknownPlan(BillingError):
    """A plan identifier outside the catalog was looked up."""

    def __init__(self, plan_id: object) -> None:
        super().__init__(f"Unknown plan: {plan_id!r}")
        self.plan_id = plan_id


class InvalidSignature(BillingError):
    """A webhook payload could not be authenticated."""

    user_message = "Invalid webhook"


class MalformedEvent(BillingError):
    """An authenticated webhook payload could not be parsed."""

    user_message = "Invalid webhook"


class UnresolvedUser(BillingError):
    """A billing event could not be attributed to exactly one profile."""


class ProfileNotFound(BillingError):
    """No billing profile exists for the requested user."""

    user_message = "No billing account found for this user."


class AnalysisEngineError(Exception):
    """The vision-language model call failed."""

    user_message = "Analysis failed, please try again."


__all__ = [
    "GENERIC_FAILURE",
    "BillingError",
    "PaymentProviderError",
    "PlanNotConfigured",
    "UnknownPlan",
    "InvalidSignature",
    "MalformedEvent",
    "UnresolvedUser",
    "ProfileNotFound",
    "AnalysisEngineError",
]
