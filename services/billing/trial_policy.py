"""Trial extension policy applied after every subscription update.

Switching the price of an active subscription through Stripe resets the
trial to "now". The rules below re-derive the trial window the customer is
owed and decide whether it has to be pushed back to Stripe. Rules are
evaluated in order and the first one that applies decides the outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Sequence, Tuple

from core.billing_constants import SECONDS_PER_DAY, SubscriptionStatus
from services.billing.records import PlanDetails

logger = logging.getLogger(__name__)


class TrialActionKind(str, Enum):
    REMEDIATE = "remediate"
    EXTEND_TRIAL = "extend_trial"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class TrialPolicyInput:
    status: Optional[str]
    trial_end: Optional[int]
    previous_trial_end: Optional[int]
    trial_used: bool
    trial_period_days: Optional[int]
    now: int

    @property
    def plan_trial_seconds(self) -> Optional[int]:
        if self.trial_period_days is None:
            return None
        return self.trial_period_days * SECONDS_PER_DAY

    @property
    def leftover_trial_seconds(self) -> int:
        if not self.previous_trial_end:
            return 0
        return self.previous_trial_end - self.now


@dataclass(frozen=True, slots=True)
class TrialDecision:
    kind: TrialActionKind
    rule: Optional[str] = None
    seconds: Optional[int] = None


@dataclass(frozen=True, slots=True)
class TrialRule:
    name: str
    applies: Callable[[TrialPolicyInput], bool]
    decide: Callable[[TrialPolicyInput], TrialDecision]


NO_ACTION = TrialDecision(kind=TrialActionKind.NONE)


def _is_unpaid(data: TrialPolicyInput) -> bool:
    return data.status == SubscriptionStatus.UNPAID.value


def _fresh_trial_applies(data: TrialPolicyInput) -> bool:
    return (
        data.status == SubscriptionStatus.ACTIVE.value
        and not data.trial_used
        and data.plan_trial_seconds is not None
        and data.trial_end is not None
    )


def _leftover_trial_applies(data: TrialPolicyInput) -> bool:
    return (
        data.status == SubscriptionStatus.ACTIVE.value
        and data.leftover_trial_seconds > 0
        and data.plan_trial_seconds is not None
    )


TRIAL_RULES: Tuple[TrialRule, ...] = (
    TrialRule(
        name="unpaid_remediation",
        applies=_is_unpaid,
        decide=lambda data: TrialDecision(kind=TrialActionKind.REMEDIATE, rule="unpaid_remediation"),
    ),
    TrialRule(
        name="fresh_trial",
        applies=_fresh_trial_applies,
        decide=lambda data: TrialDecision(
            kind=TrialActionKind.EXTEND_TRIAL,
            rule="fresh_trial",
            seconds=data.plan_trial_seconds,
        ),
    ),
    TrialRule(
        name="leftover_trial",
        applies=_leftover_trial_applies,
        decide=lambda data: TrialDecision(
            kind=TrialActionKind.EXTEND_TRIAL,
            rule="leftover_trial",
            seconds=min(data.plan_trial_seconds or 0, data.leftover_trial_seconds),
        ),
    ),
)


def evaluate_trial_policy(data: TrialPolicyInput, rules: Sequence[TrialRule] = TRIAL_RULES) -> TrialDecision:
    """Return the decision of the first rule that applies, or ``NO_ACTION``."""
    for rule in rules:
        if rule.applies(data):
            decision = rule.decide(data)
            logger.debug("Trial rule %s matched: %s", rule.name, decision)
            return decision
    return NO_ACTION


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def build_trial_policy_input(
    subscription: Mapping[str, Any],
    previous_attributes: Optional[Mapping[str, Any]],
    *,
    trial_used: bool,
    plan: PlanDetails,
    now: int,
) -> TrialPolicyInput:
    previous = previous_attributes or {}
    return TrialPolicyInput(
        status=subscription.get("status"),
        trial_end=_optional_int(subscription.get("trial_end")),
        previous_trial_end=_optional_int(previous.get("trial_end")),
        trial_used=trial_used,
        trial_period_days=plan.trial_period_days,
        now=now,
    )


class SubscriptionUpdater(Protocol):
    def update_subscription(self, subscription_id: str, **params: Any) -> Dict[str, Any]:
        ...


def apply_trial_extension(client: SubscriptionUpdater, subscription_id: str, seconds: int, *, now: int) -> Dict[str, Any]:
    """Push ``trial_end = now + seconds`` to Stripe, keeping the pause-on-missing-payment behaviour."""
    trial_end = now + seconds
    logger.info("Applying %s trial seconds to subscription %s (trial_end=%s)", seconds, subscription_id, trial_end)
    return client.update_subscription(
        subscription_id,
        proration_behavior="create_prorations",
        trial_end=trial_end,
        trial_settings={"end_behavior": {"missing_payment_method": "pause"}},
    )


__all__ = [
    "NO_ACTION",
    "TRIAL_RULES",
    "TrialActionKind",
    "TrialDecision",
    "TrialPolicyInput",
    "TrialRule",
    "apply_trial_extension",
    "build_trial_policy_input",
    "evaluate_trial_policy",
]
