# Overview: Subscription tiers, plan limits and feature gates.

"""
Subscription plans.

Each store runs on one tier. The tier caps how many locations, users and
products the store may hold and which features it can use. The owning
user's subscription record is authoritative; a store with no subscription
falls back to the free tier.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import PlanLimitError

TIER_FREE = "free"
TIER_BASIC = "basic"
TIER_PREMIUM = "premium"
TIER_ENTERPRISE = "enterprise"

SUBSCRIPTION_STATUSES = {"active", "inactive", "trial", "cancelled"}


@dataclass(frozen=True)
class Plan:
    tier: str
    max_locations: int
    max_users: int
    max_products: int
    features: frozenset[str]

    def to_dict(self) -> dict:
        return {
            "tier": self.tier,
            "max_locations": self.max_locations,
            "max_users": self.max_users,
            "max_products": self.max_products,
            "features": sorted(self.features),
        }


_BASE_FEATURES = frozenset({"basic_pos", "basic_inventory", "basic_reports"})
_BASIC_FEATURES = _BASE_FEATURES | {"basic_customers"}
_PREMIUM_FEATURES = _BASIC_FEATURES | {
    "advanced_pos",
    "advanced_inventory",
    "advanced_reports",
    "advanced_customers",
    "analytics",
    "multi_location",
}
_ENTERPRISE_FEATURES = _PREMIUM_FEATURES | {"api_access", "custom_integrations"}

PLANS: dict[str, Plan] = {
    TIER_FREE: Plan(TIER_FREE, 1, 2, 100, _BASE_FEATURES),
    TIER_BASIC: Plan(TIER_BASIC, 1, 5, 1000, frozenset(_BASIC_FEATURES)),
    TIER_PREMIUM: Plan(TIER_PREMIUM, 3, 15, 10000, frozenset(_PREMIUM_FEATURES)),
    TIER_ENTERPRISE: Plan(TIER_ENTERPRISE, 10, 50, 100000, frozenset(_ENTERPRISE_FEATURES)),
}

_LIMIT_FIELDS = {
    "locations": "max_locations",
    "users": "max_users",
    "products": "max_products",
}


def get_plan(tier: str | None) -> Plan:
    return PLANS.get(tier or TIER_FREE, PLANS[TIER_FREE])


def plan_for_store(adapter, store_id: str) -> Plan:
    """Resolve the plan from the store's subscription record (free when none)."""
    subscription = adapter.get_subscription_by_store(store_id)
    if not subscription or subscription.get("status") in {"inactive", "cancelled"}:
        return PLANS[TIER_FREE]
    return get_plan(subscription.get("tier"))


def has_feature(plan: Plan, feature: str) -> bool:
    return feature in plan.features


def check_limit(plan: Plan, limit: str, current_count: int) -> None:
    """
    Raise PlanLimitError if adding one more item would exceed the plan.

    `limit` is one of "locations", "users", "products".
    """
    if limit not in _LIMIT_FIELDS:
        raise ValueError(f"Unknown plan limit: {limit}")
    allowed = getattr(plan, _LIMIT_FIELDS[limit])
    if current_count >= allowed:
        raise PlanLimitError(
            f"The {plan.tier} plan allows at most {allowed} {limit}",
            limit=limit,
            allowed=allowed,
            tier=plan.tier,
        )


def store_limits(plan: Plan) -> dict:
    """Denormalized limits written onto the store record."""
    return {
        "max_locations": plan.max_locations,
        "max_users": plan.max_users,
        "max_products": plan.max_products,
    }
