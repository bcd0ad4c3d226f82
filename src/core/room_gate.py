"""Room/subscription gate — pure business logic.

Maps subscription plans to room ceilings and decides whether a user may
create (or take ownership of) another room. While a user is in the billing
grace period their effective plan is "none" and their limit is 0: rooms they
already own stay reachable, but nothing new can be added.

No I/O: this module only transforms data.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

DEFAULT_GRACE_PERIOD_DAYS = 16


class SubscriptionPlan(Enum):
    NONE = "none"
    PLAN_1_ROOM = "com.zthreesolutions.tolerancetracker.room01"
    PLAN_2_ROOMS = "com.zthreesolutions.tolerancetracker.room02"
    PLAN_3_ROOMS = "com.zthreesolutions.tolerancetracker.room03"
    PLAN_4_ROOMS = "com.zthreesolutions.tolerancetracker.room04"
    PLAN_5_ROOMS = "com.zthreesolutions.tolerancetracker.room05"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def from_product_id(cls, product_id: str | None) -> SubscriptionPlan:
        """Unknown or missing product ids map to NONE."""
        try:
            return cls(product_id)
        except ValueError:
            return cls.NONE

    @property
    def room_limit(self) -> int:
        return _ROOM_LIMITS[self]

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def monthly_price(self) -> str:
        return _MONTHLY_PRICES[self]


_ROOM_LIMITS = {
    SubscriptionPlan.NONE: 0,
    SubscriptionPlan.PLAN_1_ROOM: 1,
    SubscriptionPlan.PLAN_2_ROOMS: 2,
    SubscriptionPlan.PLAN_3_ROOMS: 3,
    SubscriptionPlan.PLAN_4_ROOMS: 4,
    SubscriptionPlan.PLAN_5_ROOMS: 5,
    SubscriptionPlan.SUPER_ADMIN: 999,
}

_DISPLAY_NAMES = {
    SubscriptionPlan.NONE: "No Subscription",
    SubscriptionPlan.PLAN_1_ROOM: "1 Room Plan",
    SubscriptionPlan.PLAN_2_ROOMS: "2 Room Plan",
    SubscriptionPlan.PLAN_3_ROOMS: "3 Room Plan",
    SubscriptionPlan.PLAN_4_ROOMS: "4 Room Plan",
    SubscriptionPlan.PLAN_5_ROOMS: "5 Room Plan",
    SubscriptionPlan.SUPER_ADMIN: "Super Admin",
}

_MONTHLY_PRICES = {
    SubscriptionPlan.NONE: "$0",
    SubscriptionPlan.PLAN_1_ROOM: "$9.99",
    SubscriptionPlan.PLAN_2_ROOMS: "$19.98",
    SubscriptionPlan.PLAN_3_ROOMS: "$29.97",
    SubscriptionPlan.PLAN_4_ROOMS: "$39.96",
    SubscriptionPlan.PLAN_5_ROOMS: "$49.95",
    SubscriptionPlan.SUPER_ADMIN: "$0",
}


@dataclass
class RoomGateDecision:
    """Whether another room may be created or accepted, and why."""

    allowed: bool
    room_limit: int
    owned_rooms: int
    plan: SubscriptionPlan


def effective_plan(plan_id: str | None, in_grace_period: bool) -> SubscriptionPlan:
    if in_grace_period:
        return SubscriptionPlan.NONE
    return SubscriptionPlan.from_product_id(plan_id)


def effective_room_limit(plan_id: str | None, in_grace_period: bool) -> int:
    return effective_plan(plan_id, in_grace_period).room_limit


def evaluate_room_gate(
    plan_id: str | None, owned_rooms: int, in_grace_period: bool,
) -> RoomGateDecision:
    """Decide if one more room fits under the user's effective plan."""
    plan = effective_plan(plan_id, in_grace_period)
    limit = plan.room_limit
    return RoomGateDecision(
        allowed=limit > 0 and owned_rooms < limit,
        room_limit=limit,
        owned_rooms=owned_rooms,
        plan=plan,
    )


def grace_period_end(
    cancelled_at: datetime, days: int = DEFAULT_GRACE_PERIOD_DAYS,
) -> datetime:
    return cancelled_at + timedelta(days=days)


def is_in_grace_period(flag: bool, end: datetime | None, now: datetime) -> bool:
    """A stored grace flag only counts while its end date is still ahead."""
    return flag and end is not None and end > now


def check_downgrade(new_plan_id: str | None, owned_rooms: int) -> str | None:
    """Return an error message if switching plans would strand owned rooms."""
    plan = SubscriptionPlan.from_product_id(new_plan_id)
    if plan.room_limit >= owned_rooms:
        return None
    to_delete = owned_rooms - plan.room_limit
    plural = "s" if to_delete > 1 else ""
    return (
        f"You currently own {owned_rooms} rooms but the {plan.display_name} "
        f"only allows {plan.room_limit}. Please delete {to_delete} room{plural} "
        f"before downgrading."
    )
