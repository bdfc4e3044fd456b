"""Rule policy: which containment transitions are reportable."""

from __future__ import annotations

from enum import Enum

from monitor.geofence import RuleType


class Transition(Enum):
    ENTER = "enter"
    EXIT = "exit"


class Severity(Enum):
    INFO = "info"            # STANDARD fences, both directions
    VIOLATION = "violation"  # FORBIDDEN enter, STAY_IN exit


def classify_transition(
    rule_type: RuleType,
    was_inside: bool,
    is_inside: bool,
) -> Transition | None:
    """Map a containment change to a reportable transition.

    FORBIDDEN reports entering, STAY_IN reports leaving and STANDARD
    reports both. No change in containment is never reportable.
    """
    if was_inside == is_inside:
        return None
    transition = Transition.ENTER if is_inside else Transition.EXIT

    if rule_type is RuleType.FORBIDDEN:
        return transition if transition is Transition.ENTER else None
    if rule_type is RuleType.STAY_IN:
        return transition if transition is Transition.EXIT else None
    return transition


def severity_for(rule_type: RuleType) -> Severity:
    return Severity.INFO if rule_type is RuleType.STANDARD else Severity.VIOLATION


def alert_type(rule_type: RuleType, transition: Transition) -> str:
    """Item-store ``alert_type`` value, e.g. ``violation_enter`` or ``exit``."""
    if severity_for(rule_type) is Severity.VIOLATION:
        return f"violation_{transition.value}"
    return transition.value
