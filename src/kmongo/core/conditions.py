"""Bootstrap condition ledger.

Conditions are keyed by (type, message) where the message carries the
replica set name. Once a condition is True the step it guards is never
run again for that replica set.
"""

from datetime import datetime, timezone

from kmongo.crd.base import CRDCondition
from kmongo.models.mongodb import CONDITION_FALSE, CONDITION_TRUE


def get_condition(conditions, cond_type, message):
    """(index, condition) for the key, or (-1, None)."""
    for i, cond in enumerate(conditions):
        if cond.type == cond_type and cond.message == message:
            return i, cond
    return -1, None


def exist_and_true(cond):
    return cond is not None and cond.status == CONDITION_TRUE


def exist_and_false(cond):
    return cond is not None and cond.status == CONDITION_FALSE


def check_condition(conditions, cond_type, message, checker=exist_and_true):
    _, cond = get_condition(conditions, cond_type, message)
    return checker(cond)


def update_condition(status, condition):
    """Append or replace the condition for its key, stamping the transition time."""
    condition.lastTransitionTime = datetime.now(timezone.utc)
    index, old = get_condition(status.conditions, condition.type, condition.message)
    if old is None:
        status.conditions.append(condition)
    else:
        status.conditions[index] = condition


def true_condition(cond_type, rs_name, reason=""):
    return CRDCondition(type=cond_type, status=CONDITION_TRUE, message=rs_name, reason=reason)
