"""
ScholarStream Backend - Authorization Policy
==============================================

What:  Pure decision function ``authorize(actor, application, action)``.
Who:   Called by the lifecycle, the payment reconciler and the route layer.
How:   No I/O, no mutation. Existence is checked by the caller first; this
       module only answers "may this actor do this to this application?".

Rules (Admin ⊇ Moderator ⊇ Student-self):

    Action        Student            Moderator      Admin
    ───────────   ────────────────   ────────────   ─────
    VIEW_ONE      owner              yes            yes
    VIEW_OWN      yes                yes            yes
    VIEW_ALL      no                 yes            yes
    CREATE        yes                yes            yes
    SET_STATUS    no                 yes            yes
    SET_FEEDBACK  no                 yes            yes
    SET_PAYMENT   owner              yes            yes
    DELETE        owner + pending    no             yes

A denial carries a reason. ``WRONG_STATE`` means "you own it, but not in this
state" and is reported as a business-rule violation (400), not as 403.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from scholarstream.exceptions import ForbiddenError, ValidationError
from scholarstream.models.application import Application, ApplicationStatus
from scholarstream.models.user import Role
from scholarstream.services.identity import Actor


class Action(str, enum.Enum):
    VIEW_ONE = "view_one"
    VIEW_OWN = "view_own"
    VIEW_ALL = "view_all"
    CREATE = "create"
    SET_STATUS = "set_status"
    SET_FEEDBACK = "set_feedback"
    SET_PAYMENT = "set_payment"
    DELETE = "delete"


class DenyReason(str, enum.Enum):
    INSUFFICIENT_ROLE = "insufficient_role"
    NOT_OWNER = "not_owner"
    WRONG_STATE = "wrong_state"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def _deny(reason: DenyReason) -> Decision:
    return Decision(False, reason)


# Actions decided by role alone
_ROLE_GATED = {
    Action.VIEW_ALL: Role.MODERATOR,
    Action.SET_STATUS: Role.MODERATOR,
    Action.SET_FEEDBACK: Role.MODERATOR,
    Action.VIEW_OWN: Role.STUDENT,
    Action.CREATE: Role.STUDENT,
}

# Actions open to the owner or to anyone at this role
_OWNER_OR_ROLE = {
    Action.VIEW_ONE: Role.MODERATOR,
    Action.SET_PAYMENT: Role.MODERATOR,
}


def is_owner(actor: Actor, application: Application) -> bool:
    return application.user_id == actor.id


def authorize(actor: Actor, application: Optional[Application], action: Action) -> Decision:
    """
    Decide whether ``actor`` may perform ``action`` on ``application``.

    ``application`` may be None only for actions that do not target a single
    record (VIEW_ALL, VIEW_OWN, CREATE).
    """
    if action in _ROLE_GATED:
        if actor.role.at_least(_ROLE_GATED[action]):
            return ALLOW
        return _deny(DenyReason.INSUFFICIENT_ROLE)

    if application is None:
        raise ValueError(f"Action '{action.value}' requires an application")

    if action in _OWNER_OR_ROLE:
        if is_owner(actor, application) or actor.role.at_least(_OWNER_OR_ROLE[action]):
            return ALLOW
        return _deny(DenyReason.NOT_OWNER)

    if action is Action.DELETE:
        if actor.role is Role.ADMIN:
            return ALLOW
        # Moderators never delete, not even applications they own
        if actor.role is Role.MODERATOR:
            return _deny(DenyReason.INSUFFICIENT_ROLE)
        if not is_owner(actor, application):
            return _deny(DenyReason.NOT_OWNER)
        if application.application_status is not ApplicationStatus.PENDING:
            return _deny(DenyReason.WRONG_STATE)
        return ALLOW

    raise ValueError(f"Unknown action: {action}")


def require(actor: Actor, application: Optional[Application], action: Action) -> None:
    """
    Raise unless ``authorize`` allows the action.

    Raises:
        ValidationError: owner acting on an application in the wrong state
        ForbiddenError:  any other denial
    """
    decision = authorize(actor, application, action)
    if decision:
        return
    context = {"action": action.value, "reason": decision.reason.value, "actor_id": str(actor.id)}
    if decision.reason is DenyReason.WRONG_STATE:
        raise ValidationError(
            message="Only pending applications can be deleted",
            field="applicationStatus",
            context=context,
        )
    if decision.reason is DenyReason.INSUFFICIENT_ROLE:
        required = "Admin" if action is Action.DELETE else "Moderator"
        raise ForbiddenError(message=f"{required} access required", context=context)
    raise ForbiddenError(context=context)
