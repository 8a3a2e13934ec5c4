"""Appointment state machine.

A pure decision table: ``(current status, action, role) -> next status``.
It knows nothing about storage or time; lockout windows are checked by
:mod:`careslot.core.policy` and writes are applied by the booking service.
"""

from dataclasses import dataclass
from enum import Enum

from careslot.core.exceptions import InvalidTransitionError
from careslot.schemas.appointments import ActorRole, AppointmentStatus


class AppointmentAction(str, Enum):
    """Operations that act on an existing appointment."""

    UPDATE = "update"
    CONFIRM = "confirm"
    START = "start"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"
    COMPLETE = "complete"
    MARK_MISSED = "mark_missed"


# Statuses that count against a provider's availability
OCCUPYING_STATUSES = frozenset(
    {
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.IN_PROGRESS,
    }
)

TERMINAL_STATUSES = frozenset(
    {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.MISSED,
        AppointmentStatus.RESCHEDULED,
    }
)

# Status given to the replacement record created by a reschedule
REPLACEMENT_STATUS = AppointmentStatus.SCHEDULED


@dataclass(frozen=True)
class TransitionRule:
    """Where an action may start, where it leads, and who may trigger it.

    ``target`` of None keeps the current status.
    ``party_roles`` must additionally be a party to the appointment: the
    seeker for patients, the assigned provider for doctors.
    """

    sources: frozenset[AppointmentStatus]
    target: AppointmentStatus | None
    roles: frozenset[ActorRole]
    party_roles: frozenset[ActorRole]


_PARTIES = frozenset({ActorRole.PATIENT, ActorRole.DOCTOR})
_STAFF = frozenset({ActorRole.DOCTOR, ActorRole.ADMIN})
_BOOKABLE = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})

TRANSITIONS: dict[AppointmentAction, TransitionRule] = {
    AppointmentAction.UPDATE: TransitionRule(
        sources=OCCUPYING_STATUSES,
        target=None,
        roles=_PARTIES | {ActorRole.ADMIN},
        party_roles=_PARTIES,
    ),
    AppointmentAction.CONFIRM: TransitionRule(
        sources=frozenset({AppointmentStatus.SCHEDULED}),
        target=AppointmentStatus.CONFIRMED,
        roles=_STAFF,
        party_roles=frozenset({ActorRole.DOCTOR}),
    ),
    AppointmentAction.START: TransitionRule(
        sources=frozenset({AppointmentStatus.CONFIRMED}),
        target=AppointmentStatus.IN_PROGRESS,
        roles=frozenset({ActorRole.DOCTOR}),
        party_roles=frozenset({ActorRole.DOCTOR}),
    ),
    AppointmentAction.CANCEL: TransitionRule(
        sources=_BOOKABLE,
        target=AppointmentStatus.CANCELLED,
        roles=_PARTIES | {ActorRole.ADMIN},
        party_roles=_PARTIES,
    ),
    AppointmentAction.RESCHEDULE: TransitionRule(
        sources=_BOOKABLE,
        target=AppointmentStatus.RESCHEDULED,
        roles=_PARTIES | {ActorRole.ADMIN},
        party_roles=_PARTIES,
    ),
    AppointmentAction.COMPLETE: TransitionRule(
        sources=frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.IN_PROGRESS}),
        target=AppointmentStatus.COMPLETED,
        roles=frozenset({ActorRole.DOCTOR}),
        party_roles=frozenset({ActorRole.DOCTOR}),
    ),
    AppointmentAction.MARK_MISSED: TransitionRule(
        sources=OCCUPYING_STATUSES,
        target=AppointmentStatus.MISSED,
        roles=_STAFF | {ActorRole.SYSTEM},
        party_roles=frozenset({ActorRole.DOCTOR}),
    ),
}


def initial_status(is_emergency: bool) -> AppointmentStatus:
    """Status of a freshly created appointment."""
    return AppointmentStatus.CONFIRMED if is_emergency else AppointmentStatus.SCHEDULED


def is_occupying(status: AppointmentStatus | str) -> bool:
    return AppointmentStatus(status) in OCCUPYING_STATUSES


def is_terminal(status: AppointmentStatus | str) -> bool:
    return AppointmentStatus(status) in TERMINAL_STATUSES


def transition(
    current: AppointmentStatus | str,
    action: AppointmentAction,
    role: ActorRole,
    *,
    is_party: bool,
) -> AppointmentStatus:
    """
    Decide the status an appointment moves to.

    Args:
        current: Current appointment status
        action: Requested action
        role: Role of the caller
        is_party: Whether the caller is the seeker (patient) or the
            assigned provider (doctor) of this appointment

    Returns:
        The next status

    Raises:
        InvalidTransitionError: If the action is not legal from ``current``
            or not permitted for the caller
    """
    current = AppointmentStatus(current)
    rule = TRANSITIONS[action]

    if is_terminal(current):
        raise InvalidTransitionError(
            f"Cannot {action.value} an appointment that is already {current.value}"
        )

    if current not in rule.sources:
        raise InvalidTransitionError(
            f"Cannot {action.value} an appointment in status {current.value}"
        )

    if role not in rule.roles:
        raise InvalidTransitionError(f"Role {role.value} may not {action.value} an appointment")

    if role in rule.party_roles and not is_party:
        if role == ActorRole.DOCTOR:
            raise InvalidTransitionError(
                f"Only the assigned provider may {action.value} this appointment"
            )
        raise InvalidTransitionError(f"Only the booking patient may {action.value} this appointment")

    return rule.target if rule.target is not None else current

