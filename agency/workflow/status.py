"""
Status transition policy for budgets and projects.

Budget and project statuses are closed enums. Every status change the
workflow performs goes through ``apply_budget_event`` /
``apply_project_event``, which consult an explicit table of
``event -> (allowed sources, target)`` and raise
``InvalidTransitionError`` for anything else. Nothing moves backwards.
"""

from enum import Enum

from agency.workflow.errors import InvalidInputError, InvalidTransitionError


class BudgetStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    ACCEPTED = "accepted"
    CONTRACT_SENT = "contract_sent"
    CONTRACT_SIGNED = "contract_signed"
    DOWN_PAYMENT_SENT = "down_payment_sent"
    DOWN_PAYMENT_PAID = "down_payment_paid"
    FINAL_PAYMENT_SENT = "final_payment_sent"
    FINAL_PAYMENT_PAID = "final_payment_paid"
    COMPLETED = "completed"
    REJECTED = "rejected"


class ProjectStatus(str, Enum):
    PLANNING = "planning"
    DEVELOPMENT_20 = "development_20"
    DEVELOPMENT_50 = "development_50"
    DEVELOPMENT_70 = "development_70"
    DEVELOPMENT_100 = "development_100"
    WAITING_FINAL_PAYMENT = "waiting_final_payment"
    COMPLETED = "completed"


class PaymentType(str, Enum):
    DOWN_PAYMENT = "down_payment"
    FINAL_PAYMENT = "final_payment"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class BudgetEvent(str, Enum):
    PROPOSAL_SENT = "proposal_sent"
    CLIENT_APPROVED = "client_approved"
    CLIENT_REJECTED = "client_rejected"
    CONTRACT_SENT = "contract_sent"
    CONTRACT_SIGNED = "contract_signed"
    DOWN_PAYMENT_REQUESTED = "down_payment_requested"
    DOWN_PAYMENT_CONFIRMED = "down_payment_confirmed"
    FINAL_PAYMENT_REQUESTED = "final_payment_requested"
    FINAL_PAYMENT_CONFIRMED = "final_payment_confirmed"


class ProjectEvent(str, Enum):
    PROGRESS_REPORTED = "progress_reported"
    FINAL_PAYMENT_REQUESTED = "final_payment_requested"
    FINAL_PAYMENT_CONFIRMED = "final_payment_confirmed"


# Forward order of the budget lifecycle; REJECTED sits outside it.
BUDGET_FLOW: tuple[BudgetStatus, ...] = (
    BudgetStatus.PENDING,
    BudgetStatus.SENT,
    BudgetStatus.ACCEPTED,
    BudgetStatus.CONTRACT_SENT,
    BudgetStatus.CONTRACT_SIGNED,
    BudgetStatus.DOWN_PAYMENT_SENT,
    BudgetStatus.DOWN_PAYMENT_PAID,
    BudgetStatus.FINAL_PAYMENT_SENT,
    BudgetStatus.FINAL_PAYMENT_PAID,
    BudgetStatus.COMPLETED,
)

_BEFORE_DOWN_PAYMENT = frozenset({
    BudgetStatus.ACCEPTED,
    BudgetStatus.CONTRACT_SENT,
    BudgetStatus.CONTRACT_SIGNED,
    BudgetStatus.DOWN_PAYMENT_SENT,
})

BUDGET_TRANSITIONS: dict[BudgetEvent, tuple[frozenset[BudgetStatus], BudgetStatus]] = {
    BudgetEvent.PROPOSAL_SENT: (
        frozenset({BudgetStatus.PENDING, BudgetStatus.SENT}),
        BudgetStatus.SENT,
    ),
    BudgetEvent.CLIENT_APPROVED: (
        frozenset({BudgetStatus.PENDING, BudgetStatus.SENT}),
        BudgetStatus.ACCEPTED,
    ),
    BudgetEvent.CLIENT_REJECTED: (
        frozenset({BudgetStatus.PENDING, BudgetStatus.SENT}),
        BudgetStatus.REJECTED,
    ),
    BudgetEvent.CONTRACT_SENT: (
        frozenset({BudgetStatus.ACCEPTED, BudgetStatus.CONTRACT_SENT}),
        BudgetStatus.CONTRACT_SENT,
    ),
    BudgetEvent.CONTRACT_SIGNED: (
        frozenset({BudgetStatus.CONTRACT_SENT}),
        BudgetStatus.CONTRACT_SIGNED,
    ),
    BudgetEvent.DOWN_PAYMENT_REQUESTED: (
        _BEFORE_DOWN_PAYMENT,
        BudgetStatus.DOWN_PAYMENT_SENT,
    ),
    BudgetEvent.DOWN_PAYMENT_CONFIRMED: (
        _BEFORE_DOWN_PAYMENT,
        BudgetStatus.DOWN_PAYMENT_PAID,
    ),
    BudgetEvent.FINAL_PAYMENT_REQUESTED: (
        frozenset({BudgetStatus.DOWN_PAYMENT_PAID, BudgetStatus.FINAL_PAYMENT_SENT}),
        BudgetStatus.FINAL_PAYMENT_SENT,
    ),
    BudgetEvent.FINAL_PAYMENT_CONFIRMED: (
        frozenset({
            BudgetStatus.DOWN_PAYMENT_PAID,
            BudgetStatus.FINAL_PAYMENT_SENT,
            BudgetStatus.FINAL_PAYMENT_PAID,
        }),
        BudgetStatus.COMPLETED,
    ),
}

_DEVELOPMENT = frozenset({
    ProjectStatus.PLANNING,
    ProjectStatus.DEVELOPMENT_20,
    ProjectStatus.DEVELOPMENT_50,
    ProjectStatus.DEVELOPMENT_70,
    ProjectStatus.DEVELOPMENT_100,
})

PROJECT_TRANSITIONS: dict[ProjectEvent, tuple[frozenset[ProjectStatus], ProjectStatus | None]] = {
    # Target depends on the reported value, see ``progress_status``
    ProjectEvent.PROGRESS_REPORTED: (_DEVELOPMENT, None),
    ProjectEvent.FINAL_PAYMENT_REQUESTED: (
        frozenset({ProjectStatus.DEVELOPMENT_100, ProjectStatus.WAITING_FINAL_PAYMENT}),
        ProjectStatus.WAITING_FINAL_PAYMENT,
    ),
    ProjectEvent.FINAL_PAYMENT_CONFIRMED: (
        frozenset({ProjectStatus.WAITING_FINAL_PAYMENT}),
        ProjectStatus.COMPLETED,
    ),
}

PROGRESS_STEPS: dict[int, ProjectStatus] = {
    20: ProjectStatus.DEVELOPMENT_20,
    50: ProjectStatus.DEVELOPMENT_50,
    70: ProjectStatus.DEVELOPMENT_70,
    100: ProjectStatus.DEVELOPMENT_100,
}

# Project states in which a delivery meeting may be booked
SCHEDULABLE = frozenset({ProjectStatus.COMPLETED, ProjectStatus.WAITING_FINAL_PAYMENT})


def budget_status(value: str) -> BudgetStatus:
    try:
        return BudgetStatus(value)
    except ValueError:
        raise InvalidInputError(f"Unknown budget status '{value}'") from None


def project_status(value: str) -> ProjectStatus:
    try:
        return ProjectStatus(value)
    except ValueError:
        raise InvalidInputError(f"Unknown project status '{value}'") from None


def can_apply_budget_event(current: str, event: BudgetEvent) -> bool:
    sources, _ = BUDGET_TRANSITIONS[event]
    return budget_status(current) in sources


def apply_budget_event(current: str, event: BudgetEvent) -> BudgetStatus:
    """Return the status ``event`` moves a budget in ``current`` to."""
    sources, target = BUDGET_TRANSITIONS[event]
    status = budget_status(current)
    if status not in sources:
        raise InvalidTransitionError(
            f"Budget in status '{status.value}' cannot take '{event.value}'"
        )
    return target


def budget_reached(current: str, milestone: BudgetStatus) -> bool:
    """True when ``current`` is at or past ``milestone`` in the forward flow."""
    status = budget_status(current)
    if status is BudgetStatus.REJECTED:
        return milestone is BudgetStatus.REJECTED
    if milestone is BudgetStatus.REJECTED:
        return False
    return BUDGET_FLOW.index(status) >= BUDGET_FLOW.index(milestone)


def progress_status(progress: int) -> ProjectStatus:
    """Map a reported progress value to its development status."""
    try:
        return PROGRESS_STEPS[progress]
    except KeyError:
        allowed = ", ".join(str(p) for p in PROGRESS_STEPS)
        raise InvalidInputError(f"Progress must be one of {allowed}") from None


def apply_project_event(current: str, event: ProjectEvent, progress: int | None = None) -> ProjectStatus:
    """Return the status ``event`` moves a project in ``current`` to."""
    sources, target = PROJECT_TRANSITIONS[event]
    status = project_status(current)
    if status not in sources:
        raise InvalidTransitionError(
            f"Project in status '{status.value}' cannot take '{event.value}'"
        )
    if event is ProjectEvent.PROGRESS_REPORTED:
        if progress is None:
            raise InvalidInputError("Progress value is required")
        return progress_status(progress)
    return target
