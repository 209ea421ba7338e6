"""Resource request state machine.

  pending -> approved | rejected
  approved -> provisioning
  provisioning -> completed | failed
  failed --(explicit retry)--> approved

rejected and completed are terminal. Deletion is only allowed while the
request has never produced (or is not producing) a resource.
"""

from types import MappingProxyType

from labplatform.errors import InvalidStateError
from labplatform.models import RequestStatus

ALLOWED_TRANSITIONS = MappingProxyType(
    {
        RequestStatus.PENDING: frozenset({RequestStatus.APPROVED, RequestStatus.REJECTED}),
        RequestStatus.APPROVED: frozenset({RequestStatus.PROVISIONING}),
        RequestStatus.PROVISIONING: frozenset({RequestStatus.COMPLETED, RequestStatus.FAILED}),
        RequestStatus.FAILED: frozenset({RequestStatus.APPROVED}),
        RequestStatus.REJECTED: frozenset(),
        RequestStatus.COMPLETED: frozenset(),
    }
)

TERMINAL_STATES = frozenset({RequestStatus.REJECTED, RequestStatus.COMPLETED})
DELETABLE_STATES = frozenset({RequestStatus.PENDING, RequestStatus.REJECTED, RequestStatus.FAILED})


def can_transition(from_status: RequestStatus | str, to_status: RequestStatus | str) -> bool:
    return RequestStatus(to_status) in ALLOWED_TRANSITIONS[RequestStatus(from_status)]


def ensure_transition(from_status: RequestStatus | str, to_status: RequestStatus | str) -> None:
    """Raise InvalidStateError unless from_status -> to_status is an edge."""
    if not can_transition(from_status, to_status):
        raise InvalidStateError(
            f"invalid state transition: {RequestStatus(from_status).value!r} -> "
            f"{RequestStatus(to_status).value!r}",
            RequestStatus(from_status).value,
        )
