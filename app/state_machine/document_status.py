"""
Pure decision logic for document status transitions.

No I/O here: the status manager and the integration queue call these before
touching the database.
"""
from app.core.exceptions import InvalidStatusTransitionError
from app.db.models.document import DocumentStatus
from app.state_machine.states import (
    AUTOMATIC_STATUSES,
    DOCUMENT_TRANSITIONS,
    EDITABLE_STATUSES,
    FINAL_STATUSES,
)


def is_editable(status: DocumentStatus) -> bool:
    """Whether document content may still change in this status"""
    return DocumentStatus(status) in EDITABLE_STATUSES


def is_final_status(status: DocumentStatus) -> bool:
    return DocumentStatus(status) in FINAL_STATUSES


def available_transitions(status: DocumentStatus) -> list[DocumentStatus]:
    return list(DOCUMENT_TRANSITIONS.get(DocumentStatus(status), ()))


def user_transitions(status: DocumentStatus) -> list[DocumentStatus]:
    """Destinations a user may pick; automatic-only statuses are left out"""
    return [s for s in available_transitions(status) if s not in AUTOMATIC_STATUSES]


def can_transition(from_status: DocumentStatus, to_status: DocumentStatus) -> bool:
    from_status = DocumentStatus(from_status)
    to_status = DocumentStatus(to_status)
    if from_status == to_status:
        return False
    return to_status in DOCUMENT_TRANSITIONS.get(from_status, ())


def validate_transition(from_status: DocumentStatus, to_status: DocumentStatus) -> None:
    """
    Raise InvalidStatusTransitionError unless ``from_status -> to_status`` is legal.

    Setting the current status again is rejected as well; the error carries
    the legal destinations so the caller can show them.
    """
    if not can_transition(from_status, to_status):
        raise InvalidStatusTransitionError(
            DocumentStatus(from_status).value,
            DocumentStatus(to_status).value,
            [s.value for s in available_transitions(from_status)],
        )
