"""
State Machine Module for the Document Lifecycle
"""
from app.state_machine.document_status import (
    available_transitions,
    can_transition,
    is_editable,
    is_final_status,
    user_transitions,
    validate_transition,
)
from app.state_machine.manager import DocumentStatusManager

__all__ = [
    "available_transitions",
    "can_transition",
    "is_editable",
    "is_final_status",
    "user_transitions",
    "validate_transition",
    "DocumentStatusManager",
]
