"""
Document lifecycle states and the legal transitions between them
"""
from app.db.models.document import DocumentStatus

INITIAL_STATUS = DocumentStatus.DRAFT

DOCUMENT_TRANSITIONS: dict[DocumentStatus, tuple[DocumentStatus, ...]] = {
    # Authoring
    DocumentStatus.DRAFT: (
        DocumentStatus.VALIDATED,
        DocumentStatus.FROZEN,
        DocumentStatus.CANCELLED,
    ),
    DocumentStatus.VALIDATED: (
        DocumentStatus.DRAFT,
        DocumentStatus.FROZEN,
        DocumentStatus.CANCELLED,
    ),

    # Integration queue
    DocumentStatus.FROZEN: (DocumentStatus.QUEUED_TO_EXTERNAL,),
    DocumentStatus.QUEUED_TO_EXTERNAL: (DocumentStatus.SENT_TO_EXTERNAL,),

    # External system outcomes
    DocumentStatus.SENT_TO_EXTERNAL: (
        DocumentStatus.ACCEPTED_BY_EXTERNAL,
        DocumentStatus.POSTED_EXTERNALLY,
        DocumentStatus.REJECTED_BY_EXTERNAL,
    ),
    DocumentStatus.ACCEPTED_BY_EXTERNAL: (
        DocumentStatus.POSTED_EXTERNALLY,
        DocumentStatus.REJECTED_BY_EXTERNAL,
    ),
    DocumentStatus.POSTED_EXTERNALLY: (DocumentStatus.UNPOSTED_EXTERNALLY,),
    DocumentStatus.UNPOSTED_EXTERNALLY: (
        DocumentStatus.DRAFT,
        DocumentStatus.FROZEN,
        DocumentStatus.POSTED_EXTERNALLY,
        DocumentStatus.CANCELLED,
    ),
    DocumentStatus.REJECTED_BY_EXTERNAL: (
        DocumentStatus.DRAFT,
        DocumentStatus.CANCELLED,
    ),

    DocumentStatus.CANCELLED: (),
}

# Reached only as a consequence of queue or external system outcomes
AUTOMATIC_STATUSES = frozenset({
    DocumentStatus.QUEUED_TO_EXTERNAL,
    DocumentStatus.SENT_TO_EXTERNAL,
    DocumentStatus.ACCEPTED_BY_EXTERNAL,
    DocumentStatus.POSTED_EXTERNALLY,
    DocumentStatus.UNPOSTED_EXTERNALLY,
    DocumentStatus.REJECTED_BY_EXTERNAL,
})

EDITABLE_STATUSES = frozenset({
    DocumentStatus.DRAFT,
    DocumentStatus.VALIDATED,
    DocumentStatus.REJECTED_BY_EXTERNAL,
    DocumentStatus.UNPOSTED_EXTERNALLY,
})

FINAL_STATUSES = frozenset({DocumentStatus.CANCELLED})
