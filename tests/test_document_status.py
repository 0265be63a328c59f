"""
Document status machine: legal transitions, self-transition rejection,
recorded history and outcome application.
"""
import pytest
from hypothesis import given
from hypothesis.strategies import sampled_from

from app.core.exceptions import DocumentNotFoundError, InvalidStatusTransitionError
from app.db.models.document import DocumentStatus, HistorySource
from app.state_machine import (
    DocumentStatusManager,
    available_transitions,
    can_transition,
    is_editable,
    is_final_status,
    user_transitions,
    validate_transition,
)
from app.state_machine.states import AUTOMATIC_STATUSES, DOCUMENT_TRANSITIONS

STATUSES = sampled_from(list(DocumentStatus))


class TestTransitionRules:

    @pytest.mark.unit
    def test_every_status_has_an_entry(self) -> None:
        assert set(DOCUMENT_TRANSITIONS) == set(DocumentStatus)

    @pytest.mark.unit
    @given(status=STATUSES)
    def test_self_transition_is_never_allowed(self, status) -> None:
        assert not can_transition(status, status)
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            validate_transition(status, status)
        assert "already in status" in exc_info.value.message

    @pytest.mark.unit
    @given(source=STATUSES, target=STATUSES)
    def test_can_transition_matches_adjacency(self, source, target) -> None:
        expected = source != target and target in DOCUMENT_TRANSITIONS[source]
        assert can_transition(source, target) is expected

    @pytest.mark.unit
    def test_invalid_transition_lists_allowed_targets(self) -> None:
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            validate_transition(DocumentStatus.DRAFT, DocumentStatus.POSTED_EXTERNALLY)

        allowed = exc_info.value.details["allowed"]
        assert set(allowed) == {"Validated", "Frozen", "Cancelled"}
        assert exc_info.value.status_code == 400

    @pytest.mark.unit
    def test_cancelled_is_final(self) -> None:
        assert is_final_status(DocumentStatus.CANCELLED)
        assert available_transitions(DocumentStatus.CANCELLED) == []

    @pytest.mark.unit
    def test_frozen_document_is_not_editable(self) -> None:
        assert is_editable(DocumentStatus.DRAFT)
        assert is_editable(DocumentStatus.REJECTED_BY_EXTERNAL)
        assert not is_editable(DocumentStatus.FROZEN)
        assert not is_editable(DocumentStatus.SENT_TO_EXTERNAL)

    @pytest.mark.unit
    @given(status=STATUSES)
    def test_user_transitions_exclude_automatic_statuses(self, status) -> None:
        assert not set(user_transitions(status)) & AUTOMATIC_STATUSES

    @pytest.mark.unit
    def test_queue_path_is_linear(self) -> None:
        assert available_transitions(DocumentStatus.FROZEN) == [DocumentStatus.QUEUED_TO_EXTERNAL]
        assert available_transitions(DocumentStatus.QUEUED_TO_EXTERNAL) == [DocumentStatus.SENT_TO_EXTERNAL]


class TestDocumentStatusManager:

    async def test_transition_records_history(self, db_session, sample_document) -> None:
        manager = DocumentStatusManager(db_session)

        await manager.transition_to(
            sample_document, DocumentStatus.VALIDATED, source=HistorySource.USER, comment="checked"
        )
        await db_session.commit()

        history = await manager.get_history(sample_document.id)
        assert [(h.from_status, h.to_status) for h in history] == [("Draft", "Validated")]
        assert history[0].source == HistorySource.USER
        assert history[0].comment == "checked"

    async def test_illegal_transition_leaves_status(self, db_session, sample_document) -> None:
        manager = DocumentStatusManager(db_session)

        with pytest.raises(InvalidStatusTransitionError):
            await manager.transition_to(sample_document, DocumentStatus.SENT_TO_EXTERNAL)

        assert sample_document.status == DocumentStatus.DRAFT
        assert await manager.get_history(sample_document.id) == []

    async def test_missing_document_raises_not_found(self, db_session) -> None:
        with pytest.raises(DocumentNotFoundError):
            await DocumentStatusManager(db_session).get_document(999_999)

    async def test_apply_outcome_walks_automatic_steps(
        self, db_session, document_factory, sample_organization
    ) -> None:
        document = await document_factory(sample_organization.id, status=DocumentStatus.FROZEN)
        manager = DocumentStatusManager(db_session)

        moved = await manager.apply_outcome(
            document, DocumentStatus.SENT_TO_EXTERNAL, source=HistorySource.QUEUE
        )
        await db_session.commit()

        assert moved
        assert document.status == DocumentStatus.SENT_TO_EXTERNAL
        history = await manager.get_history(document.id)
        assert [h.to_status for h in history] == ["QueuedToExternal", "SentToExternal"]

    async def test_apply_outcome_keeps_status_when_unreachable(
        self, db_session, document_factory, sample_organization
    ) -> None:
        document = await document_factory(
            sample_organization.id, status=DocumentStatus.POSTED_EXTERNALLY
        )
        manager = DocumentStatusManager(db_session)

        moved = await manager.apply_outcome(
            document, DocumentStatus.SENT_TO_EXTERNAL, source=HistorySource.QUEUE
        )

        assert not moved
        assert document.status == DocumentStatus.POSTED_EXTERNALLY

    async def test_apply_outcome_is_noop_at_target(
        self, db_session, document_factory, sample_organization
    ) -> None:
        document = await document_factory(
            sample_organization.id, status=DocumentStatus.SENT_TO_EXTERNAL
        )

        moved = await DocumentStatusManager(db_session).apply_outcome(
            document, DocumentStatus.SENT_TO_EXTERNAL, source=HistorySource.QUEUE
        )

        assert not moved
