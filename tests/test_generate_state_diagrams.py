"""
Tests for the Mermaid diagram generator of the document lifecycle.
"""
import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from scripts.generate_state_diagrams import (
    DOCUMENT_LABELS,
    END_MARKER,
    START_MARKER,
    _sanitize_id,
    check_readme,
    format_diagrams_as_markdown,
    generate_all_diagrams,
    generate_mermaid_from_transitions,
    update_readme,
)
from app.db.models.document import DocumentStatus
from app.state_machine.states import (
    AUTOMATIC_STATUSES,
    DOCUMENT_TRANSITIONS,
    FINAL_STATUSES,
    INITIAL_STATUS,
)


def _document_diagram() -> str:
    return generate_mermaid_from_transitions(
        DOCUMENT_TRANSITIONS,
        DOCUMENT_LABELS,
        initial=INITIAL_STATUS,
        final=FINAL_STATUSES,
        automatic=AUTOMATIC_STATUSES,
    )


class TestSanitizeId:

    @pytest.mark.unit
    def test_replaces_dots_and_spaces(self) -> None:
        assert _sanitize_id("Doc.Status One") == "Doc_Status_One"

    @pytest.mark.unit
    def test_keeps_plain_ids(self) -> None:
        assert _sanitize_id("QueuedToExternal") == "QueuedToExternal"


class TestDocumentDiagram:

    @pytest.mark.unit
    def test_contains_every_status(self) -> None:
        mermaid = _document_diagram()
        for status in DocumentStatus:
            assert f"    {status.value} : {DOCUMENT_LABELS[status.value]}" in mermaid

    @pytest.mark.unit
    def test_every_label_is_defined(self) -> None:
        assert set(DOCUMENT_LABELS) == {s.value for s in DocumentStatus}

    @pytest.mark.unit
    def test_initial_and_final_markers(self) -> None:
        mermaid = _document_diagram()
        assert mermaid.startswith("stateDiagram-v2")
        assert "    [*] --> Draft" in mermaid
        assert "    Cancelled --> [*]" in mermaid

    @pytest.mark.unit
    def test_automatic_edges_are_labelled(self) -> None:
        mermaid = _document_diagram()
        assert "    Frozen --> QueuedToExternal : auto" in mermaid
        assert "    QueuedToExternal --> SentToExternal : auto" in mermaid
        assert "    Draft --> Validated\n" in mermaid

    @pytest.mark.unit
    def test_edge_count_matches_transitions(self) -> None:
        mermaid = _document_diagram()
        edges = [
            line for line in mermaid.splitlines()
            if "-->" in line and "[*]" not in line
        ]
        assert len(edges) == sum(len(t) for t in DOCUMENT_TRANSITIONS.values())


class TestReadmeBlock:

    @pytest.mark.unit
    def test_markdown_has_mermaid_fence(self) -> None:
        markdown = format_diagrams_as_markdown(generate_all_diagrams())
        assert "```mermaid\nstateDiagram-v2" in markdown
        assert "#### Document lifecycle (DocumentStatus)" in markdown

    @pytest.mark.unit
    def test_update_appends_then_replaces(self, tmp_path) -> None:
        readme = tmp_path / "README.md"
        readme.write_text("# Portal\n\nIntro.\n", encoding="utf-8")

        update_readme("first", readme)
        update_readme("second", readme)

        content = readme.read_text(encoding="utf-8")
        assert content.startswith("# Portal\n\nIntro.\n")
        assert content.count(START_MARKER) == 1
        assert content.count(END_MARKER) == 1
        assert "second" in content
        assert "first" not in content

    @pytest.mark.unit
    def test_check_detects_stale_block(self, tmp_path) -> None:
        readme = tmp_path / "README.md"
        markdown = format_diagrams_as_markdown(generate_all_diagrams())

        assert not check_readme(markdown, readme)

        readme.write_text("# Portal\n", encoding="utf-8")
        assert not check_readme(markdown, readme)

        update_readme(markdown, readme)
        assert check_readme(markdown, readme)

        update_readme("stale", readme)
        assert not check_readme(markdown, readme)
