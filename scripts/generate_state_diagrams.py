"""
Generate a Mermaid diagram of the document lifecycle from DOCUMENT_TRANSITIONS.

Usage:
    python scripts/generate_state_diagrams.py                  # print to stdout
    python scripts/generate_state_diagrams.py --update-readme  # refresh README.md
    python scripts/generate_state_diagrams.py --check          # fail when README.md is stale (CI)
"""
import argparse
import re
import sys
from pathlib import Path
from typing import Any, Iterable

# Make the app package importable when run from a checkout
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.db.models.document import DocumentStatus
from app.state_machine.states import (
    AUTOMATIC_STATUSES,
    DOCUMENT_TRANSITIONS,
    FINAL_STATUSES,
    INITIAL_STATUS,
)

README_PATH = Path(__file__).resolve().parent.parent / "README.md"
START_MARKER = "<!-- STATE_DIAGRAMS_START -->"
END_MARKER = "<!-- STATE_DIAGRAMS_END -->"

DOCUMENT_LABELS: dict[str, str] = {
    DocumentStatus.DRAFT.value: "Draft",
    DocumentStatus.VALIDATED.value: "Validated",
    DocumentStatus.FROZEN.value: "Frozen (version locked)",
    DocumentStatus.QUEUED_TO_EXTERNAL.value: "Queued to external system",
    DocumentStatus.SENT_TO_EXTERNAL.value: "Sent to external system",
    DocumentStatus.ACCEPTED_BY_EXTERNAL.value: "Accepted by external system",
    DocumentStatus.POSTED_EXTERNALLY.value: "Posted externally",
    DocumentStatus.UNPOSTED_EXTERNALLY.value: "Unposted externally",
    DocumentStatus.REJECTED_BY_EXTERNAL.value: "Rejected by external system",
    DocumentStatus.CANCELLED.value: "Cancelled",
}


def _sanitize_id(state_value: str) -> str:
    """Mermaid ids can't contain dots or spaces"""
    return re.sub(r"[^A-Za-z0-9_]", "_", state_value)


def generate_mermaid_from_transitions(
    transitions: dict[Any, Iterable[Any]],
    labels: dict[str, str],
    *,
    initial: Any = None,
    final: Iterable[Any] = (),
    automatic: Iterable[Any] = (),
) -> str:
    """
    Build a stateDiagram-v2 from an adjacency map.

    Edges into an automatic status are labelled "auto": users never pick
    those targets, the queue and the external system do.
    """
    automatic = set(automatic)
    lines: list[str] = ["stateDiagram-v2"]

    all_states: set[str] = set()
    for source, targets in transitions.items():
        all_states.add(source.value)
        for target in targets:
            all_states.add(target.value)

    for state_value in sorted(all_states):
        lines.append(f"    {_sanitize_id(state_value)} : {labels.get(state_value, state_value)}")

    lines.append("")
    if initial is not None:
        lines.append(f"    [*] --> {_sanitize_id(initial.value)}")

    for source, targets in transitions.items():
        source_id = _sanitize_id(source.value)
        for target in targets:
            suffix = " : auto" if target in automatic else ""
            lines.append(f"    {source_id} --> {_sanitize_id(target.value)}{suffix}")

    for state in sorted(final, key=lambda s: s.value):
        lines.append(f"    {_sanitize_id(state.value)} --> [*]")

    return "\n".join(lines)


def generate_all_diagrams() -> dict[str, str]:
    return {
        "Document lifecycle (DocumentStatus)": generate_mermaid_from_transitions(
            DOCUMENT_TRANSITIONS,
            DOCUMENT_LABELS,
            initial=INITIAL_STATUS,
            final=FINAL_STATUSES,
            automatic=AUTOMATIC_STATUSES,
        ),
    }


def format_diagrams_as_markdown(diagrams: dict[str, str]) -> str:
    sections: list[str] = []
    for name, mermaid_code in diagrams.items():
        sections.append(f"#### {name}\n")
        sections.append(f"```mermaid\n{mermaid_code}\n```\n")
    return "\n".join(sections)


def _section(markdown_content: str) -> str:
    return f"{START_MARKER}\n\n### State diagrams\n\n{markdown_content}\n{END_MARKER}"


def _marker_pattern() -> re.Pattern:
    return re.compile(re.escape(START_MARKER) + r".*?" + re.escape(END_MARKER), re.DOTALL)


def update_readme(markdown_content: str, path: Path = README_PATH) -> None:
    """Replace the marked block, or append one when the file has none"""
    content = path.read_text(encoding="utf-8") if path.exists() else ""
    new_section = _section(markdown_content)

    if START_MARKER in content:
        content = _marker_pattern().sub(lambda _: new_section, content)
    else:
        content = content.rstrip("\n") + "\n\n" + new_section + "\n"

    path.write_text(content, encoding="utf-8")
    print(f"Updated: {path}")


def check_readme(markdown_content: str, path: Path = README_PATH) -> bool:
    """True when the marked block matches the current transitions"""
    if not path.exists():
        print(f"Error: {path} not found")
        return False

    match = _marker_pattern().search(path.read_text(encoding="utf-8"))
    if not match:
        print(f"Error: no state diagram block in {path}")
        return False

    if match.group(0) == _section(markdown_content):
        print("State diagrams are up to date")
        return True

    print("Error: state diagrams are out of date")
    print("Run: python scripts/generate_state_diagrams.py --update-readme")
    return False


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Generate Mermaid diagrams from the document state machine"
    )
    parser.add_argument(
        "--update-readme",
        action="store_true",
        help="rewrite the diagram block in README.md",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="exit 1 when README.md does not match the code (for CI)",
    )
    args = parser.parse_args()

    markdown = format_diagrams_as_markdown(generate_all_diagrams())

    if args.check:
        sys.exit(0 if check_readme(markdown) else 1)
    elif args.update_readme:
        update_readme(markdown)
    else:
        print(markdown)


if __name__ == "__main__":
    main()
