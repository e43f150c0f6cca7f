"""Document payload state machine.

States:
    PENDING_UPLOAD -> UPLOADING -> SYNCED
                               -> PENDING_UPLOAD   (transient failure)
    PENDING_DOWNLOAD -> DOWNLOADING -> SYNCED
                                    -> PENDING_DOWNLOAD (transient failure)
                                    -> ERROR            (object not found)
    PENDING_DOWNLOAD -> SYNCED  (payload already present locally)
    SYNCED -> PENDING_DOWNLOAD  (payload missing locally)
    ERROR -> PENDING_DOWNLOAD   (explicit retry)

SYNCED implies the payload is present locally. ERROR is never left
automatically.
"""

from __future__ import annotations

from casesync.core.schemas import CaseDocument
from casesync.core.types import DocumentState

VALID_TRANSITIONS: dict[DocumentState, set[DocumentState]] = {
    DocumentState.PENDING_UPLOAD: {DocumentState.UPLOADING},
    DocumentState.UPLOADING: {DocumentState.SYNCED, DocumentState.PENDING_UPLOAD},
    DocumentState.PENDING_DOWNLOAD: {DocumentState.DOWNLOADING, DocumentState.SYNCED},
    DocumentState.DOWNLOADING: {
        DocumentState.SYNCED,
        DocumentState.PENDING_DOWNLOAD,
        DocumentState.ERROR,
    },
    DocumentState.SYNCED: {DocumentState.PENDING_DOWNLOAD},
    DocumentState.ERROR: {DocumentState.PENDING_DOWNLOAD},
}

# States a crash can leave behind, and where they resume.
INTERRUPTED: dict[DocumentState, DocumentState] = {
    DocumentState.UPLOADING: DocumentState.PENDING_UPLOAD,
    DocumentState.DOWNLOADING: DocumentState.PENDING_DOWNLOAD,
}


class InvalidTransitionError(Exception):
    """Raised when attempting invalid state transition."""

    pass


def can_transition(current: DocumentState, new: DocumentState) -> bool:
    """Check if a transition is allowed."""
    return new in VALID_TRANSITIONS[current]


def transition(document: CaseDocument, new_state: DocumentState) -> CaseDocument:
    """Move a document to a new payload state.

    The document is not mutated and its ``updated_at`` is kept: the
    payload state is device-local and is not an edit of the record.

    Args:
        document: Current document metadata.
        new_state: Target state.

    Returns:
        A copy of the document in the new state.

    Raises:
        InvalidTransitionError: If the transition is not allowed.
    """
    if not can_transition(document.local_state, new_state):
        raise InvalidTransitionError(
            f"Cannot transition document {document.id} from "
            f"{document.local_state.value} to {new_state.value}"
        )
    return document.model_copy(update={"local_state": new_state})


def settle(document: CaseDocument, has_payload: bool, previous: CaseDocument | None = None) -> CaseDocument:
    """Bring a merged document to a consistent payload state.

    Resumes transfers a crash interrupted, keeps a terminal error for the
    same revision of the record and reconciles the state with the
    presence of the payload.

    Args:
        document: Merged document metadata.
        has_payload: Whether the payload is stored on this device.
        previous: This device's copy before the merge, if any.

    Returns:
        The document with a consistent ``local_state``.
    """
    state = INTERRUPTED.get(document.local_state, document.local_state)

    if (
        previous is not None
        and previous.local_state == DocumentState.ERROR
        and document.updated_at <= previous.updated_at
    ):
        state = DocumentState.ERROR
    elif state == DocumentState.PENDING_DOWNLOAD and has_payload:
        state = DocumentState.SYNCED
    elif state == DocumentState.SYNCED and not has_payload:
        state = DocumentState.PENDING_DOWNLOAD

    if state == document.local_state:
        return document
    return document.model_copy(update={"local_state": state})
