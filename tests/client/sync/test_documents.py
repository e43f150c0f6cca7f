"""Tests for the document payload state machine."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from casesync.client.sync.domain.documents import (
    InvalidTransitionError,
    can_transition,
    settle,
    transition,
)
from casesync.core.schemas import CaseDocument
from casesync.core.types import DocumentState

T0 = datetime(2025, 1, 1, tzinfo=UTC)


def doc(state: DocumentState, updated_at: datetime = T0) -> CaseDocument:
    return CaseDocument(id="d1", local_state=state, updated_at=updated_at)


class TestTransitions:
    """Tests for allowed transitions."""

    @pytest.mark.parametrize(
        ("current", "new"),
        [
            (DocumentState.PENDING_UPLOAD, DocumentState.UPLOADING),
            (DocumentState.UPLOADING, DocumentState.SYNCED),
            (DocumentState.UPLOADING, DocumentState.PENDING_UPLOAD),
            (DocumentState.PENDING_DOWNLOAD, DocumentState.DOWNLOADING),
            (DocumentState.PENDING_DOWNLOAD, DocumentState.SYNCED),
            (DocumentState.DOWNLOADING, DocumentState.SYNCED),
            (DocumentState.DOWNLOADING, DocumentState.ERROR),
            (DocumentState.ERROR, DocumentState.PENDING_DOWNLOAD),
        ],
    )
    def test_allowed(self, current: DocumentState, new: DocumentState) -> None:
        """Should allow the documented transitions."""
        assert can_transition(current, new) is True

    @pytest.mark.parametrize(
        ("current", "new"),
        [
            (DocumentState.PENDING_UPLOAD, DocumentState.SYNCED),
            (DocumentState.SYNCED, DocumentState.UPLOADING),
            (DocumentState.ERROR, DocumentState.SYNCED),
            (DocumentState.PENDING_DOWNLOAD, DocumentState.ERROR),
        ],
    )
    def test_rejected(self, current: DocumentState, new: DocumentState) -> None:
        """Should reject transitions outside the state machine."""
        assert can_transition(current, new) is False
        with pytest.raises(InvalidTransitionError):
            transition(doc(current), new)

    def test_transition_returns_copy(self) -> None:
        """Should not mutate the document or its timestamp."""
        original = doc(DocumentState.PENDING_UPLOAD)
        moved = transition(original, DocumentState.UPLOADING)

        assert moved.local_state == DocumentState.UPLOADING
        assert original.local_state == DocumentState.PENDING_UPLOAD
        assert moved.updated_at == original.updated_at


class TestSettle:
    """Tests for settle."""

    def test_interrupted_upload_resumes(self) -> None:
        """Should put an interrupted upload back in the queue."""
        assert settle(doc(DocumentState.UPLOADING), has_payload=True).local_state == DocumentState.PENDING_UPLOAD

    def test_interrupted_download_resumes(self) -> None:
        """Should put an interrupted download back in the queue."""
        result = settle(doc(DocumentState.DOWNLOADING), has_payload=False)
        assert result.local_state == DocumentState.PENDING_DOWNLOAD

    def test_present_payload_heals_to_synced(self) -> None:
        """Should mark a pending download synced when the payload is present."""
        assert settle(doc(DocumentState.PENDING_DOWNLOAD), has_payload=True).local_state == DocumentState.SYNCED

    def test_missing_payload_needs_download(self) -> None:
        """Should never claim synced without a local payload."""
        assert settle(doc(DocumentState.SYNCED), has_payload=False).local_state == DocumentState.PENDING_DOWNLOAD

    def test_error_is_kept_for_same_revision(self) -> None:
        """Should keep a terminal error until the record changes."""
        previous = doc(DocumentState.ERROR)
        assert settle(doc(DocumentState.PENDING_DOWNLOAD), False, previous).local_state == DocumentState.ERROR

    def test_error_cleared_by_newer_revision(self) -> None:
        """Should retry the download of a newer revision of the record."""
        previous = doc(DocumentState.ERROR)
        newer = doc(DocumentState.PENDING_DOWNLOAD, T0 + timedelta(minutes=1))
        assert settle(newer, False, previous).local_state == DocumentState.PENDING_DOWNLOAD

    def test_unchanged_document_is_returned(self) -> None:
        """Should return the same object when nothing changes."""
        document = doc(DocumentState.PENDING_UPLOAD)
        assert settle(document, has_payload=True) is document
