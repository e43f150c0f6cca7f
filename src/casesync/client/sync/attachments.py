"""Attachment pipeline for case document binaries.

Document metadata travels with the rest of the records. The binary
payloads move separately through this pipeline:

1. Upload: documents in PENDING_UPLOAD are pushed to object storage before
   their metadata is upserted. A document whose upload keeps failing stays
   in PENDING_UPLOAD and its metadata is held back until a later cycle.
   Nothing is written locally here; the orchestrator records the uploaded
   documents once the cycle commits.
2. Download: after a cycle commits, documents in PENDING_DOWNLOAD are
   fetched. A payload already present locally heals the state to SYNCED
   without fetching.
3. Retention: remote binaries older than the retention period are removed
   from object storage together with their metadata rows. A purged
   document leaves the synchronized data, but its cached payload and
   metadata stay on the device as an archived document.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TypeVar

from casesync.client.state import LocalReplicaStore
from casesync.client.sync.domain.documents import settle, transition
from casesync.client.sync.retry import retry_with_backoff
from casesync.client.sync.types import RemoteDataSource, Tombstone
from casesync.core.config import SyncSettings
from casesync.core.errors import NotFoundError, SyncError, TransientError
from casesync.core.schemas import CaseDocument
from casesync.core.types import DocumentState

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class UploadBatch:
    """Outcome of uploading the pending payloads of one cycle.

    Attributes:
        documents: All documents, with updated payload states.
        held_back: Ids still waiting for upload, whose metadata must not
            be published yet.
        uploaded: Documents whose payload reached object storage.
    """

    documents: list[CaseDocument]
    held_back: set[str] = field(default_factory=set)
    uploaded: list[CaseDocument] = field(default_factory=list)


class AttachmentPipeline:
    """Moves document payloads between the device and object storage."""

    def __init__(
        self,
        remote: RemoteDataSource,
        store: LocalReplicaStore,
        settings: SyncSettings | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            remote: Remote store with object storage.
            store: Local replica store holding payloads and metadata.
            settings: Retry and retention settings.
        """
        self._remote = remote
        self._store = store
        self._settings = settings or SyncSettings()

    async def _retry(self, func: Callable[[], Awaitable[T]]) -> T:
        s = self._settings
        return await retry_with_backoff(
            func,
            max_retries=s.max_retries,
            initial_backoff=s.initial_backoff,
            max_backoff=s.max_backoff,
            backoff_multiplier=s.backoff_multiplier,
            timeout=s.call_timeout,
        )

    def record(self, document: CaseDocument) -> CaseDocument:
        """Store the metadata of a committed document on this device."""
        self._store.put_document_metadata(document.id, document.model_dump(mode="json"))
        return document

    def settle(self, merged: Iterable[CaseDocument], local: Iterable[CaseDocument]) -> list[CaseDocument]:
        """Give every merged document a payload state consistent with this device.

        Args:
            merged: Documents after the merge.
            local: This device's documents before the merge.

        Returns:
            The merged documents with settled payload states.
        """
        previous = {doc.id: doc for doc in local}
        return [
            settle(doc, self._store.has_document_file(doc.id), previous.get(doc.id))
            for doc in merged
        ]

    async def upload_pending(self, documents: list[CaseDocument]) -> UploadBatch:
        """Upload the payloads of documents waiting for upload.

        Transient failures are retried with backoff. A document that still
        fails goes back to PENDING_UPLOAD for the next cycle.

        Args:
            documents: Merged documents.

        Returns:
            The upload outcome.

        Raises:
            SyncError: On a non-transient failure.
        """
        batch = UploadBatch(documents=[])

        for document in documents:
            if document.local_state != DocumentState.PENDING_UPLOAD:
                batch.documents.append(document)
                continue

            payload = self._store.get_document_file(document.id)
            if payload is None:
                logger.warning(f"Payload of document {document.id} is missing, cannot upload")
                batch.held_back.add(document.id)
                batch.documents.append(document)
                continue

            document = transition(document, DocumentState.UPLOADING)
            upload = functools.partial(self._remote.upload, document.storage_path, payload, document.type)
            try:
                await self._retry(upload)
            except TransientError as e:
                logger.warning(f"Upload of document {document.id} postponed: {e}")
                document = transition(document, DocumentState.PENDING_UPLOAD)
                batch.held_back.add(document.id)
            else:
                document = transition(document, DocumentState.SYNCED)
                logger.info(f"Uploaded document {document.id} ({document.size} bytes)")
                batch.uploaded.append(document)
            batch.documents.append(document)

        return batch

    async def download_pending(
        self,
        documents: Iterable[CaseDocument],
        excluded: set[str] | frozenset[str] = frozenset(),
    ) -> dict[str, DocumentState]:
        """Fetch the payloads of documents waiting for download.

        Failures never propagate: a missing object is terminal (ERROR), a
        transient failure leaves the document in PENDING_DOWNLOAD.

        Args:
            documents: Documents of the committed graph.
            excluded: Ids removed from this device only, never downloaded.

        Returns:
            New payload state per document id, for changed documents only.
        """
        changes: dict[str, DocumentState] = {}

        for document in documents:
            if document.local_state != DocumentState.PENDING_DOWNLOAD or document.id in excluded:
                continue

            if self._store.has_document_file(document.id):
                changes[document.id] = self.record(transition(document, DocumentState.SYNCED)).local_state
                continue

            document = self.record(transition(document, DocumentState.DOWNLOADING))
            download = functools.partial(self._remote.download, document.storage_path)
            try:
                payload = await self._retry(download)
            except NotFoundError:
                logger.error(f"Document {document.id} not found in storage at {document.storage_path}")
                document = transition(document, DocumentState.ERROR)
            except TransientError as e:
                logger.warning(f"Download of document {document.id} postponed: {e}")
                document = transition(document, DocumentState.PENDING_DOWNLOAD)
            except SyncError as e:
                logger.error(f"Download of document {document.id} failed: {e}")
                document = transition(document, DocumentState.ERROR)
            else:
                self._store.put_document_file(document.id, payload)
                document = transition(document, DocumentState.SYNCED)
                logger.info(f"Downloaded document {document.id} ({len(payload)} bytes)")
            changes[document.id] = self.record(document).local_state

        return changes

    async def purge_expired(self, documents: Iterable[CaseDocument], now: datetime) -> list[Tombstone]:
        """Remove remote binaries and metadata past the retention period.

        The purge is housekeeping: a refusal from the remote store is logged
        and the documents are left for a later cycle.

        Args:
            documents: Documents fetched from the remote store.
            now: Current time.

        Returns:
            Tombstones for the purged documents, so the merge drops them.
        """
        cutoff = now - self._settings.document_retention
        expired = [doc for doc in documents if doc.added_at is not None and doc.added_at < cutoff]
        if not expired:
            return []

        paths = [doc.storage_path for doc in expired if doc.storage_path]
        ids = [doc.id for doc in expired]
        try:
            if paths:
                await self._retry(functools.partial(self._remote.remove, paths))
            await self._retry(functools.partial(self._remote.delete, "case_documents", ids))
        except SyncError as e:
            logger.warning(f"Purge of {len(expired)} expired document(s) postponed: {e}")
            return []

        logger.info(f"Purged {len(expired)} document(s) past retention")
        return [Tombstone(table="case_documents", record_id=doc_id, deleted_at=now) for doc_id in ids]

    def release(self, documents: Iterable[CaseDocument], archived: set[str]) -> None:
        """Clean up the local copies of documents that left the synchronized data.

        An archived document keeps its cached payload and metadata, so it
        stays readable on this device. Any other document is gone for good
        and its local copies are deleted.

        Args:
            documents: Local documents no longer in the committed data.
            archived: Ids purged for retention.
        """
        for document in documents:
            if document.id in archived and self._store.has_document_file(document.id):
                self.record(document)
                logger.debug(f"Archived document {document.id} on this device")
            else:
                self._store.delete_document_file(document.id)
                self._store.delete_document_metadata(document.id)
