"""
Submission workflow for drawing revisions.

A submission touches three independent systems with no shared transaction:
the preview host, the SQLite metadata store and the payload blob store. The
SubmissionCoordinator runs the steps in a fixed order:

1. Resolve the target artifact (new, existing, or rejected)
2. Upload the preview image
3. Create the artifact row, or delete the old preview and update the row
4. Append a history row
5. Store the payload blob

When step 4 or 5 fails for a newly created artifact, the rows written by this
request are deleted again. Revisions of an existing artifact are never rolled
back: the updated row stays even if history or blob writes fail afterwards,
and previews already uploaded or deleted are not restored.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional
from uuid import uuid4

from .blob_store import BlobStore, payload_key
from .database import ArtifactDatabase, ArtifactRecord, HistoryRecord
from .errors import LockedError, NotFoundError, StoreError, UpstreamError
from .preview_host import PreviewAsset, PreviewHostClient
from .utils import now_millis
from .validation import NormalizedSubmission

logger = logging.getLogger(__name__)

MAX_REVISIONS = 10


class SubmissionCoordinator:
    """
    Orchestrates one submission across the preview host and both stores.

    The coordinator holds no per-request state; a single instance serves all
    requests concurrently. The revision cap is enforced twice: once when the
    target is resolved, and again atomically by the conditional update in
    ArtifactDatabase.apply_revision so that racing revisions cannot exceed it.

    Attributes:
        database: Metadata store for artifacts and history
        blob_store: Storage for raw payloads
        preview_host: Client for the external preview host
        max_revisions: Revision cap per artifact, creation included
    """

    def __init__(
        self,
        database: ArtifactDatabase,
        blob_store: BlobStore,
        preview_host: PreviewHostClient,
        max_revisions: int = MAX_REVISIONS,
    ) -> None:
        self.database = database
        self.blob_store = blob_store
        self.preview_host = preview_host
        self.max_revisions = max_revisions

    def submit(
        self,
        submission: NormalizedSubmission,
        artifact_id: Optional[str] = None,
        submitter_address: Optional[str] = None,
    ) -> str:
        """
        Accept one revision, creating the artifact when ``artifact_id`` is None.

        Args:
            submission: Validated request
            artifact_id: Artifact to revise, or None for a new drawing
            submitter_address: Client network address, stored as-is

        Returns:
            The id of the created or revised artifact

        Raises:
            NotFoundError: ``artifact_id`` does not exist
            LockedError: The artifact already has ``max_revisions`` revisions
            UpstreamError: The preview host failed
            StoreError: A metadata or blob write failed
        """
        existing = self._resolve_target(artifact_id)

        asset = self.preview_host.upload(submission.image_data)

        if existing is None:
            artifact_id = self._create_artifact(submission, asset, submitter_address)
            created = True
        else:
            self._revise_artifact(existing, asset)
            artifact_id = existing.id
            created = False

        with self._compensating(artifact_id, created, "history"):
            self.database.add_history(HistoryRecord(
                id=str(uuid4()),
                author=submission.author,
                submitter_address=submitter_address,
                image_id=artifact_id,
                created_at=now_millis(),
            ))

        with self._compensating(artifact_id, created, "payload"):
            self.blob_store.put(payload_key(artifact_id), submission.payload)

        logger.info(f"Accepted {'new' if created else 'revised'} artifact {artifact_id}")
        return artifact_id

    def rollback(self, artifact_id: str) -> None:
        """
        Delete the artifact row and all of its history rows.

        Safe to call when the rows do not exist. Failures are logged rather
        than raised so they never mask the error that triggered the rollback.
        """
        try:
            self.database.delete_artifact(artifact_id)
        except StoreError:
            logger.exception(f"Rollback could not delete artifact {artifact_id}")
        try:
            removed = self.database.delete_histories(artifact_id)
        except StoreError:
            logger.exception(f"Rollback could not delete history of {artifact_id}")
        else:
            logger.warning(f"Rolled back artifact {artifact_id} ({removed} history rows)")

    def _resolve_target(self, artifact_id: Optional[str]) -> Optional[ArtifactRecord]:
        if artifact_id is None:
            return None

        record = self.database.get_artifact(artifact_id)
        if record is None:
            logger.info(f"Rejected revision of unknown artifact {artifact_id}")
            raise NotFoundError(f"Unknown artifact {artifact_id}")
        if record.count >= self.max_revisions:
            logger.info(f"Rejected revision of completed artifact {artifact_id}")
            raise LockedError(f"Artifact {artifact_id} is complete")
        return record

    def _create_artifact(
        self,
        submission: NormalizedSubmission,
        asset: PreviewAsset,
        submitter_address: Optional[str],
    ) -> str:
        record = ArtifactRecord(
            id=str(uuid4()),
            author=submission.author,
            submitter_address=submitter_address,
            description=submission.description,
            preview_id=asset.asset_id,
            delete_hash=asset.delete_token,
            count=1,
            created_at=now_millis(),
        )
        self.database.create_artifact(record)
        logger.info(f"Created artifact {record.id}")
        return record.id

    def _revise_artifact(self, existing: ArtifactRecord, asset: PreviewAsset) -> None:
        self.preview_host.delete(existing.delete_hash)

        updated = self.database.apply_revision(
            existing.id,
            preview_id=asset.asset_id,
            delete_hash=asset.delete_token,
            created_at=now_millis(),
            max_revisions=self.max_revisions,
        )
        if updated:
            logger.info(f"Revised artifact {existing.id} (revision {existing.count + 1})")
            return

        # A concurrent request took the last revision, or rolled the row back
        self._discard_preview(asset)
        if self.database.get_artifact(existing.id) is None:
            raise NotFoundError(f"Artifact {existing.id} disappeared during revision")
        raise LockedError(f"Artifact {existing.id} completed during revision")

    def _discard_preview(self, asset: PreviewAsset) -> None:
        try:
            self.preview_host.delete(asset.delete_token)
        except UpstreamError:
            logger.warning(f"Preview asset {asset.asset_id} is orphaned")

    @contextmanager
    def _compensating(self, artifact_id: str, created: bool, step: str) -> Iterator[None]:
        """Roll back a new artifact if the wrapped step fails."""
        try:
            yield
        except Exception as exc:
            if created:
                logger.warning(f"Writing {step} for new artifact {artifact_id} failed, rolling back")
                self.rollback(artifact_id)
            if isinstance(exc, StoreError):
                raise
            logger.exception(f"Unexpected fault while writing {step} for {artifact_id}")
            raise StoreError(f"Writing {step} failed: {exc}") from exc
