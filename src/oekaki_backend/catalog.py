"""
Read-side queries backing the gallery endpoints.
"""

from __future__ import annotations

from typing import List

from .blob_store import BlobStore, payload_key
from .database import ArtifactDatabase
from .errors import NotFoundError
from .models import ArtifactDetail, ArtifactSummary, HistoryEntry

PAGE_SIZE = 50
# Type markers telling the client how to interpret the returned payload
PAYLOAD_TYPE = "bin"
FALLBACK_PAYLOAD_TYPE = "jpg"

MISSING_ARTIFACT_REASON = "no such image_id"


class ArtifactCatalog:
    def __init__(self, database: ArtifactDatabase, blob_store: BlobStore, page_size: int = PAGE_SIZE) -> None:
        self.database = database
        self.blob_store = blob_store
        self.page_size = page_size

    def list_recent(self, page: int = 0) -> List[ArtifactSummary]:
        """Most recently revised artifacts first, ``page_size`` per page."""
        page = max(page, 0)
        records = self.database.list_artifacts(limit=self.page_size, offset=page * self.page_size)
        return [record.to_summary() for record in records]

    def list_history(self, artifact_id: str) -> List[HistoryEntry]:
        """
        History entries of an artifact, oldest first.

        Raises:
            NotFoundError: No entries exist for ``artifact_id``
        """
        records = self.database.list_histories(artifact_id)
        if not records:
            raise NotFoundError(status_code=404, reason=MISSING_ARTIFACT_REASON)
        return [record.to_entry() for record in records]

    def get_artifact(self, artifact_id: str) -> ArtifactDetail:
        """
        One artifact together with its stored payload.

        An artifact whose blob is missing still resolves, with an empty
        payload marked FALLBACK_PAYLOAD_TYPE.

        Raises:
            NotFoundError: ``artifact_id`` does not exist
        """
        record = self.database.get_artifact(artifact_id)
        if record is None:
            raise NotFoundError(status_code=404, reason=MISSING_ARTIFACT_REASON)

        payload = self.blob_store.get(payload_key(artifact_id))
        if payload is None:
            return ArtifactDetail(**record.to_summary().model_dump(), payload=[], type=FALLBACK_PAYLOAD_TYPE)
        return ArtifactDetail(**record.to_summary().model_dump(), payload=list(payload), type=PAYLOAD_TYPE)
