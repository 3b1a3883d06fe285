"""
Tests for the submission workflow and its compensation rules.

Tests cover:
- Creating and revising artifacts
- The revision cap, including a revision racing to the cap
- Rollback of new artifacts when history or payload writes fail
- No rollback for revisions of existing artifacts
- Preview host failures
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

import pytest

from oekaki_backend.blob_store import FileBlobStore, payload_key
from oekaki_backend.database import ArtifactDatabase, ArtifactRecord
from oekaki_backend.errors import LockedError, NotFoundError, StoreError, UpstreamError
from oekaki_backend.submission import SubmissionCoordinator
from oekaki_backend.validation import validate_submission


class FailingHistoryDatabase(ArtifactDatabase):
    def add_history(self, record):
        raise StoreError("history table unavailable")


class FailingBlobStore(FileBlobStore):
    def put(self, key, data):
        raise StoreError("bucket unavailable")


class ExplodingBlobStore(FileBlobStore):
    def put(self, key, data):
        raise RuntimeError("connection reset")


class StaleReadDatabase(ArtifactDatabase):
    """Reports one revision less than stored, as a racing reader would see it."""

    def get_artifact(self, artifact_id):
        record = super().get_artifact(artifact_id)
        if record is None:
            return None
        return replace(record, count=record.count - 1)


@pytest.fixture
def submission(submission_body):
    return validate_submission(submission_body)


def _seed(database, count=1, artifact_id="seeded"):
    database.create_artifact(ArtifactRecord(
        id=artifact_id,
        author="seed",
        submitter_address=None,
        description=None,
        preview_id="old-asset",
        delete_hash="old-token",
        count=count,
        created_at=1,
    ))
    return artifact_id


class TestNewArtifact:
    """Submissions without an artifact id."""

    def test_creates_artifact_history_and_payload(self, coordinator, database, blob_store, submission):
        artifact_id = coordinator.submit(submission, submitter_address="203.0.113.7")

        record = database.get_artifact(artifact_id)
        assert record.count == 1
        assert record.author == "tester"
        assert record.description == "a cat"
        assert record.submitter_address == "203.0.113.7"
        assert record.preview_id == "asset1"
        assert record.delete_hash == "token1"

        histories = database.list_histories(artifact_id)
        assert len(histories) == 1
        assert histories[0].image_id == artifact_id
        assert histories[0].author == "tester"

        assert blob_store.get(payload_key(artifact_id)) == bytes([1, 2, 3])

    def test_preview_upload_has_prefix_stripped(self, coordinator, preview_stub, submission):
        coordinator.submit(submission)
        assert len(preview_stub.uploads) == 1
        assert not preview_stub.uploads[0].startswith("data:")

    def test_each_submission_gets_fresh_id(self, coordinator, submission):
        assert coordinator.submit(submission) != coordinator.submit(submission)

    def test_preview_failure_leaves_no_rows(self, coordinator, database, preview_stub, submission):
        preview_stub.fail_upload = True
        with pytest.raises(UpstreamError):
            coordinator.submit(submission)
        assert database.list_artifacts(limit=10) == []


class TestRevision:
    """Submissions against an existing artifact."""

    def test_revision_updates_preview_and_count(self, coordinator, database, preview_stub, submission):
        artifact_id = coordinator.submit(submission)
        assert coordinator.submit(submission, artifact_id) == artifact_id

        record = database.get_artifact(artifact_id)
        assert record.count == 2
        assert record.preview_id == "asset2"
        assert record.delete_hash == "token2"
        assert preview_stub.deleted == ["token1"]
        assert len(database.list_histories(artifact_id)) == 2

    def test_each_revision_deletes_the_previous_preview(self, coordinator, preview_stub, submission):
        artifact_id = coordinator.submit(submission)
        coordinator.submit(submission, artifact_id)
        coordinator.submit(submission, artifact_id)
        assert preview_stub.deleted == ["token1", "token2"]

    def test_revision_keeps_original_author(self, coordinator, database, submission_body):
        artifact_id = coordinator.submit(validate_submission(submission_body))
        submission_body["author"] = "second"
        coordinator.submit(validate_submission(submission_body), artifact_id)

        assert database.get_artifact(artifact_id).author == "tester"
        authors = [entry.author for entry in database.list_histories(artifact_id)]
        assert authors == ["tester", "second"]

    def test_unknown_id_is_not_found(self, coordinator, database, preview_stub, submission):
        for _ in range(2):
            with pytest.raises(NotFoundError):
                coordinator.submit(submission, "does-not-exist")
        assert preview_stub.requests == []
        assert database.list_artifacts(limit=10) == []

    def test_tenth_revision_accepted_eleventh_locked(self, coordinator, database, blob_store, preview_stub, submission):
        artifact_id = coordinator.submit(submission)
        for _ in range(9):
            coordinator.submit(submission, artifact_id)
        assert database.get_artifact(artifact_id).count == 10

        before = database.get_artifact(artifact_id)
        uploads = len(preview_stub.uploads)
        with pytest.raises(LockedError) as excinfo:
            coordinator.submit(submission, artifact_id)

        assert excinfo.value.status_code == 423
        assert database.get_artifact(artifact_id) == before
        assert len(database.list_histories(artifact_id)) == 10
        assert len(preview_stub.uploads) == uploads

    def test_old_preview_delete_failure_is_upstream_error(self, coordinator, database, preview_stub, submission):
        artifact_id = _seed(database)
        preview_stub.fail_delete = True

        with pytest.raises(UpstreamError):
            coordinator.submit(submission, artifact_id)

        record = database.get_artifact(artifact_id)
        assert record.count == 1
        assert record.preview_id == "old-asset"


class TestRollback:
    """Compensation after partial failure."""

    def test_payload_failure_rolls_back_new_artifact(self, database, preview_host, submission, tmp_path):
        coordinator = SubmissionCoordinator(database, FailingBlobStore(tmp_path / "failing"), preview_host)

        with pytest.raises(StoreError):
            coordinator.submit(submission)

        assert database.list_artifacts(limit=10) == []

    def test_payload_failure_makes_artifact_unreadable(self, database, preview_host, catalog, submission, tmp_path, monkeypatch):
        created = []
        original_create = database.create_artifact

        def recording_create(record):
            created.append(record.id)
            original_create(record)

        monkeypatch.setattr(database, "create_artifact", recording_create)
        coordinator = SubmissionCoordinator(database, FailingBlobStore(tmp_path / "failing"), preview_host)

        with pytest.raises(StoreError):
            coordinator.submit(submission)

        assert len(created) == 1
        with pytest.raises(NotFoundError):
            catalog.get_artifact(created[0])
        with pytest.raises(NotFoundError):
            catalog.list_history(created[0])

    def test_unexpected_payload_fault_rolls_back_as_store_error(self, database, preview_host, submission, tmp_path):
        coordinator = SubmissionCoordinator(database, ExplodingBlobStore(tmp_path / "exploding"), preview_host)

        with pytest.raises(StoreError) as excinfo:
            coordinator.submit(submission)

        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert database.list_artifacts(limit=10) == []

    def test_history_failure_rolls_back_new_artifact(self, preview_host, blob_store, submission, tmp_path):
        database = FailingHistoryDatabase(tmp_path / "history.db")
        coordinator = SubmissionCoordinator(database, blob_store, preview_host)

        with pytest.raises(StoreError):
            coordinator.submit(submission)

        assert database.list_artifacts(limit=10) == []

    def test_history_failure_keeps_revision_of_existing_artifact(self, preview_host, blob_store, submission, tmp_path):
        database = FailingHistoryDatabase(tmp_path / "history.db")
        artifact_id = _seed(database)
        coordinator = SubmissionCoordinator(database, blob_store, preview_host)

        with pytest.raises(StoreError):
            coordinator.submit(submission, artifact_id)

        record = database.get_artifact(artifact_id)
        assert record.count == 2
        assert record.preview_id == "asset1"
        assert record.delete_hash == "token1"

    def test_payload_failure_keeps_revision_of_existing_artifact(self, database, preview_host, submission, tmp_path):
        artifact_id = _seed(database)
        coordinator = SubmissionCoordinator(database, FailingBlobStore(tmp_path / "failing"), preview_host)

        with pytest.raises(StoreError):
            coordinator.submit(submission, artifact_id)

        assert database.get_artifact(artifact_id).count == 2
        assert len(database.list_histories(artifact_id)) == 1

    def test_rollback_is_idempotent(self, coordinator, database, submission):
        artifact_id = coordinator.submit(submission)

        coordinator.rollback(artifact_id)
        coordinator.rollback(artifact_id)
        coordinator.rollback("never-existed")

        assert database.get_artifact(artifact_id) is None
        assert database.list_histories(artifact_id) == []


class TestRevisionCapRace:
    """The cap holds even when the resolve-time check is stale."""

    def test_stale_check_is_caught_by_conditional_update(self, preview_host, preview_stub, blob_store, submission, tmp_path):
        database = StaleReadDatabase(tmp_path / "stale.db")
        artifact_id = _seed(database, count=10)
        coordinator = SubmissionCoordinator(database, blob_store, preview_host)

        with pytest.raises(LockedError):
            coordinator.submit(submission, artifact_id)

        record = ArtifactDatabase.get_artifact(database, artifact_id)
        assert record.count == 10
        assert record.preview_id == "old-asset"
        assert database.list_histories(artifact_id) == []
        # the preview uploaded for the losing request is discarded again
        assert preview_stub.deleted == ["old-token", "token1"]

    def test_concurrent_revisions_never_exceed_cap(self, coordinator, database, submission):
        artifact_id = coordinator.submit(submission)

        def revise():
            try:
                coordinator.submit(submission, artifact_id)
                return True
            except LockedError:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: revise(), range(16)))

        assert sum(results) == 9
        assert database.get_artifact(artifact_id).count == 10
        assert len(database.list_histories(artifact_id)) == 10
