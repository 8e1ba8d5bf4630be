import pytest

from services import decisions, migration_store, orchestrator
from services.orchestrator import InvalidTransition, MigrationNotFound


SOURCE = "legacy-bucket"
ZIP_URL = "https://legacy-bucket.s3.eu-west-3.amazonaws.com/mediateca/2019-07-01-B/audio.zip"


@pytest.fixture
def archive(blob_store):
    for key, size in (
        ("mediateca/2019-06-01-A/001 JKR - Opening.mp3", 1000),
        ("mediateca/2019-06-01-A/002 JKR - Teaching.mp3", 2000),
        ("mediateca/2019-06-01-A/.DS_Store", 10),
        ("mediateca/2019-06-01-A/audio2/001a TRAD - Abertura.mp3", 900),
        ("mediateca/2019-06-01-A/notes.txt", 5),
        ("mediateca/2019-07-01-B/audio.zip", 50000),
    ):
        blob_store.put(SOURCE, key, size)
    return blob_store


@pytest.fixture
def manifest_path(write_manifest):
    return write_manifest([
        {
            "eventCode": "2019-06-01-A",
            "teacherName": "Jigme Khyentse Rinpoche",
            "placeTeaching": "Lisboa",
            "audio1-language": "Inglês",
            "audio1-tracksNo": "2",
            "audio1-trackNames": "001 JKR - Opening.mp3\n002 JKR - Teaching.mp3",
            "audio2-language": "Português",
            "audio2-tracksNo": "1",
            "audio2-tracksTitles": "001a TRAD - Abertura.mp3",
        },
        {
            "eventCode": "2019-07-01-B",
            "teacherName": "Unknown Lama",
            "audio1-tracksNo": "3",
            "audio1-Download-URL": ZIP_URL,
        },
        {"eventCode": "", "teacherName": "Quarantined"},
    ])


def _catalog_by_name(migration_id):
    return {item["filename"]: item for item in decisions.list_decisions(migration_id)}


class TestTransitions:
    def test_allowed_transitions(self):
        assert orchestrator.can_transition("uploaded", "analyzing")
        assert orchestrator.can_transition("decisions_complete", "decisions_pending")
        assert orchestrator.can_transition("executing", "cancelled")
        assert not orchestrator.can_transition("uploaded", "approved")
        assert not orchestrator.can_transition("completed", "cancelled")

    def test_terminal_statuses_are_not_cancellable(self):
        assert "completed" not in orchestrator.NON_TERMINAL_STATUSES
        assert "executing" in orchestrator.NON_TERMINAL_STATUSES

    def test_transition_checks_current_status(self, seed_migration):
        migration_id, _ = seed_migration({}, status="uploaded")
        with pytest.raises(InvalidTransition):
            orchestrator.transition(migration_id, "analyzing", "analyzed")
        assert migration_store.get_status(migration_id) == "uploaded"

    def test_unknown_migration(self):
        with pytest.raises(MigrationNotFound):
            orchestrator.cancel("00000000-0000-0000-0000-000000000000")


class TestAnalysis:
    def test_full_analysis(self, archive, manifest_path, reference_cache):
        migration_id = orchestrator.create_migration(manifest_path, title="Arquivo 2019")
        migration = migration_store.get_migration(migration_id)
        assert migration.status == "uploaded"
        assert migration.csv_row_count == 3
        assert migration.csv_file_path != manifest_path

        report = orchestrator.analyze_migration(
            migration_id, blob_store=archive, reference_cache=reference_cache
        )
        summary = report["summary"]
        assert summary["totalEvents"] == 3
        assert summary["validEvents"] == 2
        assert summary["quarantinedRows"] == 1
        assert summary["eventsAnalyzed"] == 2
        assert summary["totalFiles"] == 6
        assert summary["eventsWithZips"] == 1
        assert report["unmapped"]["teacher"]["Unknown Lama"]["events"] == ["2019-07-01-B"]
        assert report["s3States"]["2019-06-01-A"]["state"] == "EXTRACTED"
        assert report["s3States"]["2019-07-01-B"]["state"] == "ZIP_ONLY"
        assert report["s3States"]["2019-07-01-B"]["prefix"] == "mediateca/2019-07-01-B"

        # notes.txt queda para revisión humana
        assert migration_store.get_status(migration_id) == "decisions_pending"
        assert migration_store.count_catalog(migration_id) == 6
        assert decisions.count_unresolved(migration_id) == 1

        items = _catalog_by_name(migration_id)
        assert items[".DS_Store"]["decision"]["action"] == "ignore"
        translation = items["001a TRAD - Abertura.mp3"]
        assert translation["suggested_action"] == "ignore"
        assert translation["metadata"]["duplicate_of"] == "001 JKR - Opening.mp3"
        assert translation["decision"]["notes"] == "Auto: duplicate"
        opening = items["001 JKR - Opening.mp3"]
        assert opening["decision"]["action"] == "include"
        assert opening["decision"]["notes"] == "Auto: matched"
        assert opening["metadata"]["session_number"] == 1
        assert opening["metadata"]["language"] == "en"
        assert items["audio.zip"]["metadata"]["needs_extraction"] is True
        assert items["notes.txt"]["decision"] is None

        stored = migration_store.get_migration_dict(migration_id)
        assert stored["analysis"]["summary"]["totalFiles"] == 6
        assert stored["analyzed_at"] is not None

    def test_decision_flow_to_approval(self, archive, manifest_path, reference_cache):
        migration_id = orchestrator.create_migration(manifest_path)
        orchestrator.analyze_migration(
            migration_id, blob_store=archive, reference_cache=reference_cache
        )
        notes_id = _catalog_by_name(migration_id)["notes.txt"]["catalog_id"]

        with pytest.raises(InvalidTransition):
            orchestrator.approve(migration_id, approved_by="ana")

        _, status = orchestrator.record_decisions(
            migration_id, [{"catalog_id": notes_id, "action": "ignore"}], decided_by="ana"
        )
        assert status == "decisions_complete"

        # Volver a "review" reabre la fase
        _, status = orchestrator.record_decisions(
            migration_id, [{"catalog_id": notes_id, "action": "review"}]
        )
        assert status == "decisions_pending"
        orchestrator.record_decisions(migration_id, [{"catalog_id": notes_id, "action": "ignore"}])

        assert orchestrator.approve(migration_id, approved_by="ana") == "approved"
        migration = migration_store.get_migration(migration_id)
        assert migration.approved_by == "ana"
        assert migration.approved_at is not None

        with pytest.raises(decisions.DecisionError):
            orchestrator.record_decisions(migration_id, [{"catalog_id": notes_id, "action": "include"}])

    def test_analysis_runs_once(self, archive, manifest_path, reference_cache):
        migration_id = orchestrator.create_migration(manifest_path)
        orchestrator.analyze_migration(migration_id, blob_store=archive, reference_cache=reference_cache)
        with pytest.raises(InvalidTransition):
            orchestrator.analyze_migration(migration_id, blob_store=archive, reference_cache=reference_cache)

    def test_unreadable_manifest_fails_analysis(self, blob_store, reference_cache):
        migration_id = migration_store.create_migration("Rota", "/nonexistent/manifest.csv")
        report = orchestrator.analyze_migration(
            migration_id, blob_store=blob_store, reference_cache=reference_cache
        )
        migration = migration_store.get_migration(migration_id)
        assert migration.status == "failed"
        assert "manifest" in migration.error_message
        assert report["issues"][0]["category"] == "manifest"

    def test_listing_failure_is_isolated(self, archive, manifest_path, reference_cache):
        archive.fail_prefixes.add("mediateca/2019-06-01-A")
        migration_id = orchestrator.create_migration(manifest_path)
        report = orchestrator.analyze_migration(
            migration_id, blob_store=archive, reference_cache=reference_cache
        )
        assert report["summary"]["eventsFailed"] == 1
        assert report["s3States"]["2019-06-01-A"]["state"] == "UNKNOWN"
        assert report["issueCounts"]["byCategory"]["discovery"] == 1
        assert [e["event_code"] for e in migration_store.list_catalog(migration_id)] == ["2019-07-01-B"]
        logs, _ = migration_store.list_logs(migration_id, level="error")
        assert logs[0]["event_code"] == "2019-06-01-A"
        # El único objeto es el ZIP con sugerencia include
        assert migration_store.get_status(migration_id) == "decisions_complete"

    def test_shared_target_key_needs_review(self, blob_store, write_manifest, reference_cache):
        blob_store.put(SOURCE, "mediateca/E1/cd1/001 Talk.mp3", 10)
        blob_store.put(SOURCE, "mediateca/E1/cd2/001 Talk.mp3", 10)
        migration_id = orchestrator.create_migration(write_manifest([{"eventCode": "E1"}]))
        report = orchestrator.analyze_migration(
            migration_id, blob_store=blob_store, reference_cache=reference_cache
        )
        assert report["issueCounts"]["byCategory"]["conflict"] == 2
        assert migration_store.get_status(migration_id) == "decisions_pending"
        assert decisions.count_unresolved(migration_id) == 2
        for item in decisions.list_decisions(migration_id):
            assert item["suggested_action"] == "review"
            assert item["decision"] is None

    def test_shared_prefix_is_cataloged_once(self, blob_store, write_manifest, reference_cache):
        blob_store.put(SOURCE, "mediateca/SHARED/001 Talk.mp3", 10)
        url = "https://legacy-bucket.s3.eu-west-3.amazonaws.com/mediateca/SHARED/001 Talk.mp3"
        path = write_manifest([
            {"eventCode": "EV-1", "audio1-Download-URL": url},
            {"eventCode": "EV-2", "audio1-Download-URL": url},
        ])
        migration_id = orchestrator.create_migration(path)
        report = orchestrator.analyze_migration(
            migration_id, blob_store=blob_store, reference_cache=reference_cache
        )
        assert migration_store.count_catalog(migration_id) == 1
        assert report["issueCounts"]["byCategory"]["conflict"] == 1


class TestCancelAndDelete:
    def test_cancel_from_any_non_terminal_status(self, seed_migration):
        for status in ("uploaded", "decisions_pending", "approved", "executing"):
            migration_id, _ = seed_migration({}, status=status)
            assert orchestrator.cancel(migration_id) == "cancelled"
            assert migration_store.get_status(migration_id) == "cancelled"
            logs, _ = migration_store.list_logs(migration_id, level="warn")
            assert len(logs) == 1

    def test_cannot_cancel_terminal(self, seed_migration):
        migration_id, _ = seed_migration({}, status="completed")
        with pytest.raises(InvalidTransition):
            orchestrator.cancel(migration_id)

    def test_delete_only_cancelled(self, seed_migration):
        migration_id, _ = seed_migration({"EV": [("mediateca/EV/a.mp3", 1)]})
        with pytest.raises(ValueError):
            orchestrator.delete(migration_id)
        orchestrator.cancel(migration_id)
        assert orchestrator.delete(migration_id) is True


class FakeJob:
    id = "job-123"


class FakeQueue:
    def __init__(self, error=None):
        self.enqueued = []
        self.error = error

    def enqueue(self, func, *args, **kwargs):
        if self.error:
            raise self.error
        self.enqueued.append((func, args, kwargs))
        return FakeJob()


class TestQueueing:
    def test_enqueue_analysis(self, seed_migration, monkeypatch):
        queue = FakeQueue()
        monkeypatch.setattr(orchestrator, "get_queue", lambda name=None: queue)
        migration_id, _ = seed_migration({}, status="uploaded")

        job = orchestrator.enqueue_analysis(migration_id)
        assert job.id == "job-123"
        func, args, kwargs = queue.enqueued[0]
        assert func.__name__ == "analyze_migration_job"
        assert args == (migration_id,)
        assert kwargs["retry"].max == 1
        assert migration_store.get_migration(migration_id).job_id == "job-123"

    def test_start_execution(self, seed_migration, monkeypatch):
        queue = FakeQueue()
        monkeypatch.setattr(orchestrator, "get_queue", lambda name=None: queue)
        migration_id, _ = seed_migration({}, status="approved")

        orchestrator.start_execution(migration_id)
        func, args, kwargs = queue.enqueued[0]
        assert func.__name__ == "execute_migration_job"
        assert "retry" not in kwargs
        migration = migration_store.get_migration(migration_id)
        assert migration.status == "executing"
        assert migration.execution_started_at is not None

        with pytest.raises(InvalidTransition):
            orchestrator.start_execution(migration_id)

    def test_start_execution_queue_down(self, seed_migration, monkeypatch):
        from redis.exceptions import ConnectionError as RedisConnectionError

        queue = FakeQueue(error=RedisConnectionError("redis down"))
        monkeypatch.setattr(orchestrator, "get_queue", lambda name=None: queue)
        migration_id, _ = seed_migration({}, status="approved")

        with pytest.raises(RedisConnectionError):
            orchestrator.start_execution(migration_id)
        migration = migration_store.get_migration(migration_id)
        assert migration.status == "failed"
        assert "redis down" in migration.error_message
