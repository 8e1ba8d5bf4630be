import pytest

from config import Config
from services.manifest import ManifestError
from services.validation import validate_manifest


SOURCE = "legacy-bucket"


@pytest.fixture
def archive(blob_store):
    for key in (
        "mediateca/EV-EXT/001 Talk.mp3",
        "mediateca/EV-EXT/002 Talk.mp3",
        "mediateca/EV-ZIP/audio.zip",
        "mediateca/EV-PART/001 Session.mp3",
    ):
        blob_store.put(SOURCE, key, 100)
    return blob_store


@pytest.fixture
def manifest_path(write_manifest):
    return write_manifest([
        {
            "eventCode": "EV-EXT",
            "teacherName": "Jigme Khyentse Rinpoche",
            "audio1-tracksNo": "2",
            "audio1-trackNames": "001 Talk.mp3\n002 Talk.mp3",
        },
        {"eventCode": "EV-ZIP", "teacherName": "Unknown Lama", "audio1-tracksNo": "3"},
        {"eventCode": "EV-MISS"},
        {
            "eventCode": "EV-PART",
            "audio1-tracksNo": "3",
            "audio1-trackNames": "001 Session.mp3\n002 Session.mp3\n003 Session.mp3",
        },
        {"eventCode": ""},
        {"eventCode": "EV-EXT"},
    ])


def test_validation_report(archive, manifest_path, reference_cache):
    report = validate_manifest(
        manifest_path,
        blob_store=archive,
        source_bucket=SOURCE,
        reference_cache=reference_cache,
        workers=4
    )
    summary = report["summary"]
    assert summary["totalEvents"] == 6
    assert summary["quarantinedRows"] == 2
    assert summary["validEvents"] == 4
    assert summary["stateExtracted"] == 1
    assert summary["stateZipOnly"] == 1
    assert summary["stateMissing"] == 1
    assert summary["statePartial"] == 1

    assert report["s3States"]["EV-PART"]["missingTracks"] == ["002 Session.mp3", "003 Session.mp3"]
    assert report["trackCountMismatches"] == [
        {"eventCode": "EV-PART", "set": "audio1", "expected": 3, "found": 1},
    ]
    assert report["unmapped"]["teacher"]["Unknown Lama"]["events"] == ["EV-ZIP"]
    assert len(report["quarantined"]) == 2
    # Orden del manifest, no de finalización de los workers
    assert list(report["s3States"]) == ["EV-EXT", "EV-ZIP", "EV-MISS", "EV-PART"]


def test_validation_is_read_only(archive, manifest_path, reference_cache):
    before = archive.keys(SOURCE)
    validate_manifest(
        manifest_path, blob_store=archive, source_bucket=SOURCE, reference_cache=reference_cache
    )
    assert archive.copies == []
    assert archive.keys(SOURCE) == before


def test_limit_and_skip(archive, manifest_path, reference_cache):
    report = validate_manifest(
        manifest_path,
        blob_store=archive,
        source_bucket=SOURCE,
        reference_cache=reference_cache,
        limit=2,
        skip=1
    )
    assert report["summary"]["validEvents"] == 2
    assert sorted(report["s3States"]) == ["EV-MISS", "EV-ZIP"]


def test_listing_failure_is_reported(archive, manifest_path, reference_cache):
    archive.fail_prefixes.add("mediateca/EV-EXT")
    report = validate_manifest(
        manifest_path, blob_store=archive, source_bucket=SOURCE, reference_cache=reference_cache
    )
    assert report["s3States"]["EV-EXT"]["state"] == "UNKNOWN"
    assert report["summary"]["eventsFailed"] == 1
    assert report["summary"]["stateZipOnly"] == 1


def test_missing_source_bucket(archive, manifest_path, monkeypatch):
    monkeypatch.setattr(Config, "S3_SOURCE_BUCKET", "")
    report = validate_manifest(manifest_path, blob_store=archive, check_references=False)
    assert [issue["category"] for issue in report["issues"]][-1] == "config"
    assert report["s3States"] == {}


def test_unreadable_manifest(blob_store, tmp_path):
    with pytest.raises(ManifestError):
        validate_manifest(str(tmp_path / "missing.csv"), blob_store=blob_store, source_bucket=SOURCE)
