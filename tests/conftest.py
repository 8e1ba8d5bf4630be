import csv
import os
import tempfile

# Configuración de pruebas antes de importar config/extensions
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["S3_SOURCE_BUCKET"] = "legacy-bucket"
os.environ["S3_TARGET_BUCKET"] = "target-bucket"
os.environ["S3_SOURCE_PREFIX"] = "mediateca"
os.environ["S3_TARGET_PREFIX"] = "events"
os.environ["EXTRACTION_DELAY_SECONDS"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="mediateca-uploads-")

import pytest

from extensions import Session, engine
from models import Base
from services.reference_data import ReferenceCache
from services.storage.blob_store import BlobObject, BlobStoreError
from services.storage.extraction import ExtractionResult


MANIFEST_HEADER = [
    "eventCode",
    "ID",
    "teacherName",
    "dateStart-dateEnd",
    "placeTeaching",
    "currentDesignation",
    "eventTitle",
    "distributionAudience",
    "audio1-language",
    "audio1-tracksNo",
    "audio1-trackNames",
    "audio1-Download-URL",
    "audio2-language",
    "audio2-tracksNo",
    "audio2-tracksTitles",
    "audio2-Download-URL",
    "transcript1-language",
    "transcript1-pages",
    "transcript1-PDF-download",
]


class FakeBlobStore:
    """Blob store en memoria: bucket -> {key: size}."""

    def __init__(self):
        self.buckets = {}
        self.copies = []
        self.fail_prefixes = set()
        self.fail_copies = set()

    def put(self, bucket, key, size=100):
        self.buckets.setdefault(bucket, {})[key] = size

    def keys(self, bucket):
        return sorted(self.buckets.get(bucket, {}))

    def list_objects(self, prefix, bucket):
        prefix = prefix.rstrip("/") + "/"
        if prefix.rstrip("/") in self.fail_prefixes:
            raise BlobStoreError(f"listing failed for {prefix}")
        objects = self.buckets.get(bucket, {})
        return [
            BlobObject(key=key, size=size)
            for key, size in sorted(objects.items())
            if key.startswith(prefix)
        ]

    def list_keys(self, prefix, bucket):
        return [obj.key for obj in self.list_objects(prefix, bucket)]

    def exists(self, key, bucket):
        return key in self.buckets.get(bucket, {})

    def copy_object(self, source_key, target_key, source_bucket, target_bucket):
        if source_key in self.fail_copies:
            raise BlobStoreError(f"copy failed for {source_key}")
        size = self.buckets.get(source_bucket, {})[source_key]
        self.put(target_bucket, target_key, size)
        self.copies.append((source_key, target_key))


class FakeExtractor:
    """Simula la función remota: escribe el contenido conocido del ZIP."""

    configured = True

    def __init__(self, store, contents=None, failures=()):
        self.store = store
        self.contents = contents or {}
        self.failures = set(failures)
        self.calls = []
        self.on_extract = None

    def extract(self, source_url, source_bucket, target_bucket, target_prefix):
        key = source_url.split(".amazonaws.com/", 1)[1]
        self.calls.append((key, target_bucket, target_prefix))
        if self.on_extract is not None:
            self.on_extract(key)
        if key in self.failures:
            return ExtractionResult(False, "Lambda returned success=false")
        for name, size in self.contents.get(key, []):
            self.store.put(target_bucket, f"{target_prefix}/{name}", size)
        return ExtractionResult(True, f"Extracted {len(self.contents.get(key, []))} files")


@pytest.fixture(autouse=True)
def db():
    Base.metadata.create_all(engine)
    yield
    Session.remove()
    Base.metadata.drop_all(engine)


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def reference_cache():
    records = {
        "teacher": [{"name": "Jigme Khyentse Rinpoche", "abbreviation": "JKR"}],
        "place": [{"name": "Lisboa", "aliases": ["Lisbon"]}],
        "event_type": [{"name": "Retiro"}],
        "audience": [{"name": "Público"}],
    }
    return ReferenceCache(loader=lambda kind: records.get(kind, []), ttl_seconds=300)


@pytest.fixture
def write_manifest(tmp_path):
    def _write(rows, name="manifest.csv", bom=False):
        path = tmp_path / name
        with open(path, "w", encoding="utf-8-sig" if bom else "utf-8", newline="") as fh:
            writer = csv.DictWriter(fh, fieldnames=MANIFEST_HEADER, restval="")
            writer.writeheader()
            for row in rows:
                writer.writerow(row)
        return str(path)
    return _write


@pytest.fixture
def seed_migration():
    """Crea una migración con catálogo; objects: event_code -> [(key, size)]."""
    from services import migration_store
    from services.file_catalog import classify_object

    def _seed(objects, status="decisions_pending", title="Prueba"):
        migration_id = migration_store.create_migration(title, "/tmp/manifest.csv")
        ids = {}
        for event_code, keys in objects.items():
            entries = [classify_object(event_code, key, size) for key, size in keys]
            inserted = migration_store.insert_catalog_entries(migration_id, entries)
            for entry, catalog_id in zip(entries, inserted):
                ids[entry.s3_key] = catalog_id
        if status != "uploaded":
            migration_store.transition_status(migration_id, ("uploaded",), status)
        return migration_id, ids
    return _seed


@pytest.fixture
def make_extractor(blob_store):
    def _make(contents=None, failures=()):
        return FakeExtractor(blob_store, contents, failures)
    return _make
