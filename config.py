import os
from dotenv import load_dotenv

load_dotenv()

def _build_database_url():
    user = os.getenv("POSTGRES_USER", "mediateca")
    password = os.getenv("POSTGRES_PASSWORD", "mediateca.pass")
    host = os.getenv("POSTGRES_HOST", "db")
    port = os.getenv("POSTGRES_PORT", "5432")
    database = os.getenv("POSTGRES_DB", "mediateca")

    return (
        f"postgresql+psycopg://{user}:{password}@{host}:{port}/{database}"
    )


class Config:
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "dev-secret-change-me")
    FLASK_ENV = os.getenv("FLASK_ENV", "development")

    DATABASE_URL = os.getenv("DATABASE_URL") or _build_database_url()

    REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")

    RQ_QUEUE_NAME = os.getenv("RQ_QUEUE_NAME", "mediateca")
    RQ_MIGRATION_QUEUE = os.getenv("RQ_MIGRATION_QUEUE", "migrations")
    ANALYZE_JOB_TIMEOUT = int(os.getenv("ANALYZE_JOB_TIMEOUT", "3600"))
    # Una ejecución completa puede durar horas
    EXECUTE_JOB_TIMEOUT = int(os.getenv("EXECUTE_JOB_TIMEOUT", str(12 * 3600)))

    UPLOAD_DIR = os.getenv("UPLOAD_DIR", "data/uploads")

    AWS_REGION = os.getenv("AWS_REGION", "eu-west-3")
    S3_SOURCE_BUCKET = os.getenv("S3_SOURCE_BUCKET", "")
    S3_TARGET_BUCKET = os.getenv("S3_TARGET_BUCKET", "")
    S3_SOURCE_PREFIX = os.getenv("S3_SOURCE_PREFIX", "mediateca").strip("/")
    S3_TARGET_PREFIX = os.getenv("S3_TARGET_PREFIX", "events").strip("/")

    LAMBDA_ZIP_EXTRACTOR_NAME = os.getenv("LAMBDA_ZIP_EXTRACTOR_NAME", "")
    EXTRACTION_DELAY_SECONDS = float(os.getenv("EXTRACTION_DELAY_SECONDS", "0.5"))

    DEDUP_SIMILARITY_THRESHOLD = float(
        os.getenv("DEDUP_SIMILARITY_THRESHOLD", "0.8")
    )
    # larger | a | b
    DEDUP_CANONICAL_STRATEGY = os.getenv("DEDUP_CANONICAL_STRATEGY", "larger")

    CHECKPOINT_EVERY = int(os.getenv("CHECKPOINT_EVERY", "10"))

    _CPU_COUNT = max(1, os.cpu_count() or 1)

    VALIDATION_WORKERS = min(
        int(os.getenv("VALIDATION_WORKERS", "8")),
        _CPU_COUNT * 4
    )
    REFERENCE_CACHE_TTL = int(os.getenv("REFERENCE_CACHE_TTL", "300"))
