import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    String,
    Boolean,
    Integer,
    DateTime,
    Text,
    ForeignKey,
    BigInteger,
    JSON,
    Uuid,
    UniqueConstraint,
    Index
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# JSONB en PostgreSQL, JSON genérico en SQLite (tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")
# SQLite solo autoincrementa INTEGER PRIMARY KEY
BigIntId = BigInteger().with_variant(Integer(), "sqlite")


def utcnow():
    return datetime.now(timezone.utc)


MIGRATION_STATUSES = (
    "uploaded",
    "analyzing",
    "analyzed",
    "decisions_pending",
    "decisions_complete",
    "approved",
    "executing",
    "completed",
    "failed",
    "cancelled",
)

FILE_TYPES = ("audio", "video", "document", "image", "archive", "other")

FILE_CATEGORIES = (
    "audio_main",
    "audio_translation",
    "audio_legacy",
    "video",
    "transcript",
    "document",
    "image",
    "archive",
    "other",
)

SUGGESTED_ACTIONS = ("include", "ignore", "review")
DECISION_ACTIONS = ("include", "ignore", "rename", "review")
LOG_LEVEL_NAMES = ("debug", "info", "warn", "error")


class Migration(Base):
    __tablename__ = "migrations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False, default="")
    csv_file_path = Column(Text, nullable=True)
    csv_row_count = Column(Integer, nullable=False, default=0)

    status = Column(String(32), nullable=False, default="uploaded", index=True)
    analysis_data = Column(JSONType, nullable=True)
    target_bucket = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)
    job_id = Column(String(64), nullable=True)

    progress_percentage = Column(Integer, nullable=False, default=0)
    processed_events = Column(Integer, nullable=False, default=0)
    successful_events = Column(Integer, nullable=False, default=0)
    failed_events = Column(Integer, nullable=False, default=0)
    skipped_events = Column(Integer, nullable=False, default=0)

    analyzed_at = Column(DateTime(timezone=True), nullable=True)
    execution_started_at = Column(DateTime(timezone=True), nullable=True)
    execution_completed_at = Column(DateTime(timezone=True), nullable=True)

    created_by = Column(String(255), nullable=True)
    approved_by = Column(String(255), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # Relationships
    catalog_entries = relationship(
        "MigrationFileCatalog",
        back_populates="migration",
        lazy="dynamic",
        cascade="all, delete-orphan",
        passive_deletes=True
    )
    decisions = relationship(
        "MigrationFileDecision",
        back_populates="migration",
        lazy="dynamic",
        cascade="all, delete-orphan",
        passive_deletes=True
    )
    logs = relationship(
        "MigrationLog",
        back_populates="migration",
        lazy="dynamic",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    def __repr__(self):
        return f"<Migration {self.id} status={self.status}>"


class MigrationFileCatalog(Base):
    __tablename__ = "migration_file_catalogs"
    __table_args__ = (
        UniqueConstraint("migration_id", "s3_key", name="uq_catalog_migration_key"),
        Index("ix_catalog_migration_event", "migration_id", "event_code"),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    migration_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("migrations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    event_code = Column(String(255), nullable=False)
    s3_directory = Column(Text, nullable=False, default="")
    filename = Column(Text, nullable=False)
    s3_key = Column(Text, nullable=False)

    file_type = Column(String(32), nullable=False)
    category = Column(String(32), nullable=False)
    extension = Column(String(32), nullable=False, default="")
    file_size = Column(BigInteger, nullable=False, default=0)
    mime_type = Column(String(128), nullable=True)

    suggested_action = Column(String(16), nullable=False, default="review")
    suggested_category = Column(String(32), nullable=True)
    conflicts = Column(JSONType, nullable=True)
    # "metadata" es un nombre reservado en modelos declarativos
    file_metadata = Column("metadata", JSONType, nullable=True)

    created_at = Column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    migration = relationship("Migration", back_populates="catalog_entries")
    decision = relationship(
        "MigrationFileDecision",
        back_populates="catalog_entry",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    def __repr__(self):
        return f"<MigrationFileCatalog {self.id} {self.s3_key}>"


class MigrationFileDecision(Base):
    __tablename__ = "migration_file_decisions"

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    migration_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("migrations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    catalog_id = Column(
        BigIntId,
        ForeignKey("migration_file_catalogs.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )

    action = Column(String(16), nullable=False)
    new_filename = Column(Text, nullable=True)
    target_category = Column(String(32), nullable=True)
    target_s3_key = Column(Text, nullable=True)
    metadata_overrides = Column(JSONType, nullable=True)
    notes = Column(Text, nullable=True)

    decided_by = Column(String(255), nullable=True)
    decided_at = Column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    migration = relationship("Migration", back_populates="decisions")
    catalog_entry = relationship("MigrationFileCatalog", back_populates="decision")

    def __repr__(self):
        return f"<MigrationFileDecision {self.id} catalog={self.catalog_id} {self.action}>"


class MigrationLog(Base):
    __tablename__ = "migration_logs"

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    migration_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("migrations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    level = Column(String(16), nullable=False, default="info")
    message = Column(Text, nullable=False)
    event_code = Column(String(255), nullable=True, index=True)
    context = Column(JSONType, nullable=True)
    timestamp = Column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    migration = relationship("Migration", back_populates="logs")

    def __repr__(self):
        return f"<MigrationLog {self.id} {self.level}>"


class MediaFile(Base):
    __tablename__ = "media_files"
    __table_args__ = (
        UniqueConstraint("s3_bucket", "s3_key", name="uq_media_bucket_key"),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    event_code = Column(String(255), nullable=False, index=True)

    file_type = Column(String(32), nullable=False)
    category = Column(String(32), nullable=False)
    filename = Column(Text, nullable=False)
    s3_key = Column(Text, nullable=False)
    s3_bucket = Column(String(255), nullable=False)
    file_size = Column(BigInteger, nullable=True)
    mime_type = Column(String(128), nullable=True)

    # Audio / video
    duration = Column(Integer, nullable=True)
    bitrate = Column(Integer, nullable=True)
    codec = Column(String(64), nullable=True)
    resolution = Column(String(32), nullable=True)

    session_number = Column(Integer, nullable=True)
    track_number = Column(Integer, nullable=True)
    is_translation = Column(Boolean, nullable=False, default=False)
    is_legacy = Column(Boolean, nullable=False, default=False)

    # Transcripciones
    language = Column(String(16), nullable=True)
    page_count = Column(Integer, nullable=True)

    file_metadata = Column("metadata", JSONType, nullable=True)
    migrated_from = Column(Text, nullable=True)
    migration_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("migrations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    decision_id = Column(BigIntId, nullable=True)

    created_at = Column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    def __repr__(self):
        return f"<MediaFile {self.id} {self.s3_key}>"


class ReferenceValue(Base):
    __tablename__ = "reference_values"
    __table_args__ = (
        UniqueConstraint("kind", "name", name="uq_reference_kind_name"),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    # teacher | place | event_type | audience
    kind = Column(String(32), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    name_alt = Column(String(255), nullable=True)
    abbreviation = Column(String(32), nullable=True)
    aliases = Column(JSONType, nullable=True)

    created_at = Column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    def __repr__(self):
        return f"<ReferenceValue {self.kind}:{self.name}>"


def log_migration(session, migration_id, level, message, event_code=None, context=None):
    entry = MigrationLog(
        migration_id=migration_id,
        level=level if level in LOG_LEVEL_NAMES else "info",
        message=message,
        event_code=event_code,
        context=context
    )
    session.add(entry)
    return entry
