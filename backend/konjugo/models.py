from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, JSON, Boolean, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from konjugo.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Lexeme(Base):
    __tablename__ = "lexemes"

    id = Column(String(128), primary_key=True)
    lemma = Column(Text, nullable=False)
    language = Column(String(8), nullable=False, default="de")
    pos = Column(String(20), nullable=False, index=True)  # verb/noun/adjective/adverb/...
    gender = Column(String(20), nullable=True)
    # level, english, example {de, en}, separable, auxiliary, perfekt
    metadata_json = Column(JSON, nullable=True)
    frequency_rank = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, index=True)

    inflections = relationship("Inflection", back_populates="lexeme", cascade="all, delete-orphan")
    task_specs = relationship("TaskSpec", back_populates="lexeme", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("lemma", "pos", name="lexemes_lemma_pos_idx"),
    )


class Inflection(Base):
    __tablename__ = "inflections"

    id = Column(String(128), primary_key=True)
    lexeme_id = Column(String(128), ForeignKey("lexemes.id", ondelete="CASCADE"), nullable=False, index=True)
    form = Column(Text, nullable=False)
    features_json = Column(JSON, nullable=False, default=dict)  # {"tense": "past", "person": 3, ...}
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, index=True)

    lexeme = relationship("Lexeme", back_populates="inflections")


class Word(Base):
    """Legacy flat word list; only consulted for fallback example sentences."""

    __tablename__ = "words"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lemma = Column(Text, nullable=False)
    pos = Column(String(10), nullable=False)  # V/N/Adj
    level = Column(String(2), nullable=True)
    english = Column(Text, nullable=True)
    example_de = Column(Text, nullable=True)
    example_en = Column(Text, nullable=True)


class TaskSpec(Base):
    __tablename__ = "task_specs"

    id = Column(String(255), primary_key=True)  # task:{lexeme}:{type}:{revision}:{hash}
    lexeme_id = Column(String(128), ForeignKey("lexemes.id", ondelete="CASCADE"), nullable=False, index=True)
    pos = Column(String(20), nullable=False, index=True)
    task_type = Column(String(50), nullable=False, index=True)
    renderer = Column(String(50), nullable=False)
    prompt_json = Column(JSON, nullable=False)
    solution_json = Column(JSON, nullable=False)
    hints_json = Column(JSON, nullable=True)
    metadata_json = Column(JSON, nullable=True)
    revision = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    lexeme = relationship("Lexeme", back_populates="task_specs")

    __table_args__ = (
        UniqueConstraint("lexeme_id", "task_type", "revision", name="task_specs_lexeme_type_revision_idx"),
    )


class TaskSyncState(Base):
    __tablename__ = "task_sync_state"

    id = Column(String(50), primary_key=True)
    last_synced_at = Column(DateTime, nullable=True)
    version_hash = Column(String(64), nullable=True)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class PracticeHistory(Base):
    __tablename__ = "practice_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String(255), ForeignKey("task_specs.id", ondelete="CASCADE"), nullable=False, index=True)
    lexeme_id = Column(String(128), ForeignKey("lexemes.id", ondelete="CASCADE"), nullable=False)
    pos = Column(String(20), nullable=False, index=True)
    task_type = Column(String(50), nullable=False)
    renderer = Column(String(50), nullable=False)
    device_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(128), nullable=True, index=True)
    result = Column(String(10), nullable=False)  # correct/incorrect
    response_ms = Column(Integer, nullable=False, default=0)
    submitted_at = Column(DateTime, default=_utcnow, index=True)
    answered_at = Column(DateTime, nullable=True)
    queued_at = Column(DateTime, nullable=True)
    cefr_level = Column(String(2), nullable=True)
    hints_used = Column(Boolean, default=False, server_default="0")
    # submittedResponse, expectedResponse, promptSummary, queueCap, frequencyRank
    metadata_json = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_utcnow)


class PracticeLog(Base):
    """Lightweight attempt log used only for short-window recency suppression."""

    __tablename__ = "practice_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String(255), ForeignKey("task_specs.id", ondelete="CASCADE"), nullable=False, index=True)
    lexeme_id = Column(String(128), ForeignKey("lexemes.id", ondelete="CASCADE"), nullable=False)
    pos = Column(String(20), nullable=False, index=True)
    task_type = Column(String(50), nullable=False)
    device_id = Column(String(64), nullable=True)
    user_id = Column(String(128), nullable=True)
    cefr_level = Column(String(4), nullable=False, default="__", server_default="__")
    attempted_at = Column(DateTime, nullable=False, default=_utcnow, index=True)
    created_at = Column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("practice_log_identity_idx", "device_id", "user_id"),
    )


class ActivityLog(Base):
    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(50), nullable=False, index=True)  # task_sync, history_cleared
    summary = Column(Text, nullable=False)
    detail_json = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
