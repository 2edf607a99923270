"""Database models and session management for audit history.

Uses SQLAlchemy with SQLite for simplicity. Stores audit snapshots,
dismissed findings and per-site audit settings.
"""

import os
from datetime import datetime

from sqlalchemy import Column, DateTime, Float, Integer, String, Text, UniqueConstraint, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import get_settings

Base = declarative_base()


class AuditRecord(Base):
    """One persisted audit run: summary columns plus JSON snapshots."""

    __tablename__ = "audit_results"

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(String(100), nullable=False, index=True)
    audit_date = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    audit_version = Column(String(20), default="1.0", nullable=False)
    compliance_score = Column(Float, nullable=False, default=0)
    total_checks = Column(Integer, nullable=False, default=0)
    passed_checks = Column(Integer, nullable=False, default=0)
    failed_checks = Column(Integer, nullable=False, default=0)
    warning_checks = Column(Integer, nullable=False, default=0)
    findings_json = Column(Text, nullable=True)
    report_data_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<AuditRecord(id={self.id}, site_id={self.site_id}, score={self.compliance_score})>"


class DismissedIssueRecord(Base):
    """A finding the operator dismissed, keyed by its stable issue key."""

    __tablename__ = "dismissed_issues"
    __table_args__ = (UniqueConstraint("site_id", "issue_key", name="uq_dismissed_site_key"),)

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(String(100), nullable=False, index=True)
    issue_key = Column(String(500), nullable=False)
    dismissed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<DismissedIssueRecord(site_id={self.site_id}, issue_key={self.issue_key})>"


class AuditSetting(Base):
    """Key/value setting, e.g. ``site:default:audit:allowPrintersOnMainNetwork``."""

    __tablename__ = "audit_settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(255), nullable=False, unique=True, index=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<AuditSetting(key={self.key})>"


# Database setup
def get_database_url() -> str:
    """Get database URL from settings or default to SQLite."""
    settings = get_settings()

    if settings.database_url:
        return settings.database_url

    # Default to SQLite next to the package
    db_path = os.path.join(os.path.dirname(__file__), "audit.db")
    return f"sqlite:///{db_path}"


def get_engine(database_url: str = None):
    """Get SQLAlchemy engine."""
    database_url = database_url or get_database_url()
    return create_engine(database_url, connect_args={"check_same_thread": False} if "sqlite" in database_url else {})


def get_session_local(engine=None):
    """Get session factory."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine or get_engine())


def init_db(engine=None):
    """Initialize database tables."""
    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    return engine

