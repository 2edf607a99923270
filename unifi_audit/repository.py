"""Persistence of audit snapshots, dismissed findings and audit settings."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .database import AuditRecord, AuditSetting, DismissedIssueRecord, get_session_local, init_db
from .logging_config import get_logger

logger = get_logger(__name__)

REPORT_DATA_KEYS = (
    "statistics",
    "hardeningMeasures",
    "networks",
    "switches",
    "wirelessClients",
    "offlineClients",
    "dnsSecurity",
)


def get_case_insensitive(data: Dict[str, Any], key: str, default: Any = None) -> Any:
    """Look up ``key`` ignoring case, so older snapshots with other casing still load."""
    if key in data:
        return data[key]
    lowered = key.lower()
    for existing, value in data.items():
        if isinstance(existing, str) and existing.lower() == lowered:
            return value
    return default


@dataclass
class AuditSnapshot:
    """A stored audit run in plain Python types."""
    site_id: str
    compliance_score: int
    critical_count: int = 0
    warning_count: int = 0
    info_count: int = 0
    findings: List[Dict[str, Any]] = field(default_factory=list)
    report_data: Dict[str, Any] = field(default_factory=dict)
    audit_date: datetime = field(default_factory=datetime.utcnow)
    id: Optional[int] = None

    def report_value(self, key: str, default: Any = None) -> Any:
        return get_case_insensitive(self.report_data, key, default)

    @classmethod
    def from_record(cls, record: AuditRecord) -> "AuditSnapshot":
        findings: List[Dict[str, Any]] = []
        report: Dict[str, Any] = {}
        if record.findings_json:
            try:
                findings = json.loads(record.findings_json) or []
            except ValueError as e:
                logger.warning(f"Failed to parse audit findings JSON for audit {record.id}: {e}")
        if record.report_data_json:
            try:
                report = json.loads(record.report_data_json) or {}
            except ValueError as e:
                logger.warning(f"Failed to parse audit report data JSON for audit {record.id}: {e}")
        return cls(
            id=record.id,
            site_id=record.site_id,
            compliance_score=int(record.compliance_score),
            critical_count=record.failed_checks,
            warning_count=record.warning_checks,
            info_count=record.passed_checks,
            findings=findings,
            report_data=report,
            audit_date=record.audit_date,
        )


class AuditRepository:
    """SQLAlchemy-backed store.

    Example:
        repo = AuditRepository()
        audit_id = repo.save_audit_result("default", snapshot)
        latest = repo.get_latest_audit_result("default")
    """

    def __init__(self, session_factory=None, engine=None):
        if session_factory is None:
            engine = init_db(engine)
            session_factory = get_session_local(engine)
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    # -------------------------------------------------------------------------
    # Audit snapshots
    # -------------------------------------------------------------------------

    def save_audit_result(self, site_id: str, snapshot: AuditSnapshot) -> int:
        record = AuditRecord(
            site_id=site_id,
            audit_date=snapshot.audit_date,
            audit_version="1.0",
            compliance_score=snapshot.compliance_score,
            total_checks=snapshot.critical_count + snapshot.warning_count + snapshot.info_count,
            passed_checks=snapshot.info_count,
            failed_checks=snapshot.critical_count,
            warning_checks=snapshot.warning_count,
            findings_json=json.dumps(snapshot.findings, default=str),
            report_data_json=json.dumps(snapshot.report_data, default=str),
        )
        with self._session() as db:
            db.add(record)
            db.commit()
            db.refresh(record)
            logger.info(f"Saved audit {record.id} for site {site_id} with {len(snapshot.findings)} findings")
            return record.id

    def get_latest_audit_result(self, site_id: str) -> Optional[AuditSnapshot]:
        with self._session() as db:
            record = (
                db.query(AuditRecord)
                .filter(AuditRecord.site_id == site_id)
                .order_by(AuditRecord.audit_date.desc(), AuditRecord.id.desc())
                .first()
            )
            return AuditSnapshot.from_record(record) if record else None

    def get_audit_result(self, site_id: str, audit_id: int) -> Optional[AuditSnapshot]:
        with self._session() as db:
            record = (
                db.query(AuditRecord)
                .filter(AuditRecord.site_id == site_id, AuditRecord.id == audit_id)
                .first()
            )
            return AuditSnapshot.from_record(record) if record else None

    # -------------------------------------------------------------------------
    # Dismissed issues
    # -------------------------------------------------------------------------

    def get_dismissed_issues(self, site_id: str) -> List[str]:
        with self._session() as db:
            rows = (
                db.query(DismissedIssueRecord.issue_key)
                .filter(DismissedIssueRecord.site_id == site_id)
                .order_by(DismissedIssueRecord.dismissed_at)
                .all()
            )
            return [row[0] for row in rows]

    def save_dismissed_issue(self, site_id: str, issue_key: str) -> None:
        with self._session() as db:
            exists = (
                db.query(DismissedIssueRecord)
                .filter(DismissedIssueRecord.site_id == site_id, DismissedIssueRecord.issue_key == issue_key)
                .first()
            )
            if exists is not None:
                return
            db.add(DismissedIssueRecord(site_id=site_id, issue_key=issue_key, dismissed_at=datetime.utcnow()))
            db.commit()

    def delete_dismissed_issue(self, site_id: str, issue_key: str) -> None:
        with self._session() as db:
            db.query(DismissedIssueRecord).filter(
                DismissedIssueRecord.site_id == site_id, DismissedIssueRecord.issue_key == issue_key,
            ).delete()
            db.commit()

    def clear_all_dismissed_issues(self, site_id: str) -> int:
        with self._session() as db:
            count = db.query(DismissedIssueRecord).filter(DismissedIssueRecord.site_id == site_id).delete()
            db.commit()
            return count

    # -------------------------------------------------------------------------
    # Settings store
    # -------------------------------------------------------------------------

    def get_setting(self, key: str) -> Optional[str]:
        with self._session() as db:
            row = db.query(AuditSetting).filter(AuditSetting.key == key).first()
            return row.value if row else None

    def set_setting(self, key: str, value: Optional[str]) -> None:
        with self._session() as db:
            row = db.query(AuditSetting).filter(AuditSetting.key == key).first()
            if row is None:
                db.add(AuditSetting(key=key, value=value))
            else:
                row.value = value
            db.commit()
