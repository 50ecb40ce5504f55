from __future__ import annotations

import logging

from sqlalchemy import inspect, select, text

from cache_layer import STAGE_DOCS_PREFIX, cache_invalidate_prefix
from models import StageDocument
from stages import STAGE_KEYS
from utils import iso_utc_now, new_prefixed_id

_log = logging.getLogger("schema")

# (documentName, description, isRequired) per stage, in display order.
DEFAULT_STAGE_DOCUMENTS: dict[str, list[tuple[str, str, bool]]] = {
    "passport_received": [
        ("Original passport", "Physical passport collected and logged", True),
        ("Passport copy", "Scan of the bio-data page", True),
        ("CNIC copy", "Front and back of the national identity card", True),
        ("Passport photographs", "Six recent photographs, white background", True),
    ],
    "interview": [
        ("CV / bio-data", "Current CV or filled bio-data form", True),
        ("Interview result sheet", "Signed by the employer's representative", True),
        ("Trade test certificate", "Only for skilled trades", False),
    ],
    "medical": [
        ("Medical slip", "GAMCA / approved centre appointment slip", True),
        ("Medical fitness certificate", "Result marked FIT", True),
    ],
    "police_clearance": [
        ("Police character certificate", "Issued by the district police", True),
    ],
    "mofa": [
        ("MOFA attestation", "Attested educational / character documents", True),
    ],
    "taseer": [
        ("Taseer payment receipt", "", True),
    ],
    "takamul": [
        ("Takamul skill verification", "Professional accreditation result", True),
    ],
    "training": [
        ("Training completion certificate", "Pre-departure orientation", True),
    ],
    "fingerprint": [
        ("Biometric appointment slip", "", True),
        ("Biometric confirmation", "", True),
    ],
    "embassy": [
        ("Embassy submission receipt", "", True),
        ("Visa application form", "Signed by the candidate", True),
    ],
    "visa_issued": [
        ("Visa copy", "Stamped visa page", True),
        ("Employment contract", "Signed by both parties", True),
    ],
    "manpower": [
        ("Protector stamp", "Bureau of Emigration clearance", True),
        ("Insurance policy", "State life insurance", True),
        ("OEP fee receipt", "", False),
    ],
    "flight": [
        ("Air ticket", "Confirmed e-ticket", True),
        ("Departure briefing sheet", "", False),
    ],
}


def _quoted(name: str) -> str:
    escaped = str(name).replace('"', '""')
    return f'"{escaped}"'


def _ensure_column(engine, *, table: str, column: str, ddl_type: str, default_sql: str = "''") -> None:
    insp = inspect(engine)
    cols = {c.get("name") for c in insp.get_columns(table)}
    if column in cols:
        return
    ddl = f"ALTER TABLE {_quoted(table)} ADD COLUMN {_quoted(column)} {ddl_type} DEFAULT {default_sql}"
    with engine.begin() as conn:
        conn.execute(text(ddl))
    _log.info("schema: added %s.%s", table, column)


def _ensure_index(engine, *, name: str, table: str, column: str) -> None:
    ddl = f"CREATE INDEX IF NOT EXISTS {_quoted(name)} ON {_quoted(table)}({_quoted(column)})"
    with engine.begin() as conn:
        conn.execute(text(ddl))


def ensure_schema(engine) -> None:
    """
    Lightweight, idempotent schema evolution (no Alembic).

    `create_all` never alters existing tables, so columns added after a database was first
    created are added here.
    """
    _ensure_column(engine, table="candidates", column="version", ddl_type="INTEGER", default_sql="1")
    _ensure_column(engine, table="candidates", column="medicalFitDate", ddl_type="TEXT")
    _ensure_column(engine, table="candidates", column="visaIssueDate", ddl_type="TEXT")
    _ensure_column(engine, table="stage_history", column="fromStage", ddl_type="TEXT")
    _ensure_column(engine, table="stage_history", column="actorLabel", ddl_type="TEXT")
    _ensure_column(engine, table="candidate_documents", column="notes", ddl_type="TEXT")
    _ensure_column(engine, table="candidate_documents", column="fileName", ddl_type="TEXT", default_sql="NULL")
    _ensure_column(engine, table="stage_documents", column="description", ddl_type="TEXT")

    _ensure_index(engine, name="ix_candidates_medical_fit", table="candidates", column="medicalFitDate")
    _ensure_index(engine, name="ix_candidates_visa_issue", table="candidates", column="visaIssueDate")


def seed_stage_documents(db, catalog: dict[str, list[tuple[str, str, bool]]] | None = None) -> int:
    """Insert missing (stage, documentName) rows; existing rows are left as operators edited them."""
    catalog = DEFAULT_STAGE_DOCUMENTS if catalog is None else catalog
    existing = {(s, n) for s, n in db.execute(select(StageDocument.stage, StageDocument.documentName)).all()}

    now = iso_utc_now()
    added = 0
    for stage in STAGE_KEYS:
        for order, (name, description, required) in enumerate(catalog.get(stage, []), start=1):
            if (stage, name) in existing:
                continue
            db.add(
                StageDocument(
                    id=new_prefixed_id("SDOC"),
                    stage=stage,
                    documentName=name,
                    description=description,
                    isRequired=bool(required),
                    displayOrder=order,
                    createdAt=now,
                )
            )
            added += 1

    db.commit()
    cache_invalidate_prefix(STAGE_DOCS_PREFIX)
    if added:
        _log.info("seeded %s stage document definitions", added)
    return added
