# app/infrastructure/db/models.py
from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text, text

from app.infrastructure.db.base import Base


class FilingRow(Base):
    """
    One filing aggregate. The columns other subsystems query are stored
    flat; the full aggregate (facts, resolutions, computations, versions)
    lives in payload_json.
    """
    __tablename__ = "filings"

    filing_id = Column(String(32), primary_key=True)
    owner_id = Column(String(64), nullable=False, index=True)
    assessment_year = Column(String(7), nullable=False)
    filing_for = Column(String(64), nullable=False, default="self")
    itr_type = Column(String(5), nullable=False)
    status = Column(String(20), nullable=False, index=True)
    in_progress = Column(Boolean, nullable=False, default=True)
    ack_number = Column(String(64), unique=True, nullable=True)
    current_version_id = Column(String(32), nullable=True)
    revises_filing_id = Column(String(32), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    payload_json = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))

    __table_args__ = (
        # At most one in-progress filing per (owner, AY, filing_for)
        Index(
            "uq_filings_in_progress_key",
            "owner_id", "assessment_year", "filing_for",
            unique=True,
            postgresql_where=text("in_progress"),
            sqlite_where=text("in_progress"),
        ),
    )
