from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """
    Per-site, per-type counter for human-facing document numbers.

    next_number is advanced only with a relative UPDATE so concurrent
    writers never receive the same number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("site_id", "document_type", name="uq_document_sequences_site_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
