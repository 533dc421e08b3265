from __future__ import annotations

from ..extensions import db
from stockpoint.time_utils import to_utc_z


class SiteTaxConfig(db.Model):
    """
    One tax jurisdiction per site.

    Rates are stored as percentages (13.000 = 13%). total_rate is kept in
    sync with the components by tax_service. When is_enabled is False,
    sales at the site carry zero tax regardless of the stored rates.
    """
    __tablename__ = "site_tax_configs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, unique=True)

    province_code = db.Column(db.String(4), nullable=False)
    province_name = db.Column(db.String(64), nullable=False)

    gst_rate = db.Column(db.Numeric(7, 3), nullable=False, default=0)
    hst_rate = db.Column(db.Numeric(7, 3), nullable=False, default=0)
    pst_rate = db.Column(db.Numeric(7, 3), nullable=False, default=0)
    qst_rate = db.Column(db.Numeric(7, 3), nullable=False, default=0)
    total_rate = db.Column(db.Numeric(7, 3), nullable=False, default=0)

    is_enabled = db.Column(db.Boolean, nullable=False, default=True)

    gst_number = db.Column(db.String(32), nullable=True)
    pst_number = db.Column(db.String(32), nullable=True)
    qst_number = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "province_code": self.province_code,
            "province_name": self.province_name,
            "gst_rate": str(self.gst_rate),
            "hst_rate": str(self.hst_rate),
            "pst_rate": str(self.pst_rate),
            "qst_rate": str(self.qst_rate),
            "total_rate": str(self.total_rate),
            "is_enabled": self.is_enabled,
            "gst_number": self.gst_number,
            "pst_number": self.pst_number,
            "qst_number": self.qst_number,
            "updated_at": to_utc_z(self.updated_at),
        }
