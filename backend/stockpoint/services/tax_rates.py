"""
Canadian sales tax jurisdictions and the per-line tax calculation.

Pure module: no database access. Rates are percentages held as Decimal
(13 = 13%). Money is integer cents.

ROUNDING:
Each component (GST, HST, PST, QST) is rounded half-up to the cent on its
own, then the rounded components are summed. Tax is exclusive: the grand
total is subtotal + tax.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP


TAX_COMPONENTS = ("gst", "hst", "pst", "qst")

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class RateSet:
    gst: Decimal = ZERO
    hst: Decimal = ZERO
    pst: Decimal = ZERO
    qst: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.gst + self.hst + self.pst + self.qst

    def as_dict(self) -> dict[str, Decimal]:
        return {c: getattr(self, c) for c in TAX_COMPONENTS}


ZERO_RATES = RateSet()


@dataclass(frozen=True)
class Jurisdiction:
    code: str
    name: str
    tax_type: str
    rates: RateSet
    notes: str = ""

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "tax_type": self.tax_type,
            "gst_rate": str(self.rates.gst),
            "hst_rate": str(self.rates.hst),
            "pst_rate": str(self.rates.pst),
            "qst_rate": str(self.rates.qst),
            "total_rate": str(self.rates.total),
            "notes": self.notes,
        }


def _j(code, name, tax_type, gst="0", hst="0", pst="0", qst="0", notes=""):
    return Jurisdiction(
        code=code,
        name=name,
        tax_type=tax_type,
        rates=RateSet(Decimal(gst), Decimal(hst), Decimal(pst), Decimal(qst)),
        notes=notes,
    )


_TABLE = (
    _j("AB", "Alberta", "GST_ONLY", gst="5", notes="No provincial sales tax. GST only."),
    _j("BC", "British Columbia", "GST_PST", gst="5", pst="7", notes="GST 5% + PST 7%."),
    _j("MB", "Manitoba", "GST_PST", gst="5", pst="7", notes="GST 5% + RST 7%."),
    _j("NB", "New Brunswick", "HST", hst="15", notes="HST replaces GST and PST."),
    _j("NL", "Newfoundland and Labrador", "HST", hst="15", notes="HST replaces GST and PST."),
    _j("NS", "Nova Scotia", "HST", hst="15", notes="HST replaces GST and PST."),
    _j("NT", "Northwest Territories", "GST_ONLY", gst="5", notes="No territorial sales tax."),
    _j("NU", "Nunavut", "GST_ONLY", gst="5", notes="No territorial sales tax."),
    _j("ON", "Ontario", "HST", hst="13", notes="HST replaces GST 5% + PST 8%."),
    _j("PE", "Prince Edward Island", "HST", hst="15", notes="HST replaces GST and PST."),
    _j("QC", "Quebec", "GST_QST", gst="5", qst="9.975", notes="GST 5% + QST 9.975%."),
    _j("SK", "Saskatchewan", "GST_PST", gst="5", pst="6", notes="GST 5% + PST 6%."),
    _j("YT", "Yukon", "GST_ONLY", gst="5", notes="No territorial sales tax."),
)

JURISDICTIONS: dict[str, Jurisdiction] = {j.code: j for j in _TABLE}


def get_jurisdiction(code: str | None) -> Jurisdiction | None:
    if not code:
        return None
    return JURISDICTIONS.get(code.strip().upper())


@dataclass(frozen=True)
class LineTax:
    subtotal_cents: int
    gst_cents: int
    hst_cents: int
    pst_cents: int
    qst_cents: int

    @property
    def tax_cents(self) -> int:
        return self.gst_cents + self.hst_cents + self.pst_cents + self.qst_cents

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents + self.tax_cents

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "gst_cents": self.gst_cents,
            "hst_cents": self.hst_cents,
            "pst_cents": self.pst_cents,
            "qst_cents": self.qst_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }


def _component_cents(subtotal_cents: int, rate: Decimal) -> int:
    if not rate:
        return 0
    amount = Decimal(subtotal_cents) * Decimal(rate) / HUNDRED
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_line_tax(unit_rate_cents: int, quantity: int, rates: RateSet) -> LineTax:
    """
    Tax for one sale line.

    Example: 3333 cents x 3 at HST 13% -> subtotal 9999, tax 1300, total 11299.
    """
    subtotal = int(unit_rate_cents) * int(quantity)
    return LineTax(
        subtotal_cents=subtotal,
        gst_cents=_component_cents(subtotal, rates.gst),
        hst_cents=_component_cents(subtotal, rates.hst),
        pst_cents=_component_cents(subtotal, rates.pst),
        qst_cents=_component_cents(subtotal, rates.qst),
    )


def format_rate(rate: Decimal) -> str:
    """13.000 -> '13', 9.975 -> '9.975'."""
    text = format(Decimal(rate).normalize(), "f")
    return text


def tax_lines(rates: RateSet, line_tax: LineTax) -> list[dict]:
    """Receipt lines for the non-zero components only, e.g. {'label': 'HST (13%)', 'amount_cents': 1300}."""
    lines = []
    for component in TAX_COMPONENTS:
        amount = getattr(line_tax, f"{component}_cents")
        if amount > 0:
            label = f"{component.upper()} ({format_rate(getattr(rates, component))}%)"
            lines.append({"label": label, "amount_cents": amount})
    return lines


def sum_line_taxes(line_taxes) -> LineTax:
    line_taxes = list(line_taxes)
    return LineTax(
        subtotal_cents=sum(t.subtotal_cents for t in line_taxes),
        gst_cents=sum(t.gst_cents for t in line_taxes),
        hst_cents=sum(t.hst_cents for t in line_taxes),
        pst_cents=sum(t.pst_cents for t in line_taxes),
        qst_cents=sum(t.qst_cents for t in line_taxes),
    )
