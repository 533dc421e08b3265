# Overview: Site tax configuration; one jurisdiction per site, auto-provisioned on first read.

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import SiteTaxConfig
from ..validation import ValidationError, coerce_decimal
from .tax_rates import (
    JURISDICTIONS,
    TAX_COMPONENTS,
    ZERO_RATES,
    RateSet,
    get_jurisdiction,
)


MAX_COMPONENT_RATE = Decimal("100")


def _apply_jurisdiction(config: SiteTaxConfig, code: str) -> None:
    jurisdiction = get_jurisdiction(code)
    if not jurisdiction:
        raise ValidationError(f"Unknown province code: {code}", "province_code")
    config.province_code = jurisdiction.code
    config.province_name = jurisdiction.name
    config.gst_rate = jurisdiction.rates.gst
    config.hst_rate = jurisdiction.rates.hst
    config.pst_rate = jurisdiction.rates.pst
    config.qst_rate = jurisdiction.rates.qst
    config.total_rate = jurisdiction.rates.total


def _get_or_create_config(site_id: int) -> SiteTaxConfig:
    """Flushes a new default config when missing; never commits."""
    config = db.session.query(SiteTaxConfig).filter_by(site_id=site_id).first()
    if config:
        return config
    config = SiteTaxConfig(site_id=site_id, is_enabled=True)
    _apply_jurisdiction(config, current_app.config.get("DEFAULT_TAX_PROVINCE", "ON"))
    db.session.add(config)
    db.session.flush()
    return config


def get_tax_config(site_id: int) -> SiteTaxConfig:
    """Return the site's tax config, creating it with the default jurisdiction when missing."""
    config = _get_or_create_config(site_id)
    db.session.commit()
    return config


def config_rates(config: SiteTaxConfig) -> RateSet:
    return RateSet(
        gst=Decimal(config.gst_rate or 0),
        hst=Decimal(config.hst_rate or 0),
        pst=Decimal(config.pst_rate or 0),
        qst=Decimal(config.qst_rate or 0),
    )


def site_rates(config: SiteTaxConfig | None) -> RateSet:
    """Rates that apply to a sale at the site: all zero when tax is disabled."""
    if config is None or not config.is_enabled:
        return ZERO_RATES
    return config_rates(config)


def rates_for_site(site_id: int) -> RateSet:
    """Rates for a new sale; auto-provisions the config inside the caller's transaction."""
    return site_rates(_get_or_create_config(site_id))


def update_tax_province(site_id: int, province_code: str) -> SiteTaxConfig:
    """Switch jurisdiction; component rates are reset to the table values."""
    config = _get_or_create_config(site_id)
    _apply_jurisdiction(config, province_code or "")
    db.session.commit()
    current_app.logger.info("Site %s tax jurisdiction set to %s", site_id, config.province_code)
    return config


def update_registration_numbers(site_id: int, payload: dict) -> SiteTaxConfig:
    config = _get_or_create_config(site_id)
    for key in ("gst_number", "pst_number", "qst_number"):
        if key in (payload or {}):
            value = payload[key]
            value = str(value).strip() if value is not None else None
            if value and len(value) > 32:
                raise ValidationError(f"{key} exceeds max length 32", key)
            setattr(config, key, value or None)
    db.session.commit()
    return config


def toggle_tax(site_id: int, is_enabled: bool) -> SiteTaxConfig:
    if not isinstance(is_enabled, bool):
        raise ValidationError("is_enabled must be a boolean", "is_enabled")
    config = _get_or_create_config(site_id)
    config.is_enabled = is_enabled
    db.session.commit()
    return config


def override_tax_rates(site_id: int, rates: dict) -> SiteTaxConfig:
    """
    Override individual component rates (percentages) and recompute total_rate.

    Components not named in `rates` keep their current value.
    """
    if not isinstance(rates, dict) or not rates:
        raise ValidationError("At least one rate is required", "rates")

    parsed: dict[str, Decimal] = {}
    for key, raw in rates.items():
        component = key[:-5] if key.endswith("_rate") else key
        if component not in TAX_COMPONENTS:
            raise ValidationError(f"Unknown tax component: {key}", key)
        value = coerce_decimal(raw, key)
        if value < 0 or value > MAX_COMPONENT_RATE:
            raise ValidationError(f"{key} must be between 0 and 100", key)
        parsed[component] = value

    config = _get_or_create_config(site_id)
    for component, value in parsed.items():
        setattr(config, f"{component}_rate", value)
    config.total_rate = config_rates(config).total
    db.session.commit()
    return config


def list_jurisdictions() -> list[dict]:
    return [j.to_dict() for j in JURISDICTIONS.values()]
