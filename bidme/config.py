"""Auction configuration loaded from ``.bidme/config.yml``."""

from __future__ import annotations

import logging
import pathlib
from typing import Any, Literal

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from bidme.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_PATH = pathlib.Path(".bidme") / "config.yml"


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class BiddingConfig(_Section):
    schedule: Literal["weekly", "monthly"] = "monthly"
    duration_days: int = Field(7, gt=0, validation_alias=AliasChoices("duration_days", "duration"))
    minimum_bid: int = Field(50, ge=0)
    increment: int = Field(5, ge=0)


class BannerConfig(_Section):
    width: int = Field(800, gt=0)
    height: int = Field(100, gt=0)
    formats: tuple[str, ...] = ("png", "jpg", "svg")
    max_size: int = Field(200, gt=0)  # KB


class ApprovalConfig(_Section):
    mode: Literal["auto", "emoji"] = "emoji"
    allowed_reactions: tuple[str, ...] = ("👍",)
    reject_reactions: tuple[str, ...] = ("👎",)


class PaymentConfig(_Section):
    provider: Literal["stripe", "polar-own", "bidme-managed"] = "stripe"
    allow_unlinked_bids: bool = False
    unlinked_grace_hours: float = Field(24, ge=0)
    payment_link: str = "https://bidme.md/payment/success"
    bidme_fee_percent: float = Field(10, ge=0, le=100)
    currency: str = "usd"


class EnforcementConfig(_Section):
    require_payment_before_bid: bool = True
    strikethrough_unlinked: bool = True


class TrackingConfig(_Section):
    append_utm: bool = True
    utm_params: str = "source=bidme&repo={owner}/{repo}"


class ContentGuidelines(_Section):
    prohibited: tuple[str, ...] = ("adult content", "gambling", "misleading claims")
    required: tuple[str, ...] = ()


class Config(_Section):
    bidding: BiddingConfig = BiddingConfig()
    banner: BannerConfig = BannerConfig()
    approval: ApprovalConfig = ApprovalConfig()
    payment: PaymentConfig = PaymentConfig()
    enforcement: EnforcementConfig = EnforcementConfig()
    tracking: TrackingConfig = TrackingConfig()
    content_guidelines: ContentGuidelines = ContentGuidelines()


def build_config(data: dict[str, Any] | None = None) -> Config:
    try:
        return Config.model_validate(data or {})
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}", context={"errors": exc.errors()}) from exc


def load_config(target: pathlib.Path | str | None = None) -> Config:
    path = pathlib.Path(target or ".") / CONFIG_PATH
    if not path.exists():
        logger.info("No config at %s; using defaults", path)
        return Config()
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse {path}", context={"path": str(path)}) from exc
    if data is None:
        return Config()
    if not isinstance(data, dict):
        raise ConfigError("Config must be a mapping", context={"path": str(path)})
    return build_config(data)
