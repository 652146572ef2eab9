"""Shared Pydantic base models."""

from pydantic import BaseModel, ConfigDict


class StrictBaseModel(BaseModel):
    """Base model with strict, immutable defaults."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class InboundRecordModel(BaseModel):
    """Base model for records handed over by the scraper.

    Frozen like the stored models, but unknown keys (thumbnail URLs, cover
    art, etc.) are ignored rather than rejected.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)
