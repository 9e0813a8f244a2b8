"""Pydantic models for Rugcheck.xyz API responses."""

from decimal import Decimal

from pydantic import BaseModel


class RugcheckRisk(BaseModel):
    """Individual risk detected by Rugcheck."""

    name: str
    description: str = ""
    level: str = "info"  # "warn", "danger", "info"
    score: int = 0


class RugcheckReport(BaseModel):
    """Full token report from Rugcheck.xyz.

    Authorities are None when renounced; any non-empty value means the
    creator can still mint / freeze.
    """

    mint: str = ""
    rugged: bool = False
    mint_authority: str | None = None
    freeze_authority: str | None = None
    mutable: bool = False
    score: int = 0
    risks: list[RugcheckRisk] = []
    token_name: str = ""
    token_symbol: str = ""
    supply: Decimal | None = None
