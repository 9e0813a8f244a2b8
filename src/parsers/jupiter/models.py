"""Pydantic models for Jupiter Price API v2 responses."""

from decimal import Decimal

from pydantic import BaseModel


class JupiterPrice(BaseModel):
    """Price data for a single token from Jupiter."""

    id: str  # mint address
    type: str = ""  # "derivedPrice" | "buyPrice"
    price: Decimal
