"""Pydantic models for Helius Enhanced Transaction and DAS API responses."""

from decimal import Decimal

from pydantic import BaseModel


class HeliusTokenTransfer(BaseModel):
    """Token transfer within a transaction."""

    from_user_account: str = ""
    to_user_account: str = ""
    token_amount: Decimal = Decimal("0")
    mint: str = ""


class HeliusInstruction(BaseModel):
    """Top-level instruction of a parsed transaction."""

    program_id: str = ""
    accounts: list[str] = []
    data: str = ""


class HeliusTransaction(BaseModel):
    """Enhanced parsed transaction from Helius."""

    signature: str
    type: str = ""  # "TRANSFER", "SWAP", "CREATE_POOL", etc.
    source: str = ""  # "RAYDIUM", "ORCA", "JUPITER", etc.
    fee_payer: str = ""
    timestamp: int = 0  # unix
    token_transfers: list[HeliusTokenTransfer] = []
    instructions: list[HeliusInstruction] = []
    transaction_error: str | dict | None = None  # non-None means failed


class TokenMetadata(BaseModel):
    """Subset of a DAS asset used to enrich tracked tokens."""

    mint: str
    name: str = "Unknown"
    symbol: str = ""
    supply: Decimal = Decimal("0")  # UI units (raw supply / 10**decimals)
