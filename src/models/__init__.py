from src.models.base import Base
from src.models.token import TokenStatus, TrackedToken

__all__ = [
    "Base",
    "TokenStatus",
    "TrackedToken",
]
