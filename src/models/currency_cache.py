"""
Durable tier of the exchange rate cache.
"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base


class CurrencyCacheEntry(Base):
    """
    Key/value row backing the far tier of the rate cache.

    Keys:
    - rates:<BASE>                  -> {"base": "USD", "rates": {"EUR": "0.85", ...}}
    - convert:<AMOUNT>:<FROM>:<TO>  -> {"amount": "85.00", "from": ..., "to": ..., "is_estimated": false}

    Freshness is judged from fetched_at against the configured TTL.
    """

    __tablename__ = "currency_cache"

    cache_key: Mapped[str] = mapped_column(
        String(120),
        primary_key=True,
    )
    payload: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
    )
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    is_fallback: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="True when the payload came from the bundled static table",
    )

    def __repr__(self) -> str:
        return f"<CurrencyCacheEntry(key='{self.cache_key}', fallback={self.is_fallback})>"
