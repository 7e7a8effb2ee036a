from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class Quote:
    """Normalized exchange rate quote.

    Rates are Decimal to avoid float drift. `last_update` is whatever string
    the provider sent; it is never reparsed.
    """

    currency: str
    name: Optional[str]
    buy_rate: Decimal
    sell_rate: Decimal
    previous_close_rate: Decimal
    last_update: str

    def __post_init__(self) -> None:
        for field_name in ("buy_rate", "sell_rate", "previous_close_rate"):
            value = getattr(self, field_name)
            if not isinstance(value, Decimal):
                raise TypeError(f"{field_name} must be a Decimal")
            if value < 0:
                raise ValueError(f"{field_name} must not be negative")
        if not self.currency:
            raise ValueError("currency must not be empty")

    def to_json(self) -> str:
        # Decimals as strings so the round trip is exact
        return json.dumps(
            {
                "currency": self.currency,
                "name": self.name,
                "buy_rate": str(self.buy_rate),
                "sell_rate": str(self.sell_rate),
                "previous_close_rate": str(self.previous_close_rate),
                "last_update": self.last_update,
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, raw: str) -> "Quote":
        """Rebuild a quote from `to_json` output.

        Raises ValueError (json.JSONDecodeError is a subclass) on any malformed
        input so callers can treat every decoding problem the same way.
        """
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("cached quote is not a JSON object")
        try:
            return cls(
                currency=str(data["currency"]),
                name=data.get("name"),
                buy_rate=Decimal(data["buy_rate"]),
                sell_rate=Decimal(data["sell_rate"]),
                previous_close_rate=Decimal(data["previous_close_rate"]),
                last_update=str(data["last_update"]),
            )
        except (KeyError, TypeError, InvalidOperation) as e:
            raise ValueError(f"cached quote is incomplete: {e}") from e


class ProviderQuotePayload(BaseModel):
    """Quote as returned by DolarAPI (`/v1/cotacoes/{currency}`)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    currency: str = Field(..., alias="moeda", min_length=1)
    name: Optional[str] = Field(None, alias="nome")
    buy_rate: Decimal = Field(..., alias="compra", ge=0)
    sell_rate: Decimal = Field(..., alias="venda", ge=0)
    previous_close_rate: Decimal = Field(..., alias="fechoAnterior", ge=0)
    last_update: str = Field(..., alias="dataAtualizacao")

    def to_quote(self) -> Quote:
        return Quote(
            currency=self.currency.upper(),
            name=self.name,
            buy_rate=self.buy_rate,
            sell_rate=self.sell_rate,
            previous_close_rate=self.previous_close_rate,
            last_update=self.last_update,
        )


class QuoteResponse(BaseModel):
    """Public JSON shape for a quote.

    Rates are emitted as JSON strings ("6.125") so decimals survive exactly;
    clients parse them as decimals, not floats.
    """

    currencyCode: str
    currencyName: Optional[str] = None
    buyRate: Decimal
    sellRate: Decimal
    previousCloseRate: Decimal
    lastUpdate: str

    @classmethod
    def from_quote(cls, quote: Quote) -> "QuoteResponse":
        return cls(
            currencyCode=quote.currency,
            currencyName=quote.name,
            buyRate=quote.buy_rate,
            sellRate=quote.sell_rate,
            previousCloseRate=quote.previous_close_rate,
            lastUpdate=quote.last_update,
        )


class ErrorResponse(BaseModel):
    error: str
    message: str
