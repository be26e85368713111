"""
Client for the external exchange-rate provider.

Two calls:
    GET {rates_endpoint}?source=EUR                  -> {"rates": {"USD": 1.08, ...}}
    GET {convert_endpoint}?amount=10&from=EUR&to=USD -> {"result": 10.8}

Any failure (timeout, connection error, non-2xx, unexpected body) is
raised as ExternalUnavailableError. Callers decide what to fall back to.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

import httpx

from src.config import settings
from src.services.errors import ExternalUnavailableError

logger = logging.getLogger(__name__)


class ExchangeRateClient:
    """Thin async wrapper around the provider's HTTP API."""

    def __init__(
        self,
        rates_url: Optional[str] = None,
        convert_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rates_url = rates_url or settings.rates_endpoint
        self.convert_url = convert_url or settings.convert_endpoint
        self.timeout = timeout if timeout is not None else settings.exchange_timeout_seconds
        # Injected in tests (httpx.MockTransport)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _get_json(self, url: str, params: dict) -> dict:
        try:
            async with self._client() as client:
                resp = await client.get(url, params=params)
                resp.raise_for_status()
                return resp.json()

        except httpx.TimeoutException as e:
            logger.warning(f"Exchange rate provider timeout after {self.timeout}s: {e}")
            raise ExternalUnavailableError("Exchange rate provider timed out") from e

        except httpx.ConnectError as e:
            logger.warning(f"Exchange rate provider connection error: {e}")
            raise ExternalUnavailableError("Exchange rate provider unreachable") from e

        except httpx.HTTPStatusError as e:
            logger.warning(f"Exchange rate provider returned {e.response.status_code}")
            raise ExternalUnavailableError(
                f"Exchange rate provider returned {e.response.status_code}"
            ) from e

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Exchange rate provider error: {e}")
            raise ExternalUnavailableError(str(e)) from e

    async def fetch_rates(self, base: str) -> Dict[str, Decimal]:
        """Rate table: units of each currency per 1 `base`."""
        data = await self._get_json(self.rates_url, {"source": base})

        rates = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(rates, dict) or not rates:
            raise ExternalUnavailableError("Exchange rate provider returned an unexpected result")

        try:
            table = {
                str(code).upper(): Decimal(str(value))
                for code, value in rates.items()
                if value is not None
            }
        except InvalidOperation as e:
            raise ExternalUnavailableError("Exchange rate provider returned a non-numeric rate") from e

        table[base] = Decimal("1")
        logger.info(f"Fetched {len(table)} exchange rates for base {base}")
        return table

    async def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        """Direct conversion of an amount."""
        data = await self._get_json(
            self.convert_url,
            {"amount": str(amount), "from": from_currency, "to": to_currency},
        )

        result = data.get("result") if isinstance(data, dict) else None
        if isinstance(result, bool) or not isinstance(result, (int, float, str)):
            raise ExternalUnavailableError("Conversion API returned an unexpected result")
        try:
            return Decimal(str(result))
        except InvalidOperation as e:
            raise ExternalUnavailableError("Conversion API returned a non-numeric result") from e
