"""CoinGecko market data provider implementation."""
import math
import httpx
from datetime import datetime
from typing import Any, List, Optional
from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)
import logging
from athwatch.providers import MarketDataProvider, SourceMalformed, SourceUnavailable
from athwatch.providers.models import MarketQuote
from athwatch.core.config import settings


logger = logging.getLogger(__name__)

# CoinGecko caps /coins/markets at 250 results per page
MAX_PER_PAGE = 250


class CoinGeckoProvider(MarketDataProvider):
    """CoinGecko implementation of the market data source."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: int = 3,
        retry_wait=None
    ):
        self.api_key = api_key or settings.coingecko_api_key
        self.base_url = (base_url or settings.coingecko_base_url).rstrip("/")
        self.client = httpx.AsyncClient(timeout=timeout or settings.market_fetch_timeout_seconds)
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=2, max=10)

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key
        return headers

    async def _make_request(self, url: str, params: dict) -> Any:
        """Make HTTP request with retry logic for transient failures.

        Retries timeouts and connection errors with exponential backoff.
        HTTP status errors are not retried.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        ):
            with attempt:
                response = await self.client.get(url, params=params, headers=self._headers())
                response.raise_for_status()
        try:
            return response.json()
        except ValueError as e:
            raise SourceMalformed(f"CoinGecko returned a non-JSON body: {e}")

    async def get_top_assets(self, limit: int) -> List[MarketQuote]:
        """
        Fetch the top ``limit`` assets by market cap from /coins/markets.

        Entries that cannot be parsed are skipped individually; only an
        unreadable response fails the whole fetch.
        """
        per_page = min(limit, MAX_PER_PAGE)
        pages = math.ceil(limit / per_page)
        url = f"{self.base_url}/coins/markets"

        quotes: List[MarketQuote] = []
        try:
            for page in range(1, pages + 1):
                params = {
                    "vs_currency": "usd",
                    "order": "market_cap_desc",
                    "per_page": str(per_page),
                    "page": str(page),
                    "sparkline": "false",
                }
                data = await self._make_request(url, params)

                if not isinstance(data, list):
                    raise SourceMalformed(
                        f"CoinGecko /coins/markets returned {type(data).__name__}, expected list"
                    )

                page_quotes = self._parse_quotes(data)
                logger.debug(f"Page {page}: parsed {len(page_quotes)}/{len(data)} entries")
                quotes.extend(page_quotes)

                if len(data) < per_page:
                    break

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code == 429:
                raise SourceUnavailable(
                    "CoinGecko API rate limit exceeded (429). Please wait before making more requests."
                )
            raise SourceUnavailable(f"CoinGecko API error: HTTP {status_code}")
        except httpx.TimeoutException as e:
            raise SourceUnavailable(f"CoinGecko API timeout after retries: {str(e)}")
        except httpx.HTTPError as e:
            raise SourceUnavailable(f"CoinGecko API connection error: {str(e)}")

        quotes = quotes[:limit]
        logger.info(f"Retrieved {len(quotes)} assets from CoinGecko")
        return quotes

    def _parse_quotes(self, results: List[Any]) -> List[MarketQuote]:
        """Parse CoinGecko market entries into MarketQuote objects."""
        quotes = []

        for item in results:
            quote = self._parse_quote(item)
            if quote is None:
                logger.warning(f"Skipping malformed market entry: {str(item)[:200]}")
                continue
            quotes.append(quote)

        return quotes

    def _parse_quote(self, item: Any) -> Optional[MarketQuote]:
        if not isinstance(item, dict):
            return None

        coin_id = item.get("id")
        symbol = item.get("symbol")
        name = item.get("name")
        price = _as_float(item.get("current_price"))

        if not coin_id or not symbol or not name or price is None or price < 0:
            return None

        rank = item.get("market_cap_rank")
        if not isinstance(rank, int) or isinstance(rank, bool):
            rank = None

        return MarketQuote(
            id=str(coin_id),
            symbol=str(symbol).upper(),
            name=str(name),
            current_price=price,
            market_cap_rank=rank,
            source_ath=_as_float(item.get("ath")),
            last_updated=_parse_timestamp(item.get("last_updated"))
        )

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return float(value)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
