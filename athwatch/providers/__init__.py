"""Abstract interfaces for market-data and email providers."""
from abc import ABC, abstractmethod
from typing import List, Optional

from athwatch.core.errors import (
    ErrorKind,
    RecipientSendFailed,
    SourceMalformed,
    SourceUnavailable,
)
from athwatch.providers.models import EmailMessage, MarketQuote


class MarketDataProvider(ABC):
    """Abstract base class for market data sources."""

    @abstractmethod
    async def get_top_assets(self, limit: int) -> List[MarketQuote]:
        """
        Fetch the top assets by market capitalization.

        Args:
            limit: Size of the ranked universe (e.g. 100)

        Returns:
            Quotes ordered by market cap rank

        Raises:
            SourceUnavailable: Network error, timeout or rate limiting
            SourceMalformed: Response could not be read
        """
        pass

    async def close(self):
        """Release provider resources."""
        pass


class EmailSendError(RecipientSendFailed):
    """Email submission rejected or failed.

    ``retryable`` tells external retry tooling whether a later attempt can
    succeed (rate limits, 5xx, network) or not (invalid address, 4xx).
    """

    def __init__(
        self,
        message: str,
        retryable: bool,
        status_code: Optional[int] = None,
        kind: ErrorKind = ErrorKind.RECIPIENT_SEND_FAILED
    ):
        super().__init__(message, kind)
        self.retryable = retryable
        self.status_code = status_code


class EmailSender(ABC):
    """Abstract base class for transactional email senders."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> str:
        """
        Submit a rendered message.

        Returns:
            Provider message id

        Raises:
            EmailSendError: Submission failed
        """
        pass

    async def close(self):
        """Release sender resources."""
        pass


__all__ = [
    "MarketDataProvider",
    "EmailSender",
    "EmailSendError",
    "SourceUnavailable",
    "SourceMalformed",
    "MarketQuote",
    "EmailMessage",
]
