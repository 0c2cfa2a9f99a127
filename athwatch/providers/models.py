"""Data models exchanged with external providers."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional


@dataclass
class MarketQuote:
    """Current market data for one asset from the market-data source."""
    id: str
    symbol: str
    name: str
    current_price: float
    market_cap_rank: Optional[int]
    source_ath: Optional[float] = None  # ATH as reported by the source itself
    last_updated: Optional[datetime] = None


@dataclass
class EmailMessage:
    """Rendered email ready for submission to the sender."""
    to_address: str
    subject: str
    body_html: str
    body_text: str
    metadata: Dict[str, str] = field(default_factory=dict)
