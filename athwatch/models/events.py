"""Derived (non-persisted) pipeline data."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class ATHEvent:
    """A new all-time high detected for one asset during one run."""
    asset_id: str
    symbol: str
    name: str
    new_ath: float
    previous_ath: float
    detected_at: datetime
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def percentage_increase(self) -> float:
        if self.previous_ath <= 0:
            return 0.0
        return (self.new_ath / self.previous_ath - 1) * 100
