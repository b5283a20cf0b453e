"""Price tick data model."""

from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field


class PriceTick(BaseModel):
    """A single observed price for a symbol."""

    symbol: str = Field(..., min_length=1, description="Traded instrument code")
    price: Decimal = Field(..., gt=0, description="Observed price")
    timestamp: datetime = Field(
        default_factory=datetime.now, description="Observation timestamp"
    )

    model_config = {"frozen": True}
