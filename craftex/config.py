"""Configuration loading for CraftEx.

Settings live in ``~/.config/craftex/config.toml`` under a ``[trading]``
table. Set ``CRAFTEX_HOME`` to use a different directory.
"""

import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Optional

import toml
from pydantic import BaseModel, Field, ValidationError

from craftex.errors import ConfigError

logger = logging.getLogger(__name__)


class TradingSettings(BaseModel):
    """Admin-configurable trading limits and risk parameters."""

    min_trade_amount: Decimal = Field(
        default=Decimal("100"), ge=0, description="Smallest position size accepted"
    )
    max_leverage: int = Field(default=10, ge=1, description="Highest leverage accepted")
    liquidation_threshold_percent: float = Field(
        default=-95.0, lt=0, description="ROE at or below which a position is liquidated"
    )
    liquidation_residual_fraction: Decimal = Field(
        default=Decimal("0.05"), ge=0, le=1,
        description="Fraction of margin returned on liquidation",
    )
    starting_balance: Decimal = Field(
        default=Decimal("0"), ge=0, description="Balance of a newly registered account"
    )

    model_config = {"frozen": True}


def get_config_dir() -> Path:
    """Get the CraftEx configuration directory."""
    override = os.environ.get("CRAFTEX_HOME")
    if override:
        return Path(override)
    return Path.home() / ".config" / "craftex"


def get_db_path() -> Path:
    """Get the database path."""
    return get_config_dir() / "craftex.db"


def load_settings(config_path: Optional[Path] = None) -> TradingSettings:
    """Load trading settings from the TOML config file.

    Args:
        config_path: Explicit config file. Defaults to ``config.toml`` in
            the config directory.

    Returns:
        Parsed settings, or defaults when the file is missing or malformed.

    Raises:
        ConfigError: If a setting is out of range.
    """
    if config_path is None:
        config_path = get_config_dir() / "config.toml"

    if not config_path.exists():
        return TradingSettings()

    try:
        config = toml.load(config_path)
    except toml.TomlDecodeError as e:
        logger.warning("Ignoring malformed config %s: %s", config_path, e)
        return TradingSettings()

    try:
        return TradingSettings(**config.get("trading", {}))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid trading settings in {config_path}: {problems}") from e
