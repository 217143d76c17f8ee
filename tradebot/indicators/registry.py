"""Indicator registration table (name -> constructor)."""

import logging
from typing import Any, Callable, Dict

from ..exceptions import UnknownIndicatorError
from .base import Indicator
from .ema import EMA
from .rsi import RSI

logger = logging.getLogger(__name__)

INDICATORS: Dict[str, Callable[..., Indicator]] = {
    RSI.name: RSI,
    EMA.name: EMA,
}


def register_indicator(name: str, factory: Callable[..., Indicator]):
    """Add an indicator constructor to the table."""
    INDICATORS[name] = factory
    logger.debug("indicator_registered", extra={"indicator": name})


def create_indicator(name: str, **params: Any) -> Indicator:
    """Instantiate a registered indicator.

    Raises:
        UnknownIndicatorError: If ``name`` is not registered
    """
    try:
        factory = INDICATORS[name]
    except KeyError:
        raise UnknownIndicatorError(name) from None
    return factory(**params)
