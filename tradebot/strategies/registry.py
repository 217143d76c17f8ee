"""Strategy registration table (name -> constructor)."""

import logging
from typing import Any, Callable, Dict, Optional

from ..exceptions import UnknownStrategyError
from ..indicators.base import Indicator
from ..indicators.registry import create_indicator
from .always_long import AlwaysLongStrategy
from .base import Strategy
from .dca import DCAStrategy
from .rsi_reversal import RSIReversalStrategy

logger = logging.getLogger(__name__)

STRATEGIES: Dict[str, Callable[..., Strategy]] = {
    AlwaysLongStrategy.name: AlwaysLongStrategy,
    RSIReversalStrategy.name: RSIReversalStrategy,
    DCAStrategy.name: DCAStrategy,
}


def register_strategy(name: str, factory: Callable[..., Strategy]):
    """Add a strategy constructor to the table."""
    STRATEGIES[name] = factory
    logger.debug("strategy_registered", extra={"strategy": name})


def create_strategy(name: str, params: Optional[Dict[str, Any]] = None) -> Strategy:
    """Instantiate a registered strategy with validated parameters.

    Raises:
        UnknownStrategyError: If ``name`` is not registered
        ValidationError: If a parameter is malformed
    """
    try:
        factory = STRATEGIES[name]
    except KeyError:
        raise UnknownStrategyError(name) from None
    return factory(params or {})


def build_indicators(strategy: Strategy) -> Dict[str, Indicator]:
    """Instantiate the indicators a strategy declares.

    Raises:
        UnknownIndicatorError: If a declared indicator is not registered
    """
    indicators = {}
    for alias, params in strategy.uses_indicators().items():
        params = dict(params)
        indicator_type = params.pop("type", alias)
        indicators[alias] = create_indicator(indicator_type, **params)
    return indicators


def required_warmup(strategy: Strategy, indicators: Dict[str, Indicator]) -> int:
    """Candles needed before the first decision: the largest of all warm-ups."""
    return max([strategy.warmup_candles(), 1] + [i.warmup for i in indicators.values()])
