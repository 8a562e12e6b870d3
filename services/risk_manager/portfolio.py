"""
Portfolio and risk action models for the risk manager.

Positions are open Grand Exchange holdings; market quotes carry the current
market state of an item; risk actions are the recommendations the risk
manager emits (it never executes trades itself).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Optional, Any

from shared.utilities.validators import coerce_number


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _number(data: Dict[str, Any], *keys: str, default: float = 0.0) -> float:
    value = coerce_number(_first(data, *keys))
    return default if value is None else value


class Urgency(str, Enum):
    """Risk action urgency."""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class RiskActionType(str, Enum):
    """Risk action types."""
    STOP_LOSS_TRIGGERED = "STOP_LOSS_TRIGGERED"
    TRAILING_STOP_UPDATE = "TRAILING_STOP_UPDATE"
    INCREASE_LIQUIDITY = "INCREASE_LIQUIDITY"
    ILLIQUID_POSITIONS = "ILLIQUID_POSITIONS"
    REDUCE_CONCENTRATION = "REDUCE_CONCENTRATION"
    EMERGENCY_STOP_LOSS = "EMERGENCY_STOP_LOSS"


@dataclass
class RiskAction:
    """Recommended risk management action."""
    type: RiskActionType
    urgency: Urgency
    reason: str
    position_id: Optional[str] = None
    item_id: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'type': self.type.value,
            'urgency': self.urgency.value,
            'reason': self.reason,
            'position_id': self.position_id,
            'item_id': self.item_id,
            'details': dict(self.details),
            'timestamp': self.timestamp,
        }


@dataclass
class MarketQuote:
    """Current market state of one item as seen by the risk manager."""
    item_id: int
    high_price: float
    low_price: float
    volume: float = 0.0
    margin_percent: float = 0.0
    volatility: float = 0.0

    @property
    def mid_price(self) -> float:
        return (self.high_price + self.low_price) / 2

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarketQuote":
        """Build a quote from camelCase or snake_case keys."""
        return cls(
            item_id=int(_first(data, 'item_id', 'itemId')),
            high_price=_number(data, 'high_price', 'highPrice'),
            low_price=_number(data, 'low_price', 'lowPrice'),
            volume=_number(data, 'volume'),
            margin_percent=_number(data, 'margin_percent', 'marginPercent'),
            volatility=_number(data, 'volatility'),
        )


@dataclass
class Position:
    """An open holding, refreshed from market data on every risk cycle."""
    id: str
    item_id: int
    quantity: int
    capital_invested: float
    entry_price: float
    entry_time: int  # epoch ms
    item_name: Optional[str] = None
    expected_margin: float = 0.0
    category: Optional[str] = None

    # Refreshed each cycle
    current_price: Optional[float] = None
    current_volume: float = 0.0
    current_margin: float = 0.0
    current_volatility: float = 0.0
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0
    holding_time: int = 0  # ms

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        """Build a position from camelCase or snake_case keys."""
        return cls(
            id=str(_first(data, 'id', 'position_id', 'positionId')),
            item_id=int(_first(data, 'item_id', 'itemId')),
            quantity=int(_number(data, 'quantity')),
            capital_invested=_number(data, 'capital_invested', 'capitalInvested'),
            entry_price=_number(data, 'entry_price', 'entryPrice'),
            entry_time=int(_number(data, 'entry_time', 'entryTime')),
            item_name=_first(data, 'item_name', 'itemName'),
            expected_margin=_number(data, 'expected_margin', 'expectedMargin'),
            category=_first(data, 'category'),
            current_price=coerce_number(_first(data, 'current_price', 'currentPrice')),
            current_volume=_number(data, 'current_volume', 'currentVolume'),
            current_margin=_number(data, 'current_margin', 'currentMargin'),
            current_volatility=_number(data, 'current_volatility', 'currentVolatility'),
            unrealized_pnl=_number(data, 'unrealized_pnl', 'unrealizedPnL'),
            unrealized_pnl_percent=_number(data, 'unrealized_pnl_percent', 'unrealizedPnLPercent'),
            holding_time=int(_number(data, 'holding_time', 'holdingTime')),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'id': self.id,
            'item_id': self.item_id,
            'item_name': self.item_name,
            'quantity': self.quantity,
            'capital_invested': self.capital_invested,
            'entry_price': self.entry_price,
            'entry_time': self.entry_time,
            'expected_margin': self.expected_margin,
            'category': self.category,
            'current_price': self.current_price,
            'current_volume': self.current_volume,
            'current_margin': self.current_margin,
            'current_volatility': self.current_volatility,
            'unrealized_pnl': self.unrealized_pnl,
            'unrealized_pnl_percent': self.unrealized_pnl_percent,
            'holding_time': self.holding_time,
        }


@dataclass
class Portfolio:
    """Open positions plus the cash held beside them."""
    positions: List[Position] = field(default_factory=list)
    total_value: float = 0.0
    cash_balance: float = 0.0
