"""
Stop-Loss Manager - Guards each open position with a stop-loss order.

- Creates an order on the first evaluation of a position, at a dynamic
  distance below the entry price (wider for volatile, old or thin positions)
- Triggers when the price falls to the stop, when the loss exceeds the
  maximum stop distance, or when a thin market holds a meaningful loss
- Ratchets a trailing stop upward as the price makes new highs; the stop
  price never moves down
"""
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, List, Optional, Iterator

from shared.configs.models import RiskManagerConfig
from services.risk_manager.portfolio import Position, MarketQuote, RiskAction, RiskActionType, Urgency

logger = logging.getLogger(__name__)

LOW_VOLUME_THRESHOLD = 1000
ILLIQUID_VOLUME_THRESHOLD = 100


class StopLossState(str, Enum):
    """Stop-loss order states. TRIGGERED is terminal."""
    ACTIVE = "ACTIVE"
    TRAILING_UPDATED = "TRAILING_UPDATED"
    TRIGGERED = "TRIGGERED"


@dataclass
class StopLossOrder:
    """Stop-loss order guarding one position."""
    position_id: str
    item_id: int
    stop_price: float
    stop_loss_percentage: float
    highest_price: float
    expected_loss: float
    trailing_enabled: bool = True
    state: StopLossState = StopLossState.ACTIVE
    created_at: int = 0
    last_update: int = 0

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        result = asdict(self)
        result['state'] = self.state.value
        return result


class StopLossBook:
    """
    Store of stop-loss orders keyed by position id.

    Each position id has its own lock: ticks touching the same position are
    serialized, ticks on different positions never block each other.
    """

    def __init__(self):
        self._orders: Dict[str, StopLossOrder] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @contextmanager
    def lock_for(self, position_id: str) -> Iterator[None]:
        """Hold the lock of one position id."""
        with self._registry_lock:
            lock = self._locks.setdefault(position_id, threading.Lock())
        with lock:
            yield

    def get(self, position_id: str) -> Optional[StopLossOrder]:
        return self._orders.get(position_id)

    def put(self, order: StopLossOrder) -> None:
        self._orders[order.position_id] = order

    def remove(self, position_id: str) -> None:
        """Forget a closed position."""
        with self._registry_lock:
            self._orders.pop(position_id, None)
            self._locks.pop(position_id, None)

    def snapshot(self) -> List[StopLossOrder]:
        """Current orders (shallow copy of the book)."""
        return list(self._orders.values())

    def __len__(self) -> int:
        return len(self._orders)


class StopLossManager:
    """Evaluates positions against their stop-loss orders."""

    def __init__(self, config: Optional[RiskManagerConfig] = None, book: Optional[StopLossBook] = None):
        """
        Initialize the stop-loss manager.

        Args:
            config: Risk manager configuration (defaults used if None)
            book: Order store (a new one if None)
        """
        self.config = config or RiskManagerConfig()
        self.book = book or StopLossBook()

    def calculate_dynamic_stop_loss(self, position: Position) -> float:
        """
        Stop distance for a new order.

        Starts at the default and widens x1.5 for high volatility, x1.2 for
        positions held over 80% of the max holding time and x1.3 for volume
        below 1000, each step capped at the maximum stop distance.
        """
        cfg = self.config
        percentage = cfg.default_stop_loss_percentage

        if (position.current_volatility or 0) > cfg.volatility_threshold:
            percentage = min(percentage * 1.5, cfg.max_stop_loss_percentage)
        if position.holding_time > cfg.max_holding_time * 0.8:
            percentage = min(percentage * 1.2, cfg.max_stop_loss_percentage)
        if position.current_volume < LOW_VOLUME_THRESHOLD:
            percentage = min(percentage * 1.3, cfg.max_stop_loss_percentage)

        return percentage

    def create_order(self, position: Position, now_ms: int) -> StopLossOrder:
        """Create the initial stop-loss order of a position."""
        percentage = self.calculate_dynamic_stop_loss(position)
        stop_price = position.entry_price * (1 - percentage)

        order = StopLossOrder(
            position_id=position.id,
            item_id=position.item_id,
            stop_price=stop_price,
            stop_loss_percentage=percentage,
            highest_price=position.current_price or position.entry_price,
            expected_loss=(position.entry_price - stop_price) * position.quantity,
            trailing_enabled=True,
            state=StopLossState.ACTIVE,
            created_at=now_ms,
            last_update=now_ms,
        )
        logger.info(
            f"Stop-loss created for position {position.id}: "
            f"stop {stop_price:,.1f} ({percentage:.1%} below entry {position.entry_price:,.0f})",
            extra={'position_id': position.id, 'item_id': position.item_id}
        )
        return order

    def check_trigger(self, position: Position, quote: MarketQuote, order: StopLossOrder) -> Optional[str]:
        """
        Check whether the stop-loss fires.

        Returns:
            Trigger reason, or None when the position is safe
        """
        cfg = self.config
        current_price = position.current_price if position.current_price is not None else quote.mid_price

        if current_price <= order.stop_price:
            return f"Price {current_price:,.1f} fell below stop-loss {order.stop_price:,.1f}"

        if position.unrealized_pnl_percent < -cfg.max_stop_loss_percentage * 100:
            return f"Unrealized loss {position.unrealized_pnl_percent:.2f}% exceeds maximum"

        if (quote.volume < ILLIQUID_VOLUME_THRESHOLD
                and position.unrealized_pnl_percent < -cfg.default_stop_loss_percentage * 100 * 0.5):
            return "Low liquidity with significant unrealized loss"

        return None

    def check_trailing_update(self, position: Position, quote: MarketQuote, order: StopLossOrder) -> Optional[float]:
        """
        New trailing stop price when the price made a new high.

        Returns:
            New stop price (always above the current stop), or None
        """
        if not order.trailing_enabled:
            return None

        current_price = position.current_price if position.current_price is not None else quote.mid_price
        if current_price <= order.highest_price:
            return None

        new_stop = current_price * (1 - self.config.trailing_stop_loss_percentage)
        if new_stop > order.stop_price:
            return new_stop
        return None

    def evaluate_position(
        self,
        position: Position,
        quote: MarketQuote,
        now_ms: Optional[int] = None,
    ) -> List[RiskAction]:
        """
        Run one stop-loss tick for a position.

        Args:
            position: Position with refreshed market fields
            quote: Current quote of the position's item
            now_ms: Tick time in epoch ms (now if None)

        Returns:
            STOP_LOSS_TRIGGERED (HIGH) or TRAILING_STOP_UPDATE (MEDIUM) actions;
            nothing once the order has triggered
        """
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        actions: List[RiskAction] = []

        with self.book.lock_for(position.id):
            order = self.book.get(position.id)
            if order is None or order.created_at < position.entry_time:
                # An order older than the entry belongs to an earlier trade on the same id
                order = self.create_order(position, now_ms)

            if order.state == StopLossState.TRIGGERED:
                return actions

            current_price = position.current_price if position.current_price is not None else quote.mid_price
            reason = self.check_trigger(position, quote, order)

            if reason:
                order.state = StopLossState.TRIGGERED
                order.last_update = now_ms
                actions.append(RiskAction(
                    type=RiskActionType.STOP_LOSS_TRIGGERED,
                    urgency=Urgency.HIGH,
                    reason=reason,
                    position_id=position.id,
                    item_id=position.item_id,
                    details={
                        'item_name': position.item_name,
                        'current_price': current_price,
                        'stop_loss_price': order.stop_price,
                        'expected_loss': order.expected_loss,
                    },
                    timestamp=now_ms,
                ))
                logger.warning(
                    f"Stop-loss triggered for position {position.id}: {reason}",
                    extra={'position_id': position.id, 'item_id': position.item_id}
                )
            else:
                new_stop = self.check_trailing_update(position, quote, order)
                if new_stop is not None:
                    old_stop = order.stop_price
                    order.stop_price = new_stop
                    order.highest_price = current_price
                    order.state = StopLossState.TRAILING_UPDATED
                    order.last_update = now_ms
                    actions.append(RiskAction(
                        type=RiskActionType.TRAILING_STOP_UPDATE,
                        urgency=Urgency.MEDIUM,
                        reason=f"New high {current_price:,.1f}: stop raised to {new_stop:,.1f}",
                        position_id=position.id,
                        item_id=position.item_id,
                        details={'old_stop_price': old_stop, 'new_stop_price': new_stop},
                        timestamp=now_ms,
                    ))
                    logger.info(
                        f"Trailing stop updated for position {position.id}: "
                        f"{old_stop:,.1f} -> {new_stop:,.1f}",
                        extra={'position_id': position.id, 'item_id': position.item_id}
                    )

            self.book.put(order)

        return actions
