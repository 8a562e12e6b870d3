"""
Scheduler for periodic portfolio risk monitoring using APScheduler.
Runs one risk cycle per interval over the portfolio and market data
returned by the configured providers.
"""
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional, Union

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR
import pytz
from sqlalchemy.orm import Session

from services.risk_manager.portfolio import Portfolio, MarketQuote
from services.risk_manager.repository import RiskActionRepository
from services.risk_manager.risk_service import RiskManagementService, RiskEvaluation

logger = logging.getLogger(__name__)

PortfolioProvider = Callable[[], Optional[Portfolio]]
MarketDataProvider = Callable[[], Union[Iterable[MarketQuote], Dict[int, MarketQuote]]]

JOB_ID = 'portfolio_risk_monitor'


class PortfolioFeed:
    """
    Latest portfolio and market quotes submitted to the service.

    The API writes it; the scheduled tick reads it from another thread.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._portfolio: Optional[Portfolio] = None
        self._quotes: Dict[int, MarketQuote] = {}

    def update(
        self,
        portfolio: Optional[Portfolio] = None,
        market_data: Optional[Iterable[MarketQuote]] = None,
    ):
        """Replace the portfolio and merge new quotes by item id."""
        with self._lock:
            if portfolio is not None:
                self._portfolio = portfolio
            for quote in market_data or []:
                self._quotes[quote.item_id] = quote

    def remove_position(self, position_id: str):
        """Drop a closed position from the stored portfolio."""
        with self._lock:
            if self._portfolio is None:
                return
            self._portfolio = Portfolio(
                positions=[p for p in self._portfolio.positions if p.id != position_id],
                total_value=self._portfolio.total_value,
                cash_balance=self._portfolio.cash_balance,
            )

    def portfolio(self) -> Optional[Portfolio]:
        with self._lock:
            return self._portfolio

    def market_data(self) -> Dict[int, MarketQuote]:
        with self._lock:
            return dict(self._quotes)


class RiskMonitorScheduler:
    """
    Manages the scheduled risk monitoring tick.

    APScheduler runs at most one tick at a time; missed ticks are coalesced.
    """

    def __init__(
        self,
        service: RiskManagementService,
        portfolio_provider: PortfolioProvider,
        market_data_provider: MarketDataProvider,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            service: Risk management service evaluated on every tick
            portfolio_provider: Returns the current portfolio
            market_data_provider: Returns the current market quotes
            session_factory: Opens a database session for storing issued actions (not stored if None)
        """
        self.service = service
        self.portfolio_provider = portfolio_provider
        self.market_data_provider = market_data_provider
        self.session_factory = session_factory
        self.last_evaluation: Optional[RiskEvaluation] = None

        self.scheduler = BackgroundScheduler(
            timezone=pytz.utc,
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 30
            }
        )

        self.scheduler.add_listener(self._job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._job_error_listener, EVENT_JOB_ERROR)

        logger.info("RiskMonitorScheduler initialized")

    def _job_executed_listener(self, event):
        """Log successful job execution."""
        logger.debug(f"Job {event.job_id} executed successfully")

    def _job_error_listener(self, event):
        """Log job execution errors."""
        logger.error(f"Job {event.job_id} failed with exception: {event.exception}")

    def monitor_job(self) -> Optional[RiskEvaluation]:
        """
        Job to run one risk cycle.

        Returns:
            The evaluation of this tick, or None when no portfolio was submitted yet
        """
        try:
            portfolio = self.portfolio_provider()
            if portfolio is None:
                logger.debug("No portfolio to monitor yet")
                return None

            market_data = self.market_data_provider()
            evaluation = self.service.evaluate_portfolio_risk(portfolio, market_data)
            self.last_evaluation = evaluation

            if self.session_factory is not None and evaluation.all_actions:
                db = self.session_factory()
                try:
                    RiskActionRepository(db).save_actions(evaluation.all_actions)
                finally:
                    db.close()

            if evaluation.alerts:
                logger.warning(
                    f"Risk monitoring tick raised {len(evaluation.alerts)} alerts: "
                    f"{', '.join(a.type for a in evaluation.alerts)}"
                )
            return evaluation
        except Exception as e:
            logger.error(f"Error in risk monitoring tick: {e}")
            raise

    def setup_schedules(self):
        """Set up the monitoring job at the configured interval."""
        interval = self.service.config.monitor_interval_seconds
        self.scheduler.add_job(
            self.monitor_job,
            trigger=IntervalTrigger(seconds=interval),
            id=JOB_ID,
            name='Portfolio Risk Monitor',
            replace_existing=True
        )
        logger.info(f"Scheduled: Portfolio risk monitoring (every {interval}s)")

    def start(self):
        """Start the scheduler."""
        try:
            self.setup_schedules()
            self.scheduler.start()
            logger.info("Risk monitor started")
        except Exception as e:
            logger.error(f"Error starting risk monitor: {e}")
            raise

    def stop(self):
        """Stop the scheduler."""
        try:
            self.scheduler.shutdown(wait=True)
            logger.info("Risk monitor stopped")
        except Exception as e:
            logger.error(f"Error stopping risk monitor: {e}")
            raise

    def run_now(self):
        """Run the monitoring job as soon as possible."""
        job = self.scheduler.get_job(JOB_ID)
        if job:
            job.modify(next_run_time=datetime.now(pytz.utc))
        else:
            logger.error(f"Job {JOB_ID} not found")

    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self.scheduler.running
