"""
FastAPI endpoints for Risk Manager Service.
Provides REST API for portfolio risk evaluation, stop-loss management and risk parameters.
"""
from fastapi import FastAPI, HTTPException, Depends, Query
from pydantic import BaseModel, Field, ValidationError
from typing import Optional, List
from sqlalchemy.orm import Session

from shared.configs.config import get_settings
from shared.configs.loader import load_risk_manager_config
from shared.database.connection import get_db, init_db, SessionLocal
from shared.monitoring.structured_logger import setup_service_logger
from services.risk_manager.portfolio import Position, Portfolio, MarketQuote
from services.risk_manager.repository import RiskActionRepository
from services.risk_manager.risk_service import RiskManagementService, PositionNotFoundError
from services.risk_manager.scheduler import RiskMonitorScheduler, PortfolioFeed

settings = get_settings()
logger = setup_service_logger(
    "services.risk_manager",
    level=settings.log_level,
    log_file=settings.log_file,
    json_format=settings.log_format == "json",
)

app = FastAPI(
    title="Risk Manager Service API",
    description="Portfolio risk monitoring and stop-loss management for Grand Exchange flips",
    version="1.0.0"
)

risk_service = RiskManagementService(load_risk_manager_config(settings.config_dir))
portfolio_feed = PortfolioFeed()
risk_monitor: Optional[RiskMonitorScheduler] = None


# Pydantic models for API
class PositionRequest(BaseModel):
    """Open position model."""
    id: str = Field(..., min_length=1, description="Position id")
    item_id: int = Field(..., gt=0, description="OSRS item id")
    item_name: Optional[str] = None
    quantity: int = Field(..., gt=0, description="Units held")
    capital_invested: float = Field(..., ge=0, description="Capital invested (gp)")
    entry_price: float = Field(..., gt=0, description="Entry price per unit (gp)")
    entry_time: int = Field(..., ge=0, description="Entry time (epoch ms)")
    expected_margin: float = Field(0.0, description="Expected margin (%) at entry")
    category: Optional[str] = None

    def to_position(self) -> Position:
        return Position(
            id=self.id,
            item_id=self.item_id,
            quantity=self.quantity,
            capital_invested=self.capital_invested,
            entry_price=self.entry_price,
            entry_time=self.entry_time,
            item_name=self.item_name,
            expected_margin=self.expected_margin,
            category=self.category,
        )


class MarketQuoteRequest(BaseModel):
    """Current market state of an item."""
    item_id: int = Field(..., gt=0)
    high_price: float = Field(..., ge=0)
    low_price: float = Field(..., ge=0)
    volume: float = Field(0.0, ge=0)
    margin_percent: float = 0.0
    volatility: float = Field(0.0, ge=0)

    def to_quote(self) -> MarketQuote:
        return MarketQuote(**self.model_dump())


class PortfolioRiskRequest(BaseModel):
    """Portfolio risk evaluation request."""
    positions: List[PositionRequest] = Field(default_factory=list)
    total_value: float = Field(..., ge=0, description="Total portfolio value (gp)")
    cash_balance: float = Field(0.0, ge=0, description="Cash held (gp)")
    market_data: List[MarketQuoteRequest] = Field(default_factory=list)
    now_ms: Optional[int] = Field(None, ge=0, description="Evaluation time (epoch ms)")


class RiskParametersUpdate(BaseModel):
    """Risk parameters update model."""
    default_stop_loss_percentage: Optional[float] = Field(None, gt=0, le=0.5)
    trailing_stop_loss_percentage: Optional[float] = Field(None, gt=0, le=0.5)
    max_stop_loss_percentage: Optional[float] = Field(None, gt=0, le=0.9)
    max_position_risk: Optional[float] = Field(None, gt=0, le=1)
    max_portfolio_risk: Optional[float] = Field(None, gt=0, le=1)
    max_concentration_risk: Optional[float] = Field(None, gt=0, le=1)
    min_liquidity_buffer: Optional[float] = Field(None, ge=0, le=1)
    liquidity_risk_threshold: Optional[float] = Field(None, ge=0, le=1)
    max_holding_time: Optional[int] = Field(None, gt=0)
    volatility_threshold: Optional[float] = Field(None, gt=0)
    min_rebalance_interval: Optional[int] = Field(None, ge=0)


class EmergencyStopRequest(BaseModel):
    """Emergency stop-loss request."""
    reason: str = Field("Manual emergency stop", min_length=1)


class MarketDataUpdate(BaseModel):
    """Latest quotes for the scheduled risk tick."""
    market_data: List[MarketQuoteRequest] = Field(..., min_length=1)


@app.on_event("startup")
async def start_risk_monitor():
    """Start the periodic risk tick over the latest submitted portfolio."""
    global risk_monitor
    if not risk_service.config.monitor_enabled:
        logger.info("Risk monitor disabled")
        return

    risk_monitor = RiskMonitorScheduler(
        risk_service,
        portfolio_provider=portfolio_feed.portfolio,
        market_data_provider=portfolio_feed.market_data,
        session_factory=SessionLocal,
    )
    risk_monitor.start()


@app.on_event("shutdown")
async def stop_risk_monitor():
    """Stop the periodic risk tick."""
    global risk_monitor
    if risk_monitor is not None and risk_monitor.is_running():
        risk_monitor.stop()
    risk_monitor = None


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Risk Manager Service",
        "version": "1.0.0",
        "status": "running",
        "tracked_positions": len(risk_service.positions)
    }


@app.post("/portfolio/risk")
async def evaluate_portfolio_risk(request: PortfolioRiskRequest, db: Session = Depends(get_db)):
    """
    Run one risk cycle over the submitted portfolio and market data.
    Issued actions are stored.
    """
    portfolio = Portfolio(
        positions=[p.to_position() for p in request.positions],
        total_value=request.total_value,
        cash_balance=request.cash_balance,
    )
    quotes = [q.to_quote() for q in request.market_data]
    portfolio_feed.update(portfolio, quotes)

    evaluation = risk_service.evaluate_portfolio_risk(portfolio, quotes, request.now_ms)
    RiskActionRepository(db).save_actions(evaluation.all_actions)

    return evaluation.to_dict()


@app.put("/market-data")
async def update_market_data(request: MarketDataUpdate):
    """Store the latest quotes; the next scheduled tick evaluates against them."""
    portfolio_feed.update(market_data=[q.to_quote() for q in request.market_data])
    return {"message": "Market data updated", "count": len(request.market_data)}


@app.get("/risk-state")
async def get_risk_state():
    """Current positions, stop-loss orders, metrics and parameters."""
    return risk_service.get_risk_state()


@app.get("/risk-parameters")
async def get_risk_parameters():
    """Get current risk parameters."""
    return risk_service.config.model_dump()


@app.put("/risk-parameters")
async def update_risk_parameters(params: RiskParametersUpdate):
    """Update risk parameters."""
    changes = params.model_dump(exclude_none=True)
    try:
        config = risk_service.update_config(**changes)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {
        "message": "Risk parameters updated",
        "parameters": config.model_dump()
    }


@app.post("/positions/{position_id}/emergency-stop")
async def emergency_stop(position_id: str, request: EmergencyStopRequest, db: Session = Depends(get_db)):
    """Issue a CRITICAL exit for a tracked position."""
    try:
        action = risk_service.emergency_stop_loss(position_id, request.reason)
    except PositionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    RiskActionRepository(db).save_actions([action])
    return action.to_dict()


@app.delete("/positions/{position_id}")
async def close_position(position_id: str):
    """Stop tracking a closed position and drop its stop-loss order."""
    portfolio_feed.remove_position(position_id)
    if not risk_service.close_position(position_id):
        raise HTTPException(status_code=404, detail=f"Position {position_id} not found")

    return {"message": f"Position {position_id} closed"}


@app.get("/actions")
async def get_actions(
    limit: int = Query(50, ge=1, le=1000),
    position_id: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """Get recently issued risk actions."""
    records = RiskActionRepository(db).get_recent_actions(limit, position_id)

    return {
        "count": len(records),
        "actions": [
            {
                "type": r.action_type,
                "urgency": r.urgency,
                "reason": r.reason,
                "position_id": r.position_id,
                "item_id": r.item_id,
                "details": r.details or {},
                "issued_at": r.issued_at
            }
            for r in records
        ]
    }


if __name__ == "__main__":
    import uvicorn
    init_db()
    uvicorn.run(app, host="0.0.0.0", port=8011)
