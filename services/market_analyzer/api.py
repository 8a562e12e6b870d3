"""
FastAPI endpoints for Market Analyzer Service.
Provides REST API for item analysis and flipping opportunity scans.
"""
from fastapi import FastAPI, Depends, Query
from pydantic import BaseModel, Field
from typing import Optional, List
from sqlalchemy.orm import Session

from shared.configs.config import get_settings
from shared.configs.loader import load_market_analyzer_config
from shared.database.connection import get_db, init_db
from shared.monitoring.structured_logger import setup_service_logger
from services.market_analyzer.analysis_service import TradingAnalysisService
from services.market_analyzer.metrics_normalizer import MarketSnapshot
from services.market_analyzer.repository import OpportunityRepository

settings = get_settings()
logger = setup_service_logger(
    "services.market_analyzer",
    level=settings.log_level,
    log_file=settings.log_file,
    json_format=settings.log_format == "json",
)

app = FastAPI(
    title="Market Analyzer Service API",
    description="Grand Exchange item analysis and flipping opportunity ranking service",
    version="1.0.0"
)

config = load_market_analyzer_config(settings.config_dir)
analysis_service = TradingAnalysisService(config)


# Pydantic models for API
class SnapshotRequest(BaseModel):
    """Market snapshot model."""
    item_id: int = Field(..., gt=0, description="OSRS item id")
    item_name: Optional[str] = Field(None, description="Item name")
    timestamp: int = Field(0, ge=0, description="Observation time (epoch ms)")
    high_price: Optional[float] = Field(None, ge=0, description="Instant-sell price (gp)")
    low_price: Optional[float] = Field(None, ge=0, description="Instant-buy price (gp)")
    volume: Optional[float] = Field(0, ge=0, description="Traded volume")
    source: Optional[str] = Field(None, description="Data source")

    def to_snapshot(self) -> MarketSnapshot:
        return MarketSnapshot(
            item_id=self.item_id,
            timestamp=self.timestamp,
            high_price=self.high_price,
            low_price=self.low_price,
            volume=self.volume,
            item_name=self.item_name,
            source=self.source,
        )


class AnalyzeRequest(BaseModel):
    """Analysis request: snapshot plus price history (oldest first)."""
    snapshot: SnapshotRequest
    history: List[float] = Field(default_factory=list, description="Prior prices, oldest first")


class ScanRequest(BaseModel):
    """Opportunity scan request."""
    items: List[AnalyzeRequest] = Field(..., description="Items to analyze")
    limit: Optional[int] = Field(None, ge=1, le=1000, description="Max opportunities returned")


class TrendingRequest(BaseModel):
    """Trending items request."""
    items: List[SnapshotRequest] = Field(..., description="Latest snapshot per item")
    limit: Optional[int] = Field(None, ge=1, le=1000, description="Max items returned")
    now_ms: Optional[int] = Field(None, ge=0, description="Current time (epoch ms)")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Market Analyzer Service",
        "version": "1.0.0",
        "status": "running",
        "min_profit_margin": config.min_profit_margin
    }


@app.post("/analyze")
async def analyze_item(request: AnalyzeRequest):
    """
    Analyze one item: metrics, consensus signal, flipping opportunity and summary.
    """
    analysis = analysis_service.analyze(request.snapshot.to_snapshot(), request.history)
    return analysis.to_dict()


@app.post("/opportunities/scan")
async def scan_opportunities(request: ScanRequest, db: Session = Depends(get_db)):
    """
    Analyze a batch of items and return ranked flipping opportunities.
    Surfaced opportunities are stored when persistence is enabled.
    """
    service = TradingAnalysisService(config, repository=OpportunityRepository(db))
    snapshots = [item.snapshot.to_snapshot() for item in request.items]
    history_map = {item.snapshot.item_id: item.history for item in request.items}

    opportunities = service.scan(snapshots, history_map, request.limit)

    return {
        "scanned": len(snapshots),
        "count": len(opportunities),
        "opportunities": [o.to_dict() for o in opportunities]
    }


@app.post("/opportunities/trending")
async def trending_items(request: TrendingRequest):
    """
    Rank items by how much they are trending: fresh data with a wide spread.
    """
    snapshots = [item.to_snapshot() for item in request.items]
    items = analysis_service.find_trending(snapshots, request.limit, request.now_ms)

    return {
        "count": len(items),
        "items": items
    }


@app.post("/metrics/batch")
async def batch_metrics(request: ScanRequest):
    """
    Normalize many items and report which snapshots could not be scored.
    """
    snapshots = [item.snapshot.to_snapshot() for item in request.items]
    history_map = {item.snapshot.item_id: item.history for item in request.items}

    result = analysis_service.normalizer.normalize_batch(snapshots, history_map)

    return {
        "success_count": result["success_count"],
        "failure_count": result["failure_count"],
        "failed": result["failed"],
        "metrics": {str(item_id): bundle.to_dict() for item_id, bundle in result["results"].items()}
    }


@app.get("/opportunities")
async def get_opportunities(
    limit: int = Query(50, ge=1, le=1000),
    risk_level: Optional[str] = Query(None, pattern="^(LOW|MEDIUM|HIGH|low|medium|high)$"),
    min_profit_percent: Optional[float] = None,
    db: Session = Depends(get_db)
):
    """
    Get recently surfaced flipping opportunities.
    """
    repository = OpportunityRepository(db)
    records = repository.get_recent_opportunities(limit, risk_level, min_profit_percent)

    return {
        "count": len(records),
        "opportunities": [
            {
                "item_id": r.item_id,
                "item_name": r.item_name,
                "buy_price": r.buy_price,
                "sell_price": r.sell_price,
                "net_profit_gp": r.net_profit_gp,
                "net_profit_percent": r.net_profit_percent,
                "ge_tax_amount": r.ge_tax_amount,
                "is_tax_free": r.is_tax_free,
                "risk_level": r.risk_level,
                "risk_score": r.risk_score,
                "expected_profit_per_hour": r.expected_profit_per_hour,
                "time_to_flip": r.time_to_flip,
                "signal_type": r.signal_type,
                "tags": r.tags or [],
                "detected_at": r.detected_at
            }
            for r in records
        ]
    }


if __name__ == "__main__":
    import uvicorn
    init_db()
    uvicorn.run(app, host="0.0.0.0", port=8010)
