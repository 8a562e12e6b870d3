"""
Database models for the OSRS flip engine.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, Text, Index, BigInteger, JSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class MarketSnapshotRecord(Base):
    """One observed market state of a Grand Exchange item."""
    __tablename__ = "market_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    item_id = Column(Integer, nullable=False, index=True, comment="OSRS item id")
    item_name = Column(String(100), comment="Item name")
    timestamp = Column(BigInteger, nullable=False, comment="Observation time (epoch ms)")
    high_price = Column(BigInteger, nullable=False, comment="Instant-sell price (gp)")
    low_price = Column(BigInteger, nullable=False, comment="Instant-buy price (gp)")
    volume = Column(BigInteger, default=0, comment="Traded volume")
    source = Column(String(50), comment="Data source")

    # Derived metrics at collection time
    margin_gp = Column(Float, comment="Tax-adjusted margin (gp)")
    margin_percent = Column(Float, comment="Tax-adjusted margin (%)")
    risk_score = Column(Float, comment="Risk score (0-100)")
    volatility = Column(Float, comment="Volatility of log returns (%)")
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_market_snapshots_item_timestamp', 'item_id', 'timestamp'),
    )


class FlippingOpportunityRecord(Base):
    """A surfaced flipping opportunity."""
    __tablename__ = "flipping_opportunities"

    id = Column(Integer, primary_key=True, index=True)
    item_id = Column(Integer, nullable=False, index=True)
    item_name = Column(String(100))
    buy_price = Column(BigInteger, nullable=False, comment="Price to buy at (gp)")
    sell_price = Column(BigInteger, nullable=False, comment="Price to sell at (gp)")
    gross_profit_gp = Column(Float)
    net_profit_gp = Column(Float, comment="Profit after GE tax (gp)")
    net_profit_percent = Column(Float, comment="Profit after GE tax (%)")
    ge_tax_amount = Column(Integer)
    is_tax_free = Column(Boolean, default=False)
    risk_level = Column(String(10), index=True, comment="LOW, MEDIUM, HIGH")
    risk_score = Column(Float)
    expected_profit_per_hour = Column(Float)
    time_to_flip = Column(Float, comment="Estimated minutes per flip")
    signal_type = Column(String(10), comment="BUY, SELL, HOLD")
    signal_strength = Column(Float)
    signal_confidence = Column(Float)
    tags = Column(JSON, default=list)
    detected_at = Column(BigInteger, nullable=False, comment="Detection time (epoch ms)")
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_flipping_opportunities_item_detected', 'item_id', 'detected_at'),
    )


class RiskActionRecord(Base):
    """A risk management action recommended for a position."""
    __tablename__ = "risk_actions"

    id = Column(Integer, primary_key=True, index=True)
    action_type = Column(String(40), nullable=False, index=True)
    position_id = Column(String(64), index=True)
    item_id = Column(Integer, index=True)
    urgency = Column(String(10), nullable=False, comment="CRITICAL, HIGH, MEDIUM, LOW")
    reason = Column(Text)
    details = Column(JSON, default=dict)
    issued_at = Column(BigInteger, nullable=False, comment="Issue time (epoch ms)")
    created_at = Column(DateTime, default=datetime.utcnow)
