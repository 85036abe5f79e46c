"""
EdgeCore Decision API

HTTP endpoints for evaluation cycles, outcome feedback, regime state,
threshold control and learning health.
"""

from fastapi import FastAPI, HTTPException, Query, Path as PathParam
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
import logging
import os

from edgecore.config import EdgeCoreConfig
from edgecore.learning_engine.schemas import OutcomeData
from edgecore.observability import TelemetryEventType, TelemetrySink
from edgecore.pipeline import DecisionPipeline, PipelineRegistry

LOG = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="EdgeCore Decision Engine API",
    description="REST API for regime-aware probabilistic trade decisions",
    version="1.0.0"
)

# Global instances
config = (
    EdgeCoreConfig.from_json_file(os.environ['EDGECORE_CONFIG'])
    if os.environ.get('EDGECORE_CONFIG') else EdgeCoreConfig()
)
telemetry = TelemetrySink(config.telemetry.log_file, config.telemetry.buffer_size)
registry = PipelineRegistry(config, telemetry)
started_at = datetime.now()

# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class CandleModel(BaseModel):
    """One OHLCV bar"""
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: float
    volume: float = 0.0
    timestamp: Optional[datetime] = None


class FactorModel(BaseModel):
    """One factor signal"""
    name: str = Field(..., description="Factor name")
    type: str = Field(..., description="Factor type (technical, pattern, volume, sentiment, ...)")
    strength: float = Field(..., description="Signal strength 1-10")
    confidence: float = Field(..., description="Confidence 0-1")
    signal: str = Field(..., description="buy or sell")
    weight: float = Field(default=1.0, description="Relative weight")
    description: Optional[str] = None


class EvaluateRequest(BaseModel):
    """Request to run one decision cycle"""
    symbol: str = Field(..., description="Trading symbol")
    candles: List[CandleModel] = Field(..., description="Recent candles, oldest first")
    factors: List[FactorModel] = Field(..., description="Factor signals for this cycle")
    confluence_score: float = Field(..., description="Confluence score of the factor set")
    current_price: Optional[float] = Field(None, description="Defaults to the last close")
    indicators: Optional[Dict[str, float]] = None
    news: Optional[List[Dict[str, Any]]] = None

    class Config:
        json_schema_extra = {
            "example": {
                "symbol": "EURUSD",
                "candles": [{"open": 1.1, "high": 1.101, "low": 1.099, "close": 1.1005, "volume": 1200}],
                "factors": [{"name": "rsi_divergence", "type": "technical", "strength": 8,
                             "confidence": 0.9, "signal": "buy"}],
                "confluence_score": 22.0
            }
        }


class OutcomeRequest(BaseModel):
    """Realized outcome of a signal"""
    symbol: str
    signal_id: str
    entry_price: float
    entry_time: datetime
    actual_return: float
    regime: str
    predicted_return: float = 0.0
    signal_strength: float = 0.0
    confluence_score: float = 0.0
    factor_types: List[str] = Field(default_factory=list)
    was_correct_direction: Optional[bool] = None
    exit_price: Optional[float] = None
    exit_time: Optional[datetime] = None
    holding_time_minutes: Optional[float] = None
    counterfactual: bool = False
    predicted_probability: Optional[float] = Field(None, description="Predicted win probability")


class AdjustRequest(BaseModel):
    """Forced threshold adjustment"""
    direction: str = Field(..., description="relax or tighten")
    intensity: float = Field(default=1.0, ge=0.0, description="Step multiplier")


class HealthResponse(BaseModel):
    """Service health response"""
    status: str
    uptime_seconds: float
    symbols_tracked: int
    symbols: List[str]
    telemetry_events: Dict[str, int]
    config_hash: str


# ============================================================================
# HELPERS
# ============================================================================

def _pipeline(symbol: str) -> DecisionPipeline:
    try:
        pipeline = registry.get(symbol)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if pipeline is None:
        raise HTTPException(status_code=404, detail=f"No pipeline found for {symbol}")
    return pipeline


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "EdgeCore Decision Engine API",
        "version": "1.0.0",
        "status": "online",
        "endpoints": {
            "evaluate": "/evaluate",
            "outcomes": "/outcomes",
            "regime": "/regime/{symbol}",
            "thresholds": "/thresholds/{symbol}",
            "learning_health": "/learning/{symbol}/health",
            "telemetry": "/telemetry",
            "health": "/health",
            "config": "/config"
        }
    }


@app.get("/health", response_model=HealthResponse)
async def get_health():
    """Overall service health"""
    return HealthResponse(
        status="healthy",
        uptime_seconds=(datetime.now() - started_at).total_seconds(),
        symbols_tracked=len(registry),
        symbols=registry.symbols(),
        telemetry_events=telemetry.get_event_counts(),
        config_hash=config.get_config_hash()
    )


@app.get("/config")
async def get_config():
    """Active configuration"""
    return {
        "config_hash": config.get_config_hash(),
        "config_version": config.config_version,
        "config": config.to_dict()
    }


@app.post("/evaluate")
def evaluate(request: EvaluateRequest):
    """
    Run one decision cycle for a symbol.

    The pipeline for the symbol is created on first use.

    Returns:
        Decision output with regime, fusion result, gate decision and signal
    """
    try:
        pipeline = registry.get_or_create(request.symbol)
        output = pipeline.evaluate_cycle(
            candles=[c.model_dump(exclude_none=True) for c in request.candles],
            factors=[f.model_dump(exclude_none=True) for f in request.factors],
            confluence_score=request.confluence_score,
            current_price=request.current_price,
            indicators=request.indicators,
            news=request.news,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return output.to_dict()


@app.post("/outcomes")
def report_outcome(request: OutcomeRequest):
    """Report the realized outcome of a signal"""
    pipeline = _pipeline(request.symbol)
    data = request.model_dump(exclude={'symbol', 'predicted_probability'}, exclude_none=True)
    try:
        outcome = OutcomeData.from_dict(data)
        recorded = pipeline.report_outcome(outcome, predicted_probability=request.predicted_probability)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "symbol": pipeline.symbol,
        "signal_id": request.signal_id,
        "recorded": recorded,
        "duplicate": not recorded
    }


@app.get("/regime/{symbol}")
async def get_regime(symbol: str = PathParam(..., description="Trading symbol")):
    """Current market regime for symbol"""
    return _pipeline(symbol).get_current_regime().to_dict()


@app.get("/regime/{symbol}/statistics")
async def get_regime_statistics(symbol: str = PathParam(..., description="Trading symbol")):
    """Transition history, durations, factor performance and adaptive weights"""
    pipeline = _pipeline(symbol)
    return pipeline.regime_engine.get_regime_statistics().to_dict()


@app.get("/thresholds/{symbol}")
async def get_thresholds(symbol: str = PathParam(..., description="Trading symbol")):
    """Current adaptive thresholds"""
    return _pipeline(symbol).get_thresholds().to_dict()


@app.post("/thresholds/{symbol}/adjust")
def adjust_thresholds(request: AdjustRequest, symbol: str = PathParam(..., description="Trading symbol")):
    """Force a relax or tighten step, bypassing the adaptation cadence"""
    pipeline = _pipeline(symbol)
    try:
        thresholds = pipeline.force_threshold_adjustment(request.direction, request.intensity)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return thresholds.to_dict()


@app.post("/thresholds/{symbol}/reset")
def reset_thresholds(symbol: str = PathParam(..., description="Trading symbol")):
    """Restore default thresholds"""
    return _pipeline(symbol).reset_thresholds().to_dict()


@app.get("/thresholds/{symbol}/analytics")
async def get_threshold_analytics(symbol: str = PathParam(..., description="Trading symbol")):
    """Rejection and signal density analytics with recommendations"""
    return _pipeline(symbol).get_threshold_analytics()


@app.get("/learning/{symbol}/health")
async def get_learning_health(symbol: str = PathParam(..., description="Trading symbol")):
    """Learning system health tier, issues and recommendations"""
    pipeline = _pipeline(symbol)
    health = pipeline.learning_engine.get_system_health()
    return {
        **health.to_dict(),
        "metrics": pipeline.learning_engine.performance.metrics.to_dict()
    }


@app.get("/learning/{symbol}/recommendations")
async def get_learning_recommendations(symbol: str = PathParam(..., description="Trading symbol")):
    """Proposed parameter changes (not applied) and counterfactual analysis"""
    learning = _pipeline(symbol).learning_engine
    return {
        "optimizations": [o.to_dict() for o in learning.get_optimization_recommendations()],
        "counterfactual": [c.to_dict() for c in learning.get_counterfactual_analysis()],
        "parameters": learning.get_parameters(),
        "adaptation_history": [a.to_dict() for a in learning.get_adaptation_history()]
    }


@app.post("/learning/{symbol}/recalibrate")
def recalibrate(symbol: str = PathParam(..., description="Trading symbol")):
    """Force a recalibration and push applied changes to the engines"""
    records = _pipeline(symbol).recalibrate()
    return {
        "applied": [r.to_dict() for r in records],
        "count": len(records)
    }


@app.get("/telemetry")
async def get_telemetry(
    event_type: Optional[str] = Query(None, description="Filter by event type"),
    symbol: Optional[str] = Query(None, description="Filter by symbol"),
    limit: int = Query(100, ge=1, le=1000, description="Number of records to return")
):
    """Recent telemetry records"""
    try:
        kind = TelemetryEventType(event_type) if event_type else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown event type: {event_type}")
    records = telemetry.get_recent(event_type=kind, limit=limit, symbol=symbol.upper() if symbol else None)
    return {
        "count": len(records),
        "records": [r.to_dict() for r in records]
    }
