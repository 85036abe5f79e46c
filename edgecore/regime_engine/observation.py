"""
Observation Builder

Turns the recent candle window, volume series and news items into one
normalized MarketObservation. Every ratio is guarded so short or
degenerate input yields neutral feature values instead of NaN.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from edgecore.regime_engine.config import ObservationConfig
from edgecore.regime_engine.schemas import MarketObservation
from edgecore.timeutils import ensure_utc

LOG = logging.getLogger(__name__)

CandleInput = Union[pd.DataFrame, Sequence[Mapping[str, Any]]]

REQUIRED_COLUMNS = ['open', 'high', 'low', 'close']


def candles_to_frame(candles: Optional[CandleInput]) -> pd.DataFrame:
    """
    Normalize candle input to a DataFrame with numeric OHLC(V) columns.

    Accepts a DataFrame or a list of mappings. Rows with a non-finite close
    are dropped; missing high/low/open fall back to the close.
    """
    if candles is None:
        return pd.DataFrame(columns=REQUIRED_COLUMNS)

    df = candles.copy() if isinstance(candles, pd.DataFrame) else pd.DataFrame(list(candles))
    df.columns = [str(c).lower() for c in df.columns]
    if df.empty or 'close' not in df.columns:
        return pd.DataFrame(columns=REQUIRED_COLUMNS)

    df['close'] = pd.to_numeric(df['close'], errors='coerce')
    for col in ('open', 'high', 'low'):
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors='coerce').fillna(df['close'])
        else:
            df[col] = df['close']
    if 'volume' in df.columns:
        df['volume'] = pd.to_numeric(df['volume'], errors='coerce').fillna(0.0)

    return df[np.isfinite(df['close'])]


def calculate_rsi(closes: np.ndarray, period: int = 14) -> float:
    """
    Simple-average RSI over the last `period` changes.

    Returns 50 with insufficient data or no price change at all.
    """
    if len(closes) < period + 1:
        return 50.0

    deltas = np.diff(closes[-(period + 1):])
    avg_gain = float(np.sum(np.clip(deltas, 0, None))) / period
    avg_loss = float(np.sum(np.clip(-deltas, 0, None))) / period

    if avg_gain == 0 and avg_loss == 0:
        return 50.0
    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def regression_slope(values: np.ndarray) -> float:
    """OLS slope of values against their index"""
    if len(values) < 2:
        return 0.0
    x = np.arange(len(values), dtype=float)
    x -= x.mean()
    # Offsetting by the first value keeps constant input at exactly zero
    y = np.asarray(values, dtype=float) - float(values[0])
    return float(np.sum(x * y) / np.sum(x * x))


def _news_sentiment(item: Any) -> Optional[float]:
    if isinstance(item, Mapping):
        value = item.get('sentiment')
    else:
        value = getattr(item, 'sentiment', None)
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return value if np.isfinite(value) else None


class ObservationBuilder:
    """Builds MarketObservation instances from raw market data"""

    def __init__(self, config: Optional[ObservationConfig] = None):
        self.config = config or ObservationConfig()

    def build(
        self,
        candles: Optional[CandleInput],
        volume: Optional[Sequence[float]] = None,
        indicators: Optional[Mapping[str, Any]] = None,
        news: Optional[Iterable[Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[MarketObservation]:
        """
        Build one observation from the most recent candles.

        Returns None when fewer than `min_candles` usable candles are present.
        """
        cfg = self.config
        df = candles_to_frame(candles)
        if len(df) < cfg.min_candles:
            LOG.debug(f"Insufficient candles for observation: {len(df)} < {cfg.min_candles}")
            return None

        window = df.tail(cfg.candle_lookback)
        closes = window['close'].to_numpy(dtype=float)
        highs = window['high'].to_numpy(dtype=float)
        lows = window['low'].to_numpy(dtype=float)

        returns = self._simple_returns(closes)
        price_move = float(np.clip(returns[-1], -0.1, 0.1)) if len(returns) else 0.0

        volatility = self._volatility(closes)
        volume_ratio = self._volume_ratio(window, volume)
        momentum = self._momentum(closes[-1], highs, lows)

        trend_window = closes[-cfg.trend_points:]
        mean_price = float(np.mean(trend_window))
        trend = regression_slope(trend_window) / mean_price * 1000.0 if mean_price > 0 else 0.0
        trend = float(np.clip(trend, -1.0, 1.0))

        rsi = self._rsi(closes, indicators)
        reversal = abs(rsi - 50.0) / 50.0 if (rsi > 70.0 or rsi < 30.0) else 0.0

        breakout = self._breakout(closes[-1], highs[:-1], lows[:-1])
        news_score = self._news(news)

        when = self._observation_time(df, timestamp)
        time_of_day = (when.hour * 60 + when.minute) / 1440.0
        day_of_week = when.weekday() / 6.0

        return MarketObservation(
            price_move=price_move,
            volatility=volatility,
            volume_ratio=volume_ratio,
            momentum=momentum,
            trend=trend,
            reversal=float(np.clip(reversal, 0.0, 1.0)),
            breakout=breakout,
            news=news_score,
            time_of_day=float(time_of_day),
            day_of_week=float(day_of_week),
            observed_at=when,
        )

    @staticmethod
    def _simple_returns(closes: np.ndarray) -> np.ndarray:
        prev = closes[:-1]
        with np.errstate(divide='ignore', invalid='ignore'):
            returns = np.where(prev > 0, np.diff(closes) / prev, 0.0)
        return np.nan_to_num(returns)

    def _volatility(self, closes: np.ndarray) -> float:
        cfg = self.config
        if len(closes) < 2:
            return 0.5
        prev, curr = closes[:-1], closes[1:]
        valid = (prev > 0) & (curr > 0)
        if not valid.any():
            return 0.5
        log_returns = np.log(curr[valid] / prev[valid])
        annualized = np.sqrt(np.mean(log_returns ** 2)) * np.sqrt(cfg.annualization_factor)
        return float(np.clip(annualized / cfg.volatility_scale, 0.0, 2.0))

    def _volume_ratio(self, window: pd.DataFrame, volume: Optional[Sequence[float]]) -> float:
        if volume is not None:
            series = np.asarray(pd.to_numeric(pd.Series(list(volume)), errors='coerce').dropna(), dtype=float)
        elif 'volume' in window.columns:
            series = window['volume'].to_numpy(dtype=float)
        else:
            return 1.0

        series = series[-self.config.candle_lookback:]
        if len(series) == 0:
            return 1.0
        avg = float(np.mean(series))
        if avg <= 0:
            return 1.0
        return float(np.clip(series[-1] / avg, 0.1, 3.0))

    @staticmethod
    def _momentum(close: float, highs: np.ndarray, lows: np.ndarray) -> float:
        highest, lowest = float(np.max(highs)), float(np.min(lows))
        span = highest - lowest
        if span <= 0:
            return 0.0
        position = (close - lowest) / span
        return float(np.clip((position - 0.5) * 2.0, -1.0, 1.0))

    def _rsi(self, closes: np.ndarray, indicators: Optional[Mapping[str, Any]]) -> float:
        if indicators and indicators.get('rsi') is not None:
            try:
                value = float(indicators['rsi'])
                if np.isfinite(value):
                    return float(np.clip(value, 0.0, 100.0))
            except (TypeError, ValueError):
                LOG.debug(f"Ignoring non-numeric RSI indicator: {indicators['rsi']!r}")
        return calculate_rsi(closes, self.config.rsi_period)

    def _breakout(self, close: float, prior_highs: np.ndarray, prior_lows: np.ndarray) -> float:
        """Penetration of the close beyond the prior bars' range, in percent / 5"""
        if len(prior_highs) == 0:
            return 0.0
        tol = self.config.breakout_tolerance
        range_high, range_low = float(np.max(prior_highs)), float(np.min(prior_lows))

        if range_high > 0 and close > range_high * (1 + tol):
            penetration = (close / range_high - 1.0) * 100.0
        elif close > 0 and close < range_low * (1 - tol):
            penetration = (range_low / close - 1.0) * 100.0
        else:
            penetration = 0.0
        return float(np.clip(penetration / 5.0, 0.0, 1.0))

    @staticmethod
    def _news(news: Optional[Iterable[Any]]) -> float:
        if not news:
            return 0.0
        scores = [s for s in (_news_sentiment(item) for item in news) if s is not None]
        if not scores:
            return 0.0
        return float(np.clip(np.mean(scores) / 10.0, -1.0, 1.0))

    @staticmethod
    def _observation_time(df: pd.DataFrame, timestamp: Optional[datetime]) -> datetime:
        if timestamp is not None:
            return ensure_utc(timestamp)
        if 'timestamp' in df.columns:
            last = pd.to_datetime(df['timestamp'].iloc[-1], utc=True, errors='coerce')
            if not pd.isna(last):
                return last.to_pydatetime()
        elif isinstance(df.index, pd.DatetimeIndex) and len(df.index):
            return ensure_utc(df.index[-1].to_pydatetime())
        return ensure_utc()
