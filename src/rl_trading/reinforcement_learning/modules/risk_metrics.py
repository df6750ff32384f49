"""
Risk metrics module for reward shaping and portfolio aggregation.
Handles Sharpe, Sortino, Calmar, VaR, CVaR and concentration calculations
over rolling windows. Every ratio guards its denominator against zero.
"""

import numpy as np
from typing import Iterable, Mapping, Sequence


SHARPE_WINDOW = 20
SORTINO_WINDOW = 30
CALMAR_WINDOW = 50
MIN_RATIO_SAMPLES = 10
MIN_VAR_SAMPLES = 20
SORTINO_NO_DOWNSIDE = 10.0


def _tail(values: Sequence[float], window: int) -> np.ndarray:
    array = np.asarray(values, dtype=np.float64)
    return array[-window:] if window else array


def sharpe_ratio(returns: Sequence[float], window: int = SHARPE_WINDOW,
                 min_samples: int = MIN_RATIO_SAMPLES) -> float:
    """
    Instantaneous Sharpe ratio: mean / population std of the last `window` returns.

    Args:
        returns: Rolling per-step returns
        window: Number of most recent returns used
        min_samples: Minimum history before a non-zero value is produced

    Returns:
        Ratio, or 0 when history is short or the returns are flat
    """
    if len(returns) < min_samples:
        return 0.0

    recent = _tail(returns, window)
    volatility = recent.std()

    return float(recent.mean() / volatility) if volatility > 0 else 0.0


def sortino_ratio(returns: Sequence[float], window: int = SORTINO_WINDOW,
                  min_samples: int = MIN_RATIO_SAMPLES) -> float:
    """
    Sortino ratio using downside-only deviation.

    With no negative return in the window the ratio is capped at
    SORTINO_NO_DOWNSIDE when the mean is positive, and 0 otherwise.
    """
    if len(returns) < min_samples:
        return 0.0

    recent = _tail(returns, window)
    mean_return = recent.mean()
    downside = recent[recent < 0]

    if downside.size == 0:
        return SORTINO_NO_DOWNSIDE if mean_return > 0 else 0.0

    downside_deviation = np.sqrt(np.mean(downside ** 2))
    return float(mean_return / downside_deviation) if downside_deviation > 0 else 0.0


def calmar_ratio(equity: Sequence[float], drawdowns: Sequence[float],
                 window: int = CALMAR_WINDOW, min_samples: int = MIN_RATIO_SAMPLES) -> float:
    """Total return over the window divided by the max drawdown over the same window"""
    if len(equity) < min_samples or len(drawdowns) == 0:
        return 0.0

    recent_equity = _tail(equity, window)
    start = recent_equity[0]
    if start == 0:
        return 0.0

    total_return = (recent_equity[-1] - start) / start
    max_dd = float(np.max(_tail(drawdowns, window)))

    return float(total_return / max_dd) if max_dd > 0 else 0.0


def value_at_risk(returns: Sequence[float], confidence: float = 0.95,
                  min_samples: int = MIN_VAR_SAMPLES) -> float:
    """
    Empirical VaR: magnitude of the sorted return at the (1 - confidence) quantile.
    """
    if len(returns) < min_samples:
        return 0.0

    ordered = np.sort(np.asarray(returns, dtype=np.float64))
    index = int(np.floor((1 - confidence) * len(ordered)))
    index = min(max(index, 0), len(ordered) - 1)

    return float(abs(ordered[index]))


def conditional_value_at_risk(returns: Sequence[float], confidence: float = 0.95,
                              min_samples: int = MIN_VAR_SAMPLES) -> float:
    """Historical CVaR: magnitude of the mean of returns at or below the VaR quantile"""
    if len(returns) < min_samples:
        return 0.0

    ordered = np.sort(np.asarray(returns, dtype=np.float64))
    index = int(np.floor((1 - confidence) * len(ordered)))
    index = min(max(index, 0), len(ordered) - 1)

    tail = ordered[ordered <= ordered[index]]
    return float(abs(tail.mean()))


def max_drawdown_from_equity(equity: Sequence[float]) -> float:
    """Largest peak-to-trough decline of an equity curve, as a fraction of the peak"""
    curve = np.asarray(equity, dtype=np.float64)
    if curve.size < 2:
        return 0.0

    peaks = np.maximum.accumulate(curve)
    with np.errstate(divide='ignore', invalid='ignore'):
        drawdowns = np.where(peaks > 0, (peaks - curve) / peaks, 0.0)

    return float(np.max(drawdowns))


def returns_from_equity(equity: Sequence[float]) -> np.ndarray:
    curve = np.asarray(equity, dtype=np.float64)
    if curve.size < 2:
        return np.array([], dtype=np.float64)

    previous = curve[:-1]
    safe_previous = np.where(previous != 0, previous, 1.0)
    return np.where(previous != 0, np.diff(curve) / safe_previous, 0.0)


def herfindahl_index(weights: Iterable[float]) -> float:
    """Sum of squared weights; 1.0 means fully concentrated"""
    array = np.asarray(list(weights), dtype=np.float64)
    return float(np.sum(array ** 2)) if array.size else 0.0


def diversification_score(positions: Mapping[str, float]) -> float:
    """1 - Herfindahl index of absolute position weights (0 for one or no position)"""
    sizes = np.abs(np.asarray(list(positions.values()), dtype=np.float64))
    if sizes.size <= 1:
        return 0.0

    total_exposure = sizes.sum()
    if total_exposure == 0:
        return 0.0

    return 1.0 - herfindahl_index(sizes / total_exposure)


def consistency_score(equity: Sequence[float], window: int = SHARPE_WINDOW,
                      min_samples: int = MIN_RATIO_SAMPLES) -> float:
    """1 - std of the returns over the recent equity window, floored at 0"""
    if len(equity) < min_samples:
        return 0.0

    recent_returns = returns_from_equity(_tail(equity, window))
    if recent_returns.size == 0:
        return 0.0

    return float(max(0.0, 1.0 - recent_returns.std()))


def linear_trend(values: Sequence[float]) -> float:
    """Least-squares slope of the values against their index"""
    if len(values) < 2:
        return 0.0

    y = np.asarray(values, dtype=np.float64)
    x = np.arange(len(y))
    return float(np.polyfit(x, y, 1)[0])
