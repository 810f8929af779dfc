"""
Trading and prediction metrics used by the backtest evaluator.
"""

from typing import Dict, Sequence

import numpy as np
import pandas as pd

from ..config import TRADING_DAYS_PER_YEAR


def compute_trading_metrics(
    pnl: Sequence[float],
    periods_per_year: int = TRADING_DAYS_PER_YEAR
) -> Dict[str, float]:
    """
    Compute trading performance metrics from per-trade P&L.

    Args:
        pnl: P&L of each closed trade, in account currency
        periods_per_year: annualisation factor for the Sharpe-like ratio

    Returns:
        Dict with:
            - total_trades: Total number of trades
            - profitable_trades: Trades with P&L > 0
            - win_rate: Share of profitable trades
            - total_profit: Sum of P&L
            - avg_profit: Mean P&L per trade
            - sharpe_ratio: mean/std of P&L * sqrt(periods_per_year)
            - max_drawdown: Maximum peak-to-trough of cumulative P&L
            - profit_factor: Gross profit / Gross loss
    """
    pnl = np.asarray(pnl, dtype=float)

    if len(pnl) == 0:
        return {
            "total_trades": 0,
            "profitable_trades": 0,
            "win_rate": 0.0,
            "total_profit": 0.0,
            "avg_profit": 0.0,
            "sharpe_ratio": 0.0,
            "max_drawdown": 0.0,
            "profit_factor": 0.0,
        }

    total_trades = len(pnl)
    winners = pnl > 0
    losers = pnl < 0

    # Sharpe ratio (no risk-free rate); undefined for a single trade
    std = pnl.std(ddof=1) if total_trades > 1 else 0.0
    sharpe_ratio = pnl.mean() / std * np.sqrt(periods_per_year) if std > 0 else 0.0

    # Max drawdown, starting from a flat equity line
    cumulative = np.concatenate([[0.0], np.cumsum(pnl)])
    running_max = np.maximum.accumulate(cumulative)
    max_drawdown = (running_max - cumulative).max()

    gross_profit = pnl[winners].sum() if winners.any() else 0.0
    gross_loss = abs(pnl[losers].sum()) if losers.any() else 0.0
    profit_factor = gross_profit / gross_loss if gross_loss > 0 else np.inf

    return {
        "total_trades": int(total_trades),
        "profitable_trades": int(winners.sum()),
        "win_rate": float(winners.mean()),
        "total_profit": float(pnl.sum()),
        "avg_profit": float(pnl.mean()),
        "sharpe_ratio": float(sharpe_ratio),
        "max_drawdown": float(max_drawdown),
        "profit_factor": float(profit_factor),
    }


def directional_accuracy(predicted: pd.Series, actual: pd.Series) -> Dict[str, float]:
    """
    Accuracy of direction calls over rows whose actual outcome is not HOLD.

    Args:
        predicted: Predicted direction per row ("BUY"/"SELL"/"HOLD")
        actual: Realised direction per row

    Returns:
        Dict with valid, correct and accuracy
    """
    mask = actual != "HOLD"
    valid = int(mask.sum())
    correct = int((predicted[mask] == actual[mask]).sum())
    return {
        "valid": valid,
        "correct": correct,
        "accuracy": correct / valid if valid > 0 else 0.0,
    }
