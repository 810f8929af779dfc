"""
FX Signal Engine

Signal generation and evaluation for forex and metals: technical heuristics,
a recurrent sequence classifier, chart-pattern and historical-analog
detection, walk-forward backtesting, and risk-managed signal fusion.
"""

__version__ = "1.0.0"
__author__ = "FX Signal Team"
