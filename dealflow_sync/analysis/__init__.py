"""
Analysis adapters: transcript analysis engine and deal momentum models.
"""

from dealflow_sync.analysis.engine import (
    AnalysisEngine,
    OpenAIAnalysisEngine,
    parse_analysis_response,
)
from dealflow_sync.analysis.momentum_model import (
    HeuristicMomentumModel,
    MomentumModel,
    OpenAIMomentumModel,
    classify_trend,
    parse_momentum_response,
)

__all__ = [
    "AnalysisEngine",
    "OpenAIAnalysisEngine",
    "parse_analysis_response",
    "HeuristicMomentumModel",
    "MomentumModel",
    "OpenAIMomentumModel",
    "classify_trend",
    "parse_momentum_response",
]
