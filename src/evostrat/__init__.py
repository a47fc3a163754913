"""Grammar-guided evolution and backtesting of rule-based trading strategies."""

from .backtest import Backtester, StrategyResult, compute_fitness, run_backtest
from .cache import IndicatorCache
from .catalog import FunctionDescriptor, FunctionRegistry, default_registry
from .compiler import VectorizedPlan, compile_tree
from .config import (
    EvolutionConfig,
    RiskConfig,
    StopLossKind,
    StopLossPolicy,
    TakeProfitKind,
    TakeProfitPolicy,
    load_config,
    save_config,
)
from .data import OhlcvDataset, load_csv, synthetic_bars
from .errors import (
    ConfigurationError,
    DatasetError,
    EvaluationError,
    EvoStratError,
    GenerationError,
    MetricError,
    ValidationError,
)
from .evolution import EvolutionEngine, GenerationSummary, Individual, run_evolution
from .expressions import FLAT, LONG, SHORT, Call, Const, Rule, ScaleKind, SemanticType, call, canonical
from .generator import SemanticMapper, generate
from .hall_of_fame import HallOfFame
from .metrics import Metric, MetricsEngine, calculate_all
from .robustness import (
    FrictionTest,
    MonteCarloTest,
    ParameterStabilityTest,
    RobustnessReport,
    TestResult,
    run_robustness_report,
)
from .simulator import Direction, ExitReason, Trade, TradeSimulator, simulate
from .strategies import SavedStrategy, load_hall_of_fame, load_strategy, save_hall_of_fame, save_strategy
from .validator import validate
from .walk_forward import WalkForwardReport, WalkForwardSplitter, WindowType, run_walk_forward

__all__ = [
    "Backtester",
    "StrategyResult",
    "compute_fitness",
    "run_backtest",
    "IndicatorCache",
    "FunctionDescriptor",
    "FunctionRegistry",
    "default_registry",
    "VectorizedPlan",
    "compile_tree",
    "EvolutionConfig",
    "RiskConfig",
    "StopLossKind",
    "StopLossPolicy",
    "TakeProfitKind",
    "TakeProfitPolicy",
    "load_config",
    "save_config",
    "OhlcvDataset",
    "load_csv",
    "synthetic_bars",
    "ConfigurationError",
    "DatasetError",
    "EvaluationError",
    "EvoStratError",
    "GenerationError",
    "MetricError",
    "ValidationError",
    "EvolutionEngine",
    "GenerationSummary",
    "Individual",
    "run_evolution",
    "FLAT",
    "LONG",
    "SHORT",
    "Call",
    "Const",
    "Rule",
    "ScaleKind",
    "SemanticType",
    "call",
    "canonical",
    "SemanticMapper",
    "generate",
    "HallOfFame",
    "Metric",
    "MetricsEngine",
    "calculate_all",
    "FrictionTest",
    "MonteCarloTest",
    "ParameterStabilityTest",
    "RobustnessReport",
    "TestResult",
    "run_robustness_report",
    "Direction",
    "ExitReason",
    "Trade",
    "TradeSimulator",
    "simulate",
    "SavedStrategy",
    "load_hall_of_fame",
    "load_strategy",
    "save_hall_of_fame",
    "save_strategy",
    "validate",
    "WalkForwardReport",
    "WalkForwardSplitter",
    "WindowType",
    "run_walk_forward",
]
