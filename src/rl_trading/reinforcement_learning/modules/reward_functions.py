"""
Reward engine for reinforcement learning trading agents

Turns one (prev_state, action, new_state, execution) transition into a
bounded scalar reward plus an auditable breakdown: risk-adjusted returns,
risk penalties, transaction costs, behavioural incentives, regime bonuses
and a curiosity bonus. Rolling statistics feed an adaptive weighting loop.
"""

from collections import Counter
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

import numpy as np

from . import risk_metrics
from .data_classes import (
    Action, ActionType, EnvironmentState, ExecutionResult, MarketCondition,
    PerformanceMetrics, RewardComponents, coerce_enum
)
from .exceptions import ConfigurationError
from ...utils.logger import setup_logger

logger = setup_logger(__name__)

# Rolling statistics buffers
ROLLING_CAP = 1000
ROLLING_TRIM = 500
# Reward breakdown history
HISTORY_CAP = 10000
HISTORY_TRIM = 5000

# Adaptive controller thresholds and multiplier caps
ADAPTIVE_SHARPE_FLOOR = 0.5
ADAPTIVE_DRAWDOWN_CEILING = 0.15
ADAPTIVE_VOLATILITY_FLOOR = 0.1
RISK_MULTIPLIER_STEP, RISK_MULTIPLIER_CAP = 1.2, 2.0
DRAWDOWN_MULTIPLIER_STEP, DRAWDOWN_MULTIPLIER_CAP = 1.3, 3.0
RETURN_MULTIPLIER_STEP, RETURN_MULTIPLIER_CAP = 1.1, 2.0

MIN_VOLATILITY = 0.01
KNOWN_OBJECTIVES = ('return', 'risk', 'sharpe', 'drawdown')


class RewardType(Enum):
    """Base reward modes."""
    PROFIT_BASED = "profit_based"
    SHARPE_BASED = "sharpe_based"
    RISK_ADJUSTED = "risk_adjusted"
    MULTI_OBJECTIVE = "multi_objective"
    SPARSE = "sparse"
    DENSE = "dense"


class RiskMeasure(Enum):
    """Risk measures that can be penalised or reported."""
    DRAWDOWN = "drawdown"
    VOLATILITY = "volatility"
    VAR = "var"
    CVAR = "cvar"
    SORTINO = "sortino"
    CALMAR = "calmar"


@dataclass
class RewardConfig:
    """
    Reward engine configuration.

    Sortino and Calmar are reported in `risk_components` only; they carry no
    penalty threshold. Objective weights missing for an objective default to 1.
    """
    type: RewardType = RewardType.RISK_ADJUSTED

    # Base reward parameters
    return_weight: float = 1.0
    risk_weight: float = 0.5
    transaction_cost_weight: float = 0.1

    # Risk measures and penalties
    risk_measures: List[RiskMeasure] = field(
        default_factory=lambda: [RiskMeasure.DRAWDOWN, RiskMeasure.VOLATILITY]
    )
    max_drawdown_threshold: float = 0.1
    volatility_threshold: float = 0.2
    var_threshold: float = 0.05
    cvar_threshold: float = 0.07
    var_confidence_level: float = 0.95

    # Multi-objective parameters
    objectives: List[str] = field(default_factory=lambda: ['return', 'risk'])
    objective_weights: List[float] = field(default_factory=lambda: [0.7, 0.3])

    # Sparse reward settings
    profit_threshold: float = 0.05
    loss_threshold: float = -0.1

    # Behavioural incentives
    holding_reward: float = 0.001
    diversification_reward: float = 0.01
    consistency_reward: float = 0.005

    # Dynamic adjustment
    adaptive_weighting: bool = True
    performance_window: int = 100

    # Regime multipliers, keyed by market condition
    condition_specific_rewards: Dict[MarketCondition, float] = field(default_factory=dict)

    curiosity_reward: float = 0.001

    def __post_init__(self):
        try:
            self.type = coerce_enum(RewardType, self.type)
            self.risk_measures = [coerce_enum(RiskMeasure, m) for m in self.risk_measures]
            self.condition_specific_rewards = {
                coerce_enum(MarketCondition, k): float(v)
                for k, v in self.condition_specific_rewards.items()
            }
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        self.objectives = [str(o).lower() for o in self.objectives]
        self.objective_weights = [float(w) for w in self.objective_weights]

    def validate(self):
        if self.return_weight < 0 or self.risk_weight < 0 or self.transaction_cost_weight < 0:
            raise ConfigurationError("Reward weights must be non-negative")
        if not 0 < self.var_confidence_level < 1:
            raise ConfigurationError(
                f"var_confidence_level must be in (0, 1), got {self.var_confidence_level}"
            )
        for name in ('max_drawdown_threshold', 'volatility_threshold', 'var_threshold', 'cvar_threshold'):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be non-negative")
        unknown = [o for o in self.objectives if o not in KNOWN_OBJECTIVES]
        if unknown:
            raise ConfigurationError(f"Unknown objectives: {unknown}")
        if len(self.objective_weights) > len(self.objectives):
            raise ConfigurationError(
                f"{len(self.objective_weights)} objective weights for {len(self.objectives)} objectives"
            )
        if self.profit_threshold < self.loss_threshold:
            raise ConfigurationError("profit_threshold must not be below loss_threshold")
        if self.performance_window <= 0:
            raise ConfigurationError(f"performance_window must be positive, got {self.performance_window}")
        if self.curiosity_reward < 0:
            raise ConfigurationError("curiosity_reward must be non-negative")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base: Optional['RewardConfig'] = None) -> 'RewardConfig':
        values = asdict(base) if base is not None else {}
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown reward config keys: {sorted(unknown)}")
        values.update(data)
        config = cls(**values)
        config.validate()
        return config


class RewardEngine:
    """
    Multi-objective risk-adjusted reward calculator.

    Each engine owns its rolling statistics, exploration counters and
    adaptive multipliers; nothing is shared between instances.
    """

    def __init__(self, config: Optional[RewardConfig] = None,
                 normalizer: Optional[Callable[[float], float]] = None):
        self.config = config or RewardConfig()
        self.config.validate()
        self.normalizer = normalizer or np.tanh

        self._returns: List[float] = []
        self._equity: List[float] = []
        self._drawdowns: List[float] = []
        self._volatility = 0.0

        self._reward_history: List[RewardComponents] = []
        self._visit_counts: Counter = Counter()
        self._multipliers = self._initial_multipliers()

    @staticmethod
    def _initial_multipliers() -> Dict[str, float]:
        return {'return': 1.0, 'risk': 1.0, 'drawdown': 1.0}

    @property
    def multipliers(self) -> Dict[str, float]:
        """Current adaptive multipliers (return, risk, drawdown)"""
        return dict(self._multipliers)

    # ------------------------------------------------------------------ #
    # Public reward API
    # ------------------------------------------------------------------ #

    def calculate_reward(self, action: Action, prev_state: EnvironmentState,
                         new_state: EnvironmentState, execution_result: Any = None) -> RewardComponents:
        """
        Calculate the reward breakdown for one transition.

        Args:
            action: Action that was executed
            prev_state: State before execution
            new_state: State after execution
            execution_result: {success, commission, slippage} mapping or object

        Returns:
            RewardComponents with the total and normalized reward
        """
        execution = ExecutionResult.from_any(execution_result)
        return_rate = self._return_rate(prev_state, new_state)

        self._record_performance(return_rate, new_state)

        base_reward = self._base_reward(return_rate, new_state)
        risk_components = self._risk_components(new_state)
        risk_penalty = self._risk_penalty(new_state)
        transaction_cost = self._transaction_cost(execution)
        behavioral_incentive = self._behavioral_incentives(action, prev_state, new_state)
        condition_bonus = self._condition_bonus(new_state.condition, base_reward)
        curiosity_bonus = (
            self.calculate_exploration_reward(prev_state, action)
            if self.config.curiosity_reward > 0 else 0.0
        )
        objectives = self._objective_components(return_rate, new_state)

        if self.config.adaptive_weighting:
            total_reward = (
                base_reward * self._multipliers['return']
                - risk_penalty * self._multipliers['risk']
                - transaction_cost + behavioral_incentive + condition_bonus + curiosity_bonus
            )
        else:
            total_reward = (
                base_reward - risk_penalty - transaction_cost
                + behavioral_incentive + condition_bonus + curiosity_bonus
            )

        if not np.isfinite(total_reward):
            logger.warning(f"Non-finite reward computed ({total_reward}), clamping to 0")
            total_reward = 0.0

        components = RewardComponents(
            base_reward=float(base_reward),
            risk_penalty=float(risk_penalty),
            transaction_cost=float(transaction_cost),
            behavioral_incentive=float(behavioral_incentive),
            condition_bonus=float(condition_bonus),
            curiosity_bonus=float(curiosity_bonus),
            total_reward=float(total_reward),
            normalized_reward=float(self.normalizer(total_reward)),
            return_component=float(base_reward),
            risk_components=risk_components,
            objectives=objectives,
            explanation=self._explain(base_reward, risk_penalty, transaction_cost, behavioral_incentive)
        )

        self._reward_history.append(components)
        if len(self._reward_history) > HISTORY_CAP:
            self._reward_history = self._reward_history[-HISTORY_TRIM:]

        return components

    def calculate_sparse_reward(self, final_state: EnvironmentState,
                                episode_metrics: Mapping[str, Any]) -> float:
        """
        Episode-level reward: 100x the total return above the profit threshold,
        200x below the loss threshold, 0 in between.
        """
        total_return = float(episode_metrics.get('total_return', 0.0))

        if total_return > self.config.profit_threshold:
            return total_return * 100
        if total_return < self.config.loss_threshold:
            return total_return * 200

        return 0.0

    def calculate_exploration_reward(self, state: EnvironmentState, action: Action) -> float:
        """Curiosity bonus decaying with the visit count of a coarse (state, action) key"""
        key = f"{self._encode_state(state)}-{action.type.value}-{int(np.floor(action.size * 10 + 0.5))}"

        visit_count = self._visit_counts[key]
        self._visit_counts[key] = visit_count + 1

        return self.config.curiosity_reward / np.sqrt(visit_count + 1)

    def update_reward_function(self, recent_performance: PerformanceMetrics):
        """Drift the adaptive multipliers from recent performance"""
        if not self.config.adaptive_weighting:
            return

        if recent_performance.sharpe_ratio < ADAPTIVE_SHARPE_FLOOR:
            self._multipliers['risk'] = min(
                RISK_MULTIPLIER_CAP, self._multipliers['risk'] * RISK_MULTIPLIER_STEP
            )

        if recent_performance.max_drawdown > ADAPTIVE_DRAWDOWN_CEILING:
            self._multipliers['drawdown'] = min(
                DRAWDOWN_MULTIPLIER_CAP, self._multipliers['drawdown'] * DRAWDOWN_MULTIPLIER_STEP
            )

        if recent_performance.volatility < ADAPTIVE_VOLATILITY_FLOOR:
            self._multipliers['return'] = min(
                RETURN_MULTIPLIER_CAP, self._multipliers['return'] * RETURN_MULTIPLIER_STEP
            )

        logger.debug(f"Adaptive reward multipliers updated: {self._multipliers}")

    # ------------------------------------------------------------------ #
    # Statistics
    # ------------------------------------------------------------------ #

    def get_performance_metrics(self) -> PerformanceMetrics:
        return self._metrics_over(self._returns, self._equity, self._drawdowns)

    def recent_performance(self, window: Optional[int] = None) -> PerformanceMetrics:
        """Metrics over the last `window` samples (defaults to performance_window)"""
        window = window or self.config.performance_window
        return self._metrics_over(self._returns[-window:], self._equity[-window:], self._drawdowns[-window:])

    def _metrics_over(self, returns: List[float], equity: List[float],
                      drawdowns: List[float]) -> PerformanceMetrics:
        confidence = self.config.var_confidence_level
        return PerformanceMetrics(
            returns=list(returns),
            equity=list(equity),
            drawdowns=list(drawdowns),
            volatility=self._volatility,
            sharpe_ratio=risk_metrics.sharpe_ratio(returns),
            sortino_ratio=risk_metrics.sortino_ratio(returns),
            calmar_ratio=risk_metrics.calmar_ratio(equity, drawdowns),
            max_drawdown=float(max(drawdowns)) if drawdowns else 0.0,
            value_at_risk=risk_metrics.value_at_risk(returns, confidence),
            conditional_var=risk_metrics.conditional_value_at_risk(returns, confidence)
        )

    def get_reward_statistics(self) -> Dict[str, Any]:
        if not self._reward_history:
            return {
                'average_reward': 0.0,
                'reward_volatility': 0.0,
                'reward_trend': 0.0,
                'component_breakdown': {},
                'reward_distribution': [],
                'exploration_stats': {}
            }

        rewards = np.array([r.total_reward for r in self._reward_history])
        component_breakdown = {
            name: float(np.mean([getattr(r, name) for r in self._reward_history]))
            for name in ('base_reward', 'risk_penalty', 'transaction_cost', 'behavioral_incentive')
        }
        visits = list(self._visit_counts.values())

        return {
            'average_reward': float(rewards.mean()),
            'reward_volatility': float(rewards.std()),
            'reward_trend': risk_metrics.linear_trend(rewards[-100:]),
            'component_breakdown': component_breakdown,
            'reward_distribution': rewards.tolist(),
            'exploration_stats': {
                'unique_states_visited': len(visits),
                'average_visit_count': float(np.mean(visits)) if visits else 0.0,
                'max_visit_count': max(visits, default=0)
            }
        }

    def reset(self):
        """Clear rolling statistics and reward history"""
        self._returns.clear()
        self._equity.clear()
        self._drawdowns.clear()
        self._volatility = 0.0
        self._reward_history.clear()

    # ------------------------------------------------------------------ #
    # Components
    # ------------------------------------------------------------------ #

    @staticmethod
    def _return_rate(prev_state: EnvironmentState, new_state: EnvironmentState) -> float:
        if prev_state.equity == 0:
            return 0.0
        return (new_state.equity - prev_state.equity) / prev_state.equity

    def _record_performance(self, return_rate: float, new_state: EnvironmentState):
        self._returns.append(return_rate)
        self._equity.append(new_state.equity)
        self._drawdowns.append(new_state.drawdown)
        self._volatility = new_state.volatility

        if len(self._returns) > ROLLING_CAP:
            self._returns = self._returns[-ROLLING_TRIM:]
            self._equity = self._equity[-ROLLING_TRIM:]
            self._drawdowns = self._drawdowns[-ROLLING_TRIM:]

    def _base_reward(self, return_rate: float, new_state: EnvironmentState) -> float:
        reward_type = self.config.type
        return_weight = self.config.return_weight

        if reward_type == RewardType.SPARSE:
            return 0.0
        if reward_type == RewardType.SHARPE_BASED:
            return risk_metrics.sharpe_ratio(self._returns) * return_weight
        if reward_type == RewardType.RISK_ADJUSTED:
            return return_rate / max(MIN_VOLATILITY, new_state.volatility) * return_weight
        if reward_type == RewardType.MULTI_OBJECTIVE:
            return self._multi_objective_reward(return_rate, new_state)
        if reward_type == RewardType.DENSE:
            return return_rate * return_weight * 100

        return return_rate * return_weight

    def _multi_objective_reward(self, return_rate: float, new_state: EnvironmentState) -> float:
        weights = self.config.objective_weights
        total = 0.0

        for i, objective in enumerate(self.config.objectives):
            weight = weights[i] if i < len(weights) else 1.0
            if objective == 'return':
                value = return_rate
            elif objective in ('risk', 'drawdown'):
                value = -new_state.drawdown
            else:
                value = risk_metrics.sharpe_ratio(self._returns)
            total += value * weight

        return total

    def _risk_components(self, state: EnvironmentState) -> Dict[str, float]:
        confidence = self.config.var_confidence_level
        components = {}

        for measure in self.config.risk_measures:
            if measure == RiskMeasure.DRAWDOWN:
                value = state.drawdown
            elif measure == RiskMeasure.VOLATILITY:
                value = state.volatility
            elif measure == RiskMeasure.VAR:
                value = risk_metrics.value_at_risk(self._returns, confidence)
            elif measure == RiskMeasure.CVAR:
                value = risk_metrics.conditional_value_at_risk(self._returns, confidence)
            elif measure == RiskMeasure.SORTINO:
                value = risk_metrics.sortino_ratio(self._returns)
            else:
                value = risk_metrics.calmar_ratio(self._equity, self._drawdowns)
            components[measure.value] = float(value)

        return components

    def _risk_penalty(self, state: EnvironmentState) -> float:
        cfg = self.config
        confidence = cfg.var_confidence_level
        penalty = 0.0

        for measure in cfg.risk_measures:
            if measure == RiskMeasure.DRAWDOWN:
                excess = max(0.0, state.drawdown - cfg.max_drawdown_threshold)
                if cfg.adaptive_weighting:
                    excess *= self._multipliers['drawdown']
            elif measure == RiskMeasure.VOLATILITY:
                excess = max(0.0, state.volatility - cfg.volatility_threshold)
            elif measure == RiskMeasure.VAR:
                excess = max(0.0, risk_metrics.value_at_risk(self._returns, confidence) - cfg.var_threshold)
            elif measure == RiskMeasure.CVAR:
                excess = max(
                    0.0, risk_metrics.conditional_value_at_risk(self._returns, confidence) - cfg.cvar_threshold
                )
            else:
                continue
            penalty += excess * cfg.risk_weight

        return penalty

    def _transaction_cost(self, execution: ExecutionResult) -> float:
        if not execution.success:
            return 0.0
        return (execution.commission + execution.slippage) * self.config.transaction_cost_weight

    def _behavioral_incentives(self, action: Action, prev_state: EnvironmentState,
                               new_state: EnvironmentState) -> float:
        cfg = self.config
        incentive = 0.0

        # Holding stability
        if action.type == ActionType.HOLD and cfg.holding_reward > 0 and prev_state.equity != 0:
            stability = 1 - abs(new_state.equity - prev_state.equity) / prev_state.equity
            incentive += stability * cfg.holding_reward

        if cfg.diversification_reward > 0:
            incentive += risk_metrics.diversification_score(new_state.positions) * cfg.diversification_reward

        if cfg.consistency_reward > 0 and len(self._equity) > risk_metrics.MIN_RATIO_SAMPLES:
            incentive += risk_metrics.consistency_score(self._equity) * cfg.consistency_reward

        return incentive

    def _condition_bonus(self, condition: MarketCondition, base_reward: float) -> float:
        multiplier = self.config.condition_specific_rewards.get(condition, 1.0)
        return base_reward * (multiplier - 1.0)

    def _objective_components(self, return_rate: float, new_state: EnvironmentState) -> Dict[str, float]:
        objectives = {}
        for objective in self.config.objectives:
            if objective == 'return':
                objectives['return'] = return_rate
            elif objective in ('risk', 'drawdown'):
                objectives[objective] = -new_state.drawdown
            elif objective == 'sharpe':
                objectives['sharpe'] = risk_metrics.sharpe_ratio(self._returns)
        return objectives

    @staticmethod
    def _encode_state(state: EnvironmentState) -> str:
        def bucket(values: np.ndarray) -> int:
            return int(np.floor(values[0] * 10 + 0.5)) if values.size else 0

        return f"{bucket(state.market_features)}-{bucket(state.portfolio_state)}-{bucket(state.risk_metrics)}"

    @staticmethod
    def _explain(base_reward: float, risk_penalty: float, transaction_cost: float,
                 behavioral_incentive: float) -> str:
        parts = []
        if abs(base_reward) > 0.001:
            parts.append(f"Base: {base_reward:.4f}")
        if abs(risk_penalty) > 0.001:
            parts.append(f"Risk: -{risk_penalty:.4f}")
        if abs(transaction_cost) > 0.001:
            parts.append(f"Cost: -{transaction_cost:.4f}")
        if abs(behavioral_incentive) > 0.001:
            parts.append(f"Behavior: +{behavioral_incentive:.4f}")
        return ', '.join(parts) or 'No significant components'


# Default reward configurations
DEFAULT_REWARD_CONFIGS: Dict[str, RewardConfig] = {
    'balanced': RewardConfig(
        type=RewardType.RISK_ADJUSTED,
        return_weight=1.0,
        risk_weight=0.5,
        transaction_cost_weight=0.1,
        risk_measures=[RiskMeasure.DRAWDOWN, RiskMeasure.VOLATILITY],
        max_drawdown_threshold=0.1,
        volatility_threshold=0.2,
        var_confidence_level=0.95,
        objectives=['return', 'risk'],
        objective_weights=[0.7, 0.3],
        profit_threshold=0.05,
        loss_threshold=-0.1,
        holding_reward=0.001,
        diversification_reward=0.01,
        consistency_reward=0.005,
        adaptive_weighting=True,
        performance_window=100,
        condition_specific_rewards={
            MarketCondition.TRENDING_UP: 1.2,
            MarketCondition.TRENDING_DOWN: 1.1,
            MarketCondition.SIDEWAYS: 0.9,
            MarketCondition.VOLATILE: 0.8
        },
        curiosity_reward=0.001
    ),
    'conservative': RewardConfig(
        type=RewardType.RISK_ADJUSTED,
        return_weight=0.7,
        risk_weight=1.5,
        transaction_cost_weight=0.3,
        risk_measures=[RiskMeasure.DRAWDOWN, RiskMeasure.VOLATILITY, RiskMeasure.VAR],
        max_drawdown_threshold=0.05,
        volatility_threshold=0.15,
        var_confidence_level=0.99,
        objectives=['return', 'risk', 'sharpe'],
        objective_weights=[0.4, 0.4, 0.2],
        profit_threshold=0.03,
        loss_threshold=-0.05,
        holding_reward=0.005,
        diversification_reward=0.02,
        consistency_reward=0.01,
        adaptive_weighting=True,
        performance_window=200,
        condition_specific_rewards={
            MarketCondition.VOLATILE: 0.5,
            MarketCondition.SIDEWAYS: 1.3
        },
        curiosity_reward=0.0005
    ),
    'aggressive': RewardConfig(
        type=RewardType.PROFIT_BASED,
        return_weight=2.0,
        risk_weight=0.2,
        transaction_cost_weight=0.05,
        risk_measures=[RiskMeasure.DRAWDOWN],
        max_drawdown_threshold=0.2,
        volatility_threshold=0.5,
        var_confidence_level=0.9,
        objectives=['return'],
        objective_weights=[1.0],
        profit_threshold=0.1,
        loss_threshold=-0.2,
        holding_reward=0.0,
        diversification_reward=0.0,
        consistency_reward=0.0,
        adaptive_weighting=False,
        performance_window=50,
        condition_specific_rewards={
            MarketCondition.TRENDING_UP: 1.5,
            MarketCondition.TRENDING_DOWN: 1.3,
            MarketCondition.VOLATILE: 1.4
        },
        curiosity_reward=0.002
    )
}
