"""
Data classes and types for the reinforcement learning training core
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

import numpy as np
import torch

E = TypeVar('E', bound=Enum)

BROADCAST = 'ALL'


def coerce_enum(enum_cls: Type[E], value: Any) -> E:
    """Accept an enum member, its value or its name (case-insensitive)."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        lowered = value.lower()
        for member in enum_cls:
            if member.value == lowered or member.name.lower() == lowered:
                return member
    raise ValueError(f"{value!r} is not a valid {enum_cls.__name__}")


class MarketCondition(Enum):
    """Market regime reported by the environment."""
    TRENDING_UP = "trending_up"
    TRENDING_DOWN = "trending_down"
    SIDEWAYS = "sideways"
    VOLATILE = "volatile"
    LOW_VOLUME = "low_volume"
    HIGH_VOLUME = "high_volume"


class ActionType(Enum):
    """Trading action enumeration."""
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"
    CLOSE_LONG = "close_long"
    CLOSE_SHORT = "close_short"


class MessageType(Enum):
    """Inter-agent message types."""
    SIGNAL = "signal"
    EXPERIENCE = "experience"
    MODEL = "model"
    PERFORMANCE = "performance"
    COORDINATION = "coordination"


class AgentRole(Enum):
    """Role an agent plays inside the multi-agent system."""
    SPECIALIST = "specialist"
    GENERALIST = "generalist"
    COORDINATOR = "coordinator"
    EXPLORER = "explorer"
    EXPLOITER = "exploiter"


def _as_vector(values) -> np.ndarray:
    return np.array(values if values is not None else [], dtype=np.float64).ravel()


@dataclass(frozen=True, eq=False)
class EnvironmentState:
    """
    Immutable environment snapshot produced by the external simulator.

    Attributes:
        market_features: Technical indicators and price patterns
        portfolio_state: Current positions, cash and equity features
        risk_metrics: Current risk exposure features
        time_features: Time-of-day / calendar features
        condition: Market regime
        positions: symbol -> signed position size
    """
    market_features: np.ndarray
    portfolio_state: np.ndarray
    risk_metrics: np.ndarray
    time_features: np.ndarray
    condition: MarketCondition = MarketCondition.SIDEWAYS
    volatility: float = 0.0
    trend_strength: float = 0.0
    positions: Dict[str, float] = field(default_factory=dict)
    cash: float = 0.0
    equity: float = 0.0
    drawdown: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)
    step_count: int = 0
    episode_length: int = 0

    def __post_init__(self):
        for name in ('market_features', 'portfolio_state', 'risk_metrics', 'time_features'):
            vector = _as_vector(getattr(self, name))
            vector.setflags(write=False)
            object.__setattr__(self, name, vector)
        object.__setattr__(self, 'condition', coerce_enum(MarketCondition, self.condition))
        object.__setattr__(self, 'positions', {str(k): float(v) for k, v in self.positions.items()})

    def to_vector(self) -> np.ndarray:
        """Flatten the feature groups into one model input vector"""
        return np.concatenate([
            self.market_features,
            self.portfolio_state,
            self.risk_metrics,
            self.time_features
        ])

    def to_dict(self) -> Dict[str, Any]:
        return {
            'market_features': self.market_features.tolist(),
            'portfolio_state': self.portfolio_state.tolist(),
            'risk_metrics': self.risk_metrics.tolist(),
            'time_features': self.time_features.tolist(),
            'condition': self.condition.value,
            'volatility': self.volatility,
            'trend_strength': self.trend_strength,
            'positions': dict(self.positions),
            'cash': self.cash,
            'equity': self.equity,
            'drawdown': self.drawdown,
            'timestamp': self.timestamp.isoformat(),
            'step_count': self.step_count,
            'episode_length': self.episode_length
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'EnvironmentState':
        values = dict(data)
        if isinstance(values.get('timestamp'), str):
            values['timestamp'] = datetime.fromisoformat(values['timestamp'])
        return cls(**values)


@dataclass(frozen=True)
class Action:
    """Trading action: type plus non-negative size (fraction of capital)."""
    type: ActionType
    size: float = 0.0
    symbol: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'type', coerce_enum(ActionType, self.type))
        size = float(self.size)
        if not np.isfinite(size) or size < 0:
            raise ValueError(f"Action size must be a finite value >= 0, got {self.size}")
        object.__setattr__(self, 'size', size)

    @property
    def is_order(self) -> bool:
        """True for actions that open or add exposure"""
        return self.type in (ActionType.BUY, ActionType.SELL)

    def scaled(self, factor: float) -> 'Action':
        return replace(self, size=self.size * factor)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type.value, 'size': self.size, 'symbol': self.symbol}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Action':
        return cls(type=data['type'], size=data.get('size', 0.0), symbol=data.get('symbol'))


@dataclass
class ExecutionResult:
    """Fill report carried in `info['execution']`."""
    success: bool = False
    commission: float = 0.0
    slippage: float = 0.0

    @classmethod
    def from_any(cls, value: Any) -> 'ExecutionResult':
        if isinstance(value, cls):
            return value
        if not value:
            return cls()
        if isinstance(value, Mapping):
            return cls(
                success=bool(value.get('success', False)),
                commission=float(value.get('commission') or 0.0),
                slippage=float(value.get('slippage') or 0.0)
            )
        return cls(
            success=bool(getattr(value, 'success', False)),
            commission=float(getattr(value, 'commission', 0.0) or 0.0),
            slippage=float(getattr(value, 'slippage', 0.0) or 0.0)
        )


@dataclass
class Experience:
    """
    One recorded transition.

    `priority`, `state_signature` and `novelty` are filled in by the replay
    buffer on insertion; `td_error` is None until the learner reports one.
    """
    state: EnvironmentState
    action: Action
    reward: float
    next_state: EnvironmentState
    done: bool
    priority: float = 0.0
    td_error: Optional[float] = None
    state_signature: str = ''
    novelty: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)
    episode_id: str = ''
    step_in_episode: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.to_dict(),
            'action': self.action.to_dict(),
            'reward': self.reward,
            'next_state': self.next_state.to_dict(),
            'done': self.done,
            'priority': self.priority,
            'td_error': self.td_error,
            'state_signature': self.state_signature,
            'novelty': self.novelty,
            'timestamp': self.timestamp.isoformat(),
            'episode_id': self.episode_id,
            'step_in_episode': self.step_in_episode
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Experience':
        return cls(
            state=EnvironmentState.from_dict(data['state']),
            action=Action.from_dict(data['action']),
            reward=float(data['reward']),
            next_state=EnvironmentState.from_dict(data['next_state']),
            done=bool(data['done']),
            priority=float(data.get('priority', 0.0)),
            td_error=data.get('td_error'),
            state_signature=data.get('state_signature', ''),
            novelty=float(data.get('novelty', 0.0)),
            timestamp=datetime.fromisoformat(data['timestamp']),
            episode_id=data.get('episode_id', ''),
            step_in_episode=int(data.get('step_in_episode', 0))
        )


@dataclass
class SamplingMetadata:
    """Batch quality indicators."""
    average_priority: float = 0.0
    diversity_score: float = 0.0
    temporal_spread: float = 0.0  # hours
    sampling_time: float = 0.0  # milliseconds


@dataclass
class SamplingResult:
    """A sampled batch plus importance-sampling weights."""
    experiences: List[Experience]
    indices: List[int]
    weights: np.ndarray
    generation: int = 0
    metadata: SamplingMetadata = field(default_factory=SamplingMetadata)

    def __len__(self):
        return len(self.experiences)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'experiences': [exp.to_dict() for exp in self.experiences],
            'indices': [int(i) for i in self.indices],
            'weights': [float(w) for w in self.weights],
            'generation': self.generation,
            'metadata': {
                'average_priority': self.metadata.average_priority,
                'diversity_score': self.metadata.diversity_score,
                'temporal_spread': self.metadata.temporal_spread,
                'sampling_time': self.metadata.sampling_time
            }
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'SamplingResult':
        return cls(
            experiences=[Experience.from_dict(exp) for exp in data['experiences']],
            indices=list(data['indices']),
            weights=np.asarray(data['weights'], dtype=np.float64),
            generation=int(data.get('generation', 0)),
            metadata=SamplingMetadata(**data.get('metadata', {}))
        )

    def to_tensors(self, device: str = "cpu") -> Dict[str, torch.Tensor]:
        """Stack the batch into float tensors for the external learner"""
        action_types = list(ActionType)

        states = np.stack([exp.state.to_vector() for exp in self.experiences])
        next_states = np.stack([exp.next_state.to_vector() for exp in self.experiences])
        actions = np.array([action_types.index(exp.action.type) for exp in self.experiences])
        sizes = np.array([exp.action.size for exp in self.experiences])
        rewards = np.array([exp.reward for exp in self.experiences])
        dones = np.array([float(exp.done) for exp in self.experiences])

        return {
            'states': torch.tensor(states, dtype=torch.float32, device=device),
            'actions': torch.tensor(actions, dtype=torch.long, device=device),
            'action_sizes': torch.tensor(sizes, dtype=torch.float32, device=device).unsqueeze(1),
            'rewards': torch.tensor(rewards, dtype=torch.float32, device=device).unsqueeze(1),
            'next_states': torch.tensor(next_states, dtype=torch.float32, device=device),
            'dones': torch.tensor(dones, dtype=torch.float32, device=device).unsqueeze(1),
            'weights': torch.tensor(np.asarray(self.weights), dtype=torch.float32, device=device)
        }


@dataclass(frozen=True)
class RewardComponents:
    """Auditable reward breakdown for one transition."""
    base_reward: float
    risk_penalty: float
    transaction_cost: float
    behavioral_incentive: float
    condition_bonus: float
    curiosity_bonus: float
    total_reward: float
    normalized_reward: float
    return_component: float = 0.0
    risk_components: Dict[str, float] = field(default_factory=dict)
    objectives: Dict[str, float] = field(default_factory=dict)
    explanation: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'base_reward': self.base_reward,
            'risk_penalty': self.risk_penalty,
            'transaction_cost': self.transaction_cost,
            'behavioral_incentive': self.behavioral_incentive,
            'condition_bonus': self.condition_bonus,
            'curiosity_bonus': self.curiosity_bonus,
            'total_reward': self.total_reward,
            'normalized_reward': self.normalized_reward,
            'return_component': self.return_component,
            'risk_components': dict(self.risk_components),
            'objectives': dict(self.objectives),
            'explanation': self.explanation
        }


@dataclass
class PerformanceMetrics:
    """Rolling performance statistics maintained by the reward engine."""
    returns: List[float] = field(default_factory=list)
    equity: List[float] = field(default_factory=list)
    drawdowns: List[float] = field(default_factory=list)
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    max_drawdown: float = 0.0
    value_at_risk: float = 0.0
    conditional_var: float = 0.0


@dataclass
class PortfolioRisk:
    """Cross-agent risk figures; require price history supplied externally."""
    volatility: float = 0.0
    var_95: float = 0.0
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0


@dataclass
class PortfolioState:
    """Positions and weights aggregated across every agent."""
    positions: Dict[str, float] = field(default_factory=dict)
    weights: Dict[str, float] = field(default_factory=dict)
    total_value: float = 0.0
    cash: float = 0.0
    exposure: float = 0.0
    diversification: float = 0.0
    correlation: List[List[float]] = field(default_factory=list)
    risk: PortfolioRisk = field(default_factory=PortfolioRisk)


@dataclass
class AgentCommunication:
    """Typed message exchanged between agents."""
    sender_id: str
    message_type: MessageType
    payload: Any = None
    recipient_id: str = BROADCAST
    timestamp: datetime = field(default_factory=datetime.now)
    priority: int = 1

    def __post_init__(self):
        self.message_type = coerce_enum(MessageType, self.message_type)

    @property
    def is_broadcast(self) -> bool:
        return self.recipient_id == BROADCAST


@dataclass
class StepResult:
    """Outcome of one agent pipeline within a coordinator tick."""
    agent_id: str
    episode: int
    action: Action
    proposed_action: Action
    total_reward: float
    reward_components: RewardComponents
    done: bool
    loss: Optional[float] = None
    average_reward: float = 0.0
    epsilon: float = 0.0
    step_count: int = 0
    info: Dict[str, Any] = field(default_factory=dict)
