"""
Experience replay buffer for reinforcement learning

Prioritized replay over a sum segment tree with five sampling strategies,
importance-sampling weights, beta annealing and priority-based compression.
"""

import threading
import time
from collections import Counter, deque
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .data_classes import (
    EnvironmentState, Experience, SamplingMetadata, SamplingResult, coerce_enum
)
from .exceptions import ConfigurationError
from .segment_tree import SegmentTree
from ...utils.logger import setup_logger

logger = setup_logger(__name__)


class SamplingStrategy(Enum):
    """Replay sampling strategies."""
    UNIFORM = "uniform"
    PRIORITIZED = "prioritized"
    TEMPORAL = "temporal"
    DIVERSITY = "diversity"
    CURIOSITY = "curiosity"


class BetaSchedule(Enum):
    """Importance-sampling exponent schedules."""
    CONSTANT = "constant"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


NEW_PRIORITY_MODES = ('reward', 'max')


@dataclass
class ReplayConfig:
    """
    Replay buffer configuration.

    Attributes:
        capacity: Maximum number of stored experiences
        min_size: Occupancy required before sampling returns a batch
        batch_size: Default batch size for `sample()`
        alpha: Prioritization exponent (0 = uniform, 1 = fully prioritized)
        beta: Importance-sampling exponent used by the constant schedule
        beta_start / beta_end: Annealing range for linear/exponential schedules
        beta_annealing_steps: Sampling steps over which beta reaches beta_end
        priority_epsilon: Floor added to every error so no priority is zero
        recent_weight / temporal_decay: Temporal strategy weighting
        max_duplicates: Max items sharing a state signature per diversity batch
        compression_threshold: Occupancy fraction that triggers compression
        compression_ratio: Fraction of experiences retained by compression
        new_priority: 'reward' derives the initial priority from |reward|,
            'max' uses the running max priority when no TD error is known
        seed: Seed for the sampling random generator
    """
    capacity: int = 100000
    min_size: int = 1000
    batch_size: int = 32
    strategy: SamplingStrategy = SamplingStrategy.PRIORITIZED
    alpha: float = 0.6
    beta: float = 0.4
    beta_schedule: BetaSchedule = BetaSchedule.LINEAR
    beta_start: float = 0.4
    beta_end: float = 1.0
    beta_annealing_steps: int = 1000000
    priority_epsilon: float = 0.001
    recent_weight: float = 1.2
    temporal_decay: float = 0.1
    max_duplicates: int = 3
    compression_enabled: bool = True
    compression_threshold: float = 0.9
    compression_ratio: float = 0.8
    new_priority: str = 'reward'
    seed: Optional[int] = None

    def __post_init__(self):
        try:
            self.strategy = coerce_enum(SamplingStrategy, self.strategy)
            self.beta_schedule = coerce_enum(BetaSchedule, self.beta_schedule)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    def validate(self):
        """Raise ConfigurationError for invalid settings"""
        if self.capacity <= 0:
            raise ConfigurationError(f"Replay capacity must be positive, got {self.capacity}")
        if not 0 <= self.min_size <= self.capacity:
            raise ConfigurationError(f"min_size must be in [0, capacity], got {self.min_size}")
        if self.batch_size <= 0:
            raise ConfigurationError(f"batch_size must be positive, got {self.batch_size}")
        if self.alpha < 0:
            raise ConfigurationError(f"alpha must be >= 0, got {self.alpha}")
        if self.priority_epsilon <= 0:
            raise ConfigurationError(f"priority_epsilon must be > 0, got {self.priority_epsilon}")
        for name in ('beta', 'beta_start', 'beta_end'):
            if not 0 <= getattr(self, name) <= 1:
                raise ConfigurationError(f"{name} must be in [0, 1], got {getattr(self, name)}")
        if self.beta_schedule == BetaSchedule.EXPONENTIAL and self.beta_start <= 0:
            raise ConfigurationError("Exponential beta schedule requires beta_start > 0")
        if self.beta_annealing_steps <= 0:
            raise ConfigurationError(f"beta_annealing_steps must be positive, got {self.beta_annealing_steps}")
        if self.temporal_decay < 0 or self.recent_weight <= 0:
            raise ConfigurationError("temporal_decay must be >= 0 and recent_weight > 0")
        if self.max_duplicates <= 0:
            raise ConfigurationError(f"max_duplicates must be positive, got {self.max_duplicates}")
        if not 0 < self.compression_threshold <= 1:
            raise ConfigurationError(
                f"compression_threshold must be in (0, 1], got {self.compression_threshold}"
            )
        if not 0 < self.compression_ratio < 1:
            raise ConfigurationError(f"compression_ratio must be in (0, 1), got {self.compression_ratio}")
        if self.new_priority not in NEW_PRIORITY_MODES:
            raise ConfigurationError(f"new_priority must be one of {NEW_PRIORITY_MODES}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base: Optional['ReplayConfig'] = None) -> 'ReplayConfig':
        values = asdict(base) if base is not None else {}
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown replay config keys: {sorted(unknown)}")
        values.update(data)
        config = cls(**values)
        config.validate()
        return config


@dataclass
class BufferStatistics:
    """Snapshot of buffer contents and performance."""
    size: int
    capacity: int
    utilization: float
    average_priority: float
    priority_variance: float
    priority_range: Tuple[float, float]
    oldest_timestamp: Optional[datetime]
    newest_timestamp: Optional[datetime]
    average_age: float  # seconds
    unique_states: int
    state_distribution: Dict[str, int]
    action_distribution: Dict[str, int]
    sampling_latency: float  # milliseconds
    compressions: int
    compression_ratio: float
    total_added: int


class ExperienceReplayBuffer:
    """
    Circular experience store with prioritized and heuristic sampling.

    All mutating calls and `sample()` are serialised by one re-entrant lock,
    so a single buffer can be shared by several agents. Indices handed out by
    `sample()` are tagged with the buffer generation; compression bumps the
    generation, and updates carrying an older one are ignored.
    """

    def __init__(self, config: Optional[ReplayConfig] = None, **overrides):
        config = config or ReplayConfig()
        if overrides:
            config = ReplayConfig.from_dict(overrides, base=config)
        config.validate()
        self.config = config

        capacity = config.capacity
        self._slots: List[Optional[Experience]] = [None] * capacity
        self._slot_order = np.zeros(capacity, dtype=np.int64)
        self._tree = SegmentTree(capacity)

        self._next_index = 0
        self._size = 0
        self._total_added = 0
        self._max_priority = 1.0

        # Signature -> live occurrence count, drives novelty and diversity stats
        self._signature_counts: Counter = Counter()

        self._beta = config.beta if config.beta_schedule == BetaSchedule.CONSTANT else config.beta_start
        self._beta_step = 0

        self._generation = 0
        self._compressions = 0
        self._compressed_from = 0
        self._compressed_to = 0

        self._sampling_times: deque = deque(maxlen=100)
        self._rng = np.random.default_rng(config.seed)
        self._lock = threading.RLock()

        logger.info(
            f"Experience replay buffer initialized: {capacity} capacity, "
            f"{config.strategy.value} sampling"
        )

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def capacity(self) -> int:
        return self.config.capacity

    @property
    def beta(self) -> float:
        return self._beta

    @property
    def max_priority(self) -> float:
        return self._max_priority

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def lock(self) -> threading.RLock:
        """Lock guarding the buffer, for callers composing several calls"""
        return self._lock

    @property
    def tree(self) -> SegmentTree:
        return self._tree

    def size(self) -> int:
        return self._size

    def __len__(self):
        return self._size

    def can_sample(self) -> bool:
        return self._size >= self.config.min_size and self._size > 0

    def get(self, index: int) -> Optional[Experience]:
        if not 0 <= index < self._size:
            return None
        return self._slots[index]

    # ------------------------------------------------------------------ #
    # Insertion
    # ------------------------------------------------------------------ #

    def add(self, experience: Experience) -> Optional[int]:
        """
        Insert an experience at the next circular slot.

        Returns:
            The slot index, or None when the experience was rejected
        """
        if not isinstance(experience, Experience):
            logger.warning(f"Invalid experience type for replay buffer: {type(experience).__name__}")
            return None

        if not np.isfinite(experience.reward):
            logger.warning(f"Invalid reward: {experience.reward}")
            return None

        with self._lock:
            experience.priority = self._initial_priority(experience)
            experience.state_signature = self.generate_state_signature(experience.state)

            index = self._next_index
            previous = self._slots[index]
            if previous is not None:
                self._release_signature(previous.state_signature)

            experience.novelty = self._register_signature(experience.state_signature)

            self._slots[index] = experience
            self._slot_order[index] = self._total_added
            self._tree.update(index, experience.priority)
            self._max_priority = max(self._max_priority, experience.priority)

            self._next_index = (index + 1) % self.config.capacity
            self._size = min(self._size + 1, self.config.capacity)
            self._total_added += 1

            if self._should_compress():
                self._compress()

            return index

    def _priority_from_error(self, error: float) -> float:
        eps = self.config.priority_epsilon
        return max((abs(error) + eps) ** self.config.alpha, eps)

    def _initial_priority(self, experience: Experience) -> float:
        td_error = experience.td_error
        if td_error is not None and np.isfinite(td_error):
            return self._priority_from_error(td_error)

        if self.config.new_priority == 'max':
            return max(self._max_priority, self.config.priority_epsilon)

        return self._priority_from_error(experience.reward)

    @staticmethod
    def generate_state_signature(state: EnvironmentState) -> str:
        """Coarse discretised key of a state for diversity and novelty bookkeeping"""
        def bucket(values: np.ndarray) -> int:
            return int(np.floor(values[0] * 100 + 0.5)) if values.size else 0

        return (
            f"{bucket(state.market_features)}-{bucket(state.portfolio_state)}-"
            f"{bucket(state.risk_metrics)}-{state.condition.value}"
        )

    def _register_signature(self, signature: str) -> float:
        """Count one more occurrence and return its novelty 1/sqrt(visits + 1)"""
        visit_count = self._signature_counts[signature]
        self._signature_counts[signature] = visit_count + 1
        return 1.0 / np.sqrt(visit_count + 1)

    def _release_signature(self, signature: str):
        count = self._signature_counts.get(signature, 0)
        if count > 1:
            self._signature_counts[signature] = count - 1
        else:
            self._signature_counts.pop(signature, None)

    # ------------------------------------------------------------------ #
    # Sampling
    # ------------------------------------------------------------------ #

    def sample(self, batch_size: Optional[int] = None) -> Optional[SamplingResult]:
        """
        Sample a batch with the configured strategy.

        Returns:
            SamplingResult, or None while occupancy is below `min_size`
        """
        batch_size = self.config.batch_size if batch_size is None else int(batch_size)
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        with self._lock:
            if not self.can_sample():
                return None

            start_time = time.perf_counter()

            strategy = self.config.strategy
            if strategy == SamplingStrategy.PRIORITIZED:
                indices, weights = self._prioritized_sampling(batch_size)
            elif strategy == SamplingStrategy.TEMPORAL:
                indices, weights = self._temporal_sampling(batch_size)
            elif strategy == SamplingStrategy.DIVERSITY:
                indices, weights = self._diversity_sampling(batch_size)
            elif strategy == SamplingStrategy.CURIOSITY:
                indices, weights = self._curiosity_sampling(batch_size)
            else:
                indices, weights = self._uniform_sampling(batch_size)

            experiences = [self._slots[i] for i in indices]

            sampling_time = (time.perf_counter() - start_time) * 1000
            self._sampling_times.append(sampling_time)

            result = SamplingResult(
                experiences=experiences,
                indices=indices,
                weights=weights,
                generation=self._generation,
                metadata=SamplingMetadata(
                    average_priority=float(np.mean([exp.priority for exp in experiences])),
                    diversity_score=self._diversity_score(experiences),
                    temporal_spread=self._temporal_spread(experiences),
                    sampling_time=sampling_time
                )
            )

            self._update_beta()
            return result

    def _uniform_sampling(self, batch_size: int) -> Tuple[List[int], np.ndarray]:
        count = min(batch_size, self._size)
        indices = [int(i) for i in self._rng.choice(self._size, size=count, replace=False)]
        return indices, np.ones(count, dtype=np.float64)

    def _prioritized_sampling(self, batch_size: int) -> Tuple[List[int], np.ndarray]:
        total = self._tree.total_sum()
        if total <= 0:
            logger.debug("All priorities are zero, falling back to uniform sampling")
            return self._uniform_sampling(batch_size)

        # Stratified: one draw per equal-width segment of [0, total)
        segment = total / batch_size
        upper = np.nextafter(total, 0.0)
        indices = []
        for i in range(batch_size):
            value = min(self._rng.uniform(segment * i, segment * (i + 1)), upper)
            index = self._tree.sample(value)
            if index >= self._size:
                # Rounding can push the descent past the last occupied leaf
                index = self._size - 1
            indices.append(index)

        probabilities = np.array([self._tree.get(i) for i in indices]) / total
        weights = (1.0 / (self._size * probabilities)) ** self._beta
        weights = weights / weights.max()

        return indices, weights

    def _temporal_sampling(self, batch_size: int) -> Tuple[List[int], np.ndarray]:
        now = datetime.now()
        ages = np.array([
            max(0.0, (now - self._slots[i].timestamp).total_seconds() / 3600.0)
            for i in range(self._size)
        ])
        temporal_weights = np.exp(-ages * self.config.temporal_decay) * self.config.recent_weight

        count = min(batch_size, self._size)
        indices = self._weighted_without_replacement(temporal_weights, count)
        return indices, np.ones(len(indices), dtype=np.float64)

    def _diversity_sampling(self, batch_size: int) -> Tuple[List[int], np.ndarray]:
        count = min(batch_size, self._size)
        selected: List[int] = []
        signature_counts: Counter = Counter()

        for index in self._rng.permutation(self._size):
            if len(selected) >= count:
                break
            signature = self._slots[index].state_signature
            if signature_counts[signature] < self.config.max_duplicates:
                selected.append(int(index))
                signature_counts[signature] += 1

        # Backfill with uniform draws when the duplicate cap undersupplies the batch
        if len(selected) < count:
            remaining = np.setdiff1d(np.arange(self._size), selected)
            fill = self._rng.choice(remaining, size=count - len(selected), replace=False)
            selected.extend(int(i) for i in fill)

        return selected, np.ones(len(selected), dtype=np.float64)

    def _curiosity_sampling(self, batch_size: int) -> Tuple[List[int], np.ndarray]:
        novelty = np.array([self._slots[i].novelty for i in range(self._size)])

        count = min(batch_size, self._size)
        indices = self._weighted_without_replacement(novelty, count)
        return indices, np.ones(len(indices), dtype=np.float64)

    def _weighted_without_replacement(self, weights: np.ndarray, count: int) -> List[int]:
        """Draw distinct indices proportionally to weights, backfilling uniformly"""
        weights = np.where(np.isfinite(weights) & (weights > 0), weights, 0.0)
        total = weights.sum()
        n = len(weights)

        if total <= 0:
            return [int(i) for i in self._rng.choice(n, size=count, replace=False)]

        take = min(count, int(np.count_nonzero(weights)))
        chosen = [int(i) for i in self._rng.choice(n, size=take, replace=False, p=weights / total)]

        if take < count:
            remaining = np.setdiff1d(np.arange(n), chosen)
            chosen.extend(int(i) for i in self._rng.choice(remaining, size=count - take, replace=False))

        return chosen

    @staticmethod
    def _diversity_score(experiences: Sequence[Experience]) -> float:
        if not experiences:
            return 0.0
        return len({exp.state_signature for exp in experiences}) / len(experiences)

    @staticmethod
    def _temporal_spread(experiences: Sequence[Experience]) -> float:
        if len(experiences) < 2:
            return 0.0
        timestamps = [exp.timestamp for exp in experiences]
        return (max(timestamps) - min(timestamps)).total_seconds() / 3600.0

    def _update_beta(self):
        cfg = self.config
        progress = min(1.0, self._beta_step / cfg.beta_annealing_steps)

        if cfg.beta_schedule == BetaSchedule.LINEAR:
            self._beta = cfg.beta_start + (cfg.beta_end - cfg.beta_start) * progress
        elif cfg.beta_schedule == BetaSchedule.EXPONENTIAL:
            self._beta = cfg.beta_start * (cfg.beta_end / cfg.beta_start) ** progress
        else:
            self._beta = cfg.beta

        self._beta_step += 1

    # ------------------------------------------------------------------ #
    # Priority updates
    # ------------------------------------------------------------------ #

    def update_priorities(self, indices: Sequence[int], td_errors: Sequence[float],
                          generation: Optional[int] = None) -> int:
        """
        Recompute priorities from fresh TD errors.

        Indices outside the current occupancy, or from a batch sampled before
        the last compression (`generation` mismatch), are ignored.

        Returns:
            Number of priorities actually updated
        """
        td_errors = list(np.asarray(td_errors, dtype=np.float64).ravel())
        indices = list(indices)
        if len(indices) != len(td_errors):
            raise ValueError(f"Got {len(indices)} indices but {len(td_errors)} TD errors")

        with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug(
                    f"Ignoring {len(indices)} stale priority updates "
                    f"(generation {generation}, current {self._generation})"
                )
                return 0

            updated = 0
            for index, td_error in zip(indices, td_errors):
                index = int(index)
                if not 0 <= index < self._size:
                    logger.debug(f"Ignoring priority update for unoccupied index {index}")
                    continue

                if not np.isfinite(td_error):
                    logger.warning(f"Non-finite TD error detected for index {index}")
                    continue

                priority = self._priority_from_error(td_error)
                experience = self._slots[index]
                experience.priority = priority
                experience.td_error = float(td_error)

                self._tree.update(index, priority)
                self._max_priority = max(self._max_priority, priority)
                updated += 1

            return updated

    # ------------------------------------------------------------------ #
    # Compression
    # ------------------------------------------------------------------ #

    def _should_compress(self) -> bool:
        if not self.config.compression_enabled:
            return False
        return self._size / self.config.capacity > self.config.compression_threshold

    def compress(self):
        """Run a compression pass immediately"""
        with self._lock:
            self._compress()

    def _compress(self):
        """Keep the top experiences by (priority, recency) and rebuild bookkeeping"""
        current_size = self._size
        keep_count = int(np.floor(current_size * self.config.compression_ratio))
        if keep_count <= 0:
            return

        ranked = sorted(
            range(current_size),
            key=lambda i: (-self._slots[i].priority, -int(self._slot_order[i]))
        )
        # Re-lay the survivors oldest first so circular overwrite keeps evicting the oldest
        kept = sorted(ranked[:keep_count], key=lambda i: int(self._slot_order[i]))
        survivors = [(self._slots[i], int(self._slot_order[i])) for i in kept]

        self._slots = [None] * self.config.capacity
        self._slot_order.fill(0)
        self._tree.clear()
        self._signature_counts.clear()

        for new_index, (experience, order) in enumerate(survivors):
            self._slots[new_index] = experience
            self._slot_order[new_index] = order
            experience.novelty = self._register_signature(experience.state_signature)
            self._tree.update(new_index, experience.priority)

        self._size = keep_count
        self._next_index = keep_count % self.config.capacity
        self._generation += 1
        self._compressions += 1
        self._compressed_from += current_size
        self._compressed_to += keep_count

        logger.info(f"Buffer compressed: {current_size} -> {keep_count} experiences")

    # ------------------------------------------------------------------ #
    # Statistics and lifecycle
    # ------------------------------------------------------------------ #

    def get_statistics(self) -> BufferStatistics:
        with self._lock:
            experiences = [self._slots[i] for i in range(self._size)]
            sampling_latency = float(np.mean(self._sampling_times)) if self._sampling_times else 0.0
            compression_ratio = (
                self._compressed_to / self._compressed_from if self._compressed_from else 1.0
            )

            if not experiences:
                return BufferStatistics(
                    size=0, capacity=self.capacity, utilization=0.0,
                    average_priority=0.0, priority_variance=0.0, priority_range=(0.0, 0.0),
                    oldest_timestamp=None, newest_timestamp=None, average_age=0.0,
                    unique_states=0, state_distribution={}, action_distribution={},
                    sampling_latency=sampling_latency, compressions=self._compressions,
                    compression_ratio=compression_ratio, total_added=self._total_added
                )

            frame = pd.DataFrame({
                'priority': [exp.priority for exp in experiences],
                'timestamp': [exp.timestamp for exp in experiences],
                'signature': [exp.state_signature for exp in experiences],
                'action': [exp.action.type.value for exp in experiences]
            })
            now = datetime.now()
            ages = (now - frame['timestamp']).dt.total_seconds()

            return BufferStatistics(
                size=self._size,
                capacity=self.capacity,
                utilization=self._size / self.capacity,
                average_priority=float(frame['priority'].mean()),
                priority_variance=float(frame['priority'].var(ddof=0)),
                priority_range=(float(frame['priority'].min()), float(frame['priority'].max())),
                oldest_timestamp=frame['timestamp'].min().to_pydatetime(),
                newest_timestamp=frame['timestamp'].max().to_pydatetime(),
                average_age=float(ages.mean()),
                unique_states=len(self._signature_counts),
                state_distribution={k: int(v) for k, v in frame['signature'].value_counts().items()},
                action_distribution={k: int(v) for k, v in frame['action'].value_counts().items()},
                sampling_latency=sampling_latency,
                compressions=self._compressions,
                compression_ratio=compression_ratio,
                total_added=self._total_added
            )

    def clear(self):
        with self._lock:
            self._slots = [None] * self.config.capacity
            self._slot_order.fill(0)
            self._tree.clear()
            self._signature_counts.clear()
            self._next_index = 0
            self._size = 0
            self._total_added = 0
            self._max_priority = 1.0
            self._generation += 1

    def dispose(self):
        self.clear()
        self._sampling_times.clear()


# Default replay configurations
DEFAULT_REPLAY_CONFIGS: Dict[str, ReplayConfig] = {
    'standard': ReplayConfig(
        capacity=100000,
        min_size=1000,
        batch_size=32,
        strategy=SamplingStrategy.PRIORITIZED,
        alpha=0.6,
        beta=0.4,
        beta_schedule=BetaSchedule.LINEAR,
        beta_start=0.4,
        beta_end=1.0,
        priority_epsilon=0.001,
        recent_weight=1.2,
        temporal_decay=0.1,
        max_duplicates=3,
        compression_enabled=True,
        compression_threshold=0.9
    ),
    'fast': ReplayConfig(
        capacity=50000,
        min_size=500,
        batch_size=64,
        strategy=SamplingStrategy.UNIFORM,
        alpha=0.0,
        beta=0.0,
        beta_schedule=BetaSchedule.CONSTANT,
        beta_start=0.0,
        beta_end=0.0,
        priority_epsilon=1e-6,
        recent_weight=1.0,
        temporal_decay=0.0,
        max_duplicates=10,
        compression_enabled=False,
        compression_threshold=1.0
    ),
    'research': ReplayConfig(
        capacity=500000,
        min_size=5000,
        batch_size=16,
        strategy=SamplingStrategy.DIVERSITY,
        alpha=0.7,
        beta=0.5,
        beta_schedule=BetaSchedule.EXPONENTIAL,
        beta_start=0.4,
        beta_end=1.0,
        priority_epsilon=0.0001,
        recent_weight=1.5,
        temporal_decay=0.05,
        max_duplicates=1,
        compression_enabled=True,
        compression_threshold=0.95
    )
}
