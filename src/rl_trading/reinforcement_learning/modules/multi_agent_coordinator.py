"""
Multi-agent trading system coordinator

Owns N (agent, environment, reward engine) pipelines, reconciles their
simultaneous actions through a pluggable coordination policy, shares an
optional replay buffer and aggregates the resulting portfolio.
"""

import asyncio
import copy
import inspect
import threading
from collections import deque
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from . import risk_metrics
from .coordination_policies import (
    CoordinationContext, CoordinationPolicy, CoordinationStrategy, create_coordination_policy
)
from .data_classes import (
    Action, AgentCommunication, AgentRole, EnvironmentState, Experience, MarketCondition,
    MessageType, PortfolioState, StepResult, coerce_enum
)
from .exceptions import AgentNotFoundError, CapacityExceededError, ConfigurationError
from .replay_buffer import DEFAULT_REPLAY_CONFIGS, ExperienceReplayBuffer, ReplayConfig
from .reward_functions import DEFAULT_REWARD_CONFIGS, RewardConfig, RewardEngine
from ...utils.logger import setup_logger, log_agent_event, log_episode

logger = setup_logger(__name__)

HISTORY_CAP = 1000
HISTORY_TRIM = 500
SPECIALIZATION_CAP = 100
SPECIALIZATION_TRIM = 50
ROLLING_REWARD_WINDOW = 100


class CommunicationProtocol(Enum):
    """Message routing topology."""
    BROADCAST = "broadcast"
    GOSSIP = "gossip"
    DIRECT = "direct"
    HIERARCHICAL = "hierarchical"


@dataclass
class PortfolioConstraints:
    """Portfolio limits shared by every agent."""
    max_position_per_asset: float = 0.3
    max_total_exposure: float = 0.8
    min_diversification: float = 0.3
    correlation_limit: float = 0.7

    def validate(self):
        if self.max_total_exposure <= 0:
            raise ConfigurationError(f"max_total_exposure must be positive, got {self.max_total_exposure}")
        if self.max_position_per_asset <= 0:
            raise ConfigurationError(
                f"max_position_per_asset must be positive, got {self.max_position_per_asset}"
            )
        for name in ('min_diversification', 'correlation_limit'):
            if not 0 <= getattr(self, name) <= 1:
                raise ConfigurationError(f"{name} must be in [0, 1], got {getattr(self, name)}")


@dataclass
class InformationSharing:
    """What agents share and how often (in ticks)."""
    share_experiences: bool = True
    share_rewards: bool = True
    share_models: bool = False
    sharing_frequency: int = 10


def _replay_config_from(value) -> ReplayConfig:
    if isinstance(value, ReplayConfig):
        return value
    if isinstance(value, str):
        if value not in DEFAULT_REPLAY_CONFIGS:
            raise ConfigurationError(f"Unknown replay preset: {value}")
        return copy.deepcopy(DEFAULT_REPLAY_CONFIGS[value])
    return ReplayConfig.from_dict(value)


def _reward_config_from(value) -> RewardConfig:
    if isinstance(value, RewardConfig):
        return value
    if isinstance(value, str):
        if value not in DEFAULT_REWARD_CONFIGS:
            raise ConfigurationError(f"Unknown reward preset: {value}")
        return copy.deepcopy(DEFAULT_REWARD_CONFIGS[value])
    return RewardConfig.from_dict(value)


@dataclass
class MultiAgentConfig:
    """
    Multi-agent system configuration.

    Attributes:
        coordination_strategy: Policy reconciling proposed actions
        max_agents: Hard limit enforced by `add_agent`
        specialization_threshold: Expertise at which an agent counts as specialised
        synchronous_learning: All agents learn before the next tick during `train`;
            otherwise learning runs as fire-and-forget tasks
        shared_replay_buffer: One buffer for every agent instead of one each
        parallel_execution: Run per-agent pipelines concurrently within a tick
        adaptive_allocation: Drop chronically underperforming agents after episodes
        replay_config: Configuration for every buffer the system creates
        default_reward_config: Used when `add_agent` receives no reward config
        underperformance_threshold: Rolling average reward below which an agent
            counts as underperforming for an episode
        underperformance_patience: Consecutive underperforming episodes before removal
        min_active_agents: Adaptive allocation never shrinks the system below this
    """
    coordination_strategy: CoordinationStrategy = CoordinationStrategy.INDEPENDENT
    communication_protocol: CommunicationProtocol = CommunicationProtocol.BROADCAST
    max_agents: int = 5
    enable_specialization: bool = True
    specialization_threshold: float = 0.6
    portfolio_constraints: PortfolioConstraints = field(default_factory=PortfolioConstraints)
    consensus_threshold: float = 0.6
    competition_weight: float = 0.2
    information_sharing: InformationSharing = field(default_factory=InformationSharing)
    synchronous_learning: bool = True
    shared_replay_buffer: bool = False
    parallel_execution: bool = False
    adaptive_allocation: bool = False
    replay_config: ReplayConfig = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_REPLAY_CONFIGS['standard'])
    )
    default_reward_config: RewardConfig = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_REWARD_CONFIGS['balanced'])
    )
    max_steps_per_episode: int = 10000
    underperformance_threshold: float = -0.05
    underperformance_patience: int = 10
    min_active_agents: int = 1

    def __post_init__(self):
        try:
            self.coordination_strategy = coerce_enum(CoordinationStrategy, self.coordination_strategy)
            self.communication_protocol = coerce_enum(CommunicationProtocol, self.communication_protocol)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        if isinstance(self.portfolio_constraints, Mapping):
            self.portfolio_constraints = PortfolioConstraints(**self.portfolio_constraints)
        if isinstance(self.information_sharing, Mapping):
            self.information_sharing = InformationSharing(**self.information_sharing)
        self.replay_config = _replay_config_from(self.replay_config)
        self.default_reward_config = _reward_config_from(self.default_reward_config)

    def validate(self):
        if self.max_agents <= 0:
            raise ConfigurationError(f"max_agents must be positive, got {self.max_agents}")
        self.portfolio_constraints.validate()
        for name in ('specialization_threshold', 'consensus_threshold', 'competition_weight'):
            if not 0 <= getattr(self, name) <= 1:
                raise ConfigurationError(f"{name} must be in [0, 1], got {getattr(self, name)}")
        if self.information_sharing.sharing_frequency <= 0:
            raise ConfigurationError("sharing_frequency must be positive")
        if self.max_steps_per_episode <= 0:
            raise ConfigurationError(
                f"max_steps_per_episode must be positive, got {self.max_steps_per_episode}"
            )
        if self.underperformance_patience <= 0:
            raise ConfigurationError("underperformance_patience must be positive")
        if not 0 <= self.min_active_agents <= self.max_agents:
            raise ConfigurationError(f"min_active_agents must be in [0, max_agents], got {self.min_active_agents}")
        self.replay_config.validate()
        self.default_reward_config.validate()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any],
                  base: Optional['MultiAgentConfig'] = None) -> 'MultiAgentConfig':
        values = asdict(base) if base is not None else {}
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown multi-agent config keys: {sorted(unknown)}")

        # Nested sections merge key by key over the base
        for key, value in data.items():
            if isinstance(value, Mapping) and isinstance(values.get(key), dict):
                merged = dict(values[key])
                merged.update(value)
                values[key] = merged
            else:
                values[key] = value

        try:
            config = cls(**values)
        except TypeError as e:
            raise ConfigurationError(f"Invalid multi-agent config: {e}") from e
        config.validate()
        return config


@dataclass
class AgentSpecialization:
    """Expertise tracking for an agent bound to a primary symbol."""
    symbol: str
    market_conditions: List[MarketCondition] = field(default_factory=lambda: [
        MarketCondition.TRENDING_UP, MarketCondition.TRENDING_DOWN, MarketCondition.SIDEWAYS
    ])
    performance_history: List[float] = field(default_factory=list)
    expertise: float = 0.0  # 0-1 score

    def update(self, reward: float):
        self.performance_history.append(reward)
        if len(self.performance_history) > SPECIALIZATION_CAP:
            self.performance_history = self.performance_history[-SPECIALIZATION_TRIM:]

        average = float(np.mean(self.performance_history))
        self.expertise = float(np.clip(average + 0.5, 0.0, 1.0))


@dataclass
class SystemMetrics:
    """System-wide performance and coordination counters."""
    total_agents: int = 0
    active_agents: int = 0
    average_performance: float = 0.0
    total_return: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    win_rate: float = 0.0
    diversification: float = 0.0
    ticks: int = 0
    failed_steps: int = 0
    messages_processed: int = 0
    constraint_violations: int = 0


@dataclass
class _AgentRecord:
    """Everything the coordinator owns for one agent."""
    agent: Any
    environment: Any
    reward_engine: RewardEngine
    replay_buffer: ExperienceReplayBuffer
    role: AgentRole
    symbols: Tuple[str, ...] = ()
    specialization: Optional[AgentSpecialization] = None
    rewards: List[float] = field(default_factory=list)
    episode_rewards: List[float] = field(default_factory=list)
    last_state: Optional[EnvironmentState] = None
    agent_state: Dict[str, Any] = field(default_factory=dict)
    episodes_completed: int = 0
    underperforming_streak: int = 0

    def record_reward(self, reward: float):
        self.rewards.append(reward)
        if len(self.rewards) > HISTORY_CAP:
            self.rewards = self.rewards[-HISTORY_TRIM:]

    def rolling_average(self) -> float:
        recent = self.rewards[-ROLLING_REWARD_WINDOW:]
        return float(np.mean(recent)) if recent else 0.0


async def _maybe_await(value):
    """Resolve results of collaborators whose methods may or may not be coroutines"""
    if inspect.isawaitable(value):
        return await value
    return value


class MultiAgentCoordinator:
    """
    Coordinates multiple trading agents over one shared portfolio.

    Per tick: drain the message queue, read every agent's state, collect
    proposed actions, reconcile them through the coordination policy, then
    execute, reward, store and (optionally) learn per agent. A failure inside
    one agent's pipeline is logged and excludes only that agent from the
    tick's results.
    """

    def __init__(self, config: Optional[MultiAgentConfig] = None,
                 policy: Optional[CoordinationPolicy] = None):
        self.config = config or MultiAgentConfig()
        self.config.validate()
        self.policy = policy or create_coordination_policy(self.config.coordination_strategy)

        self._agents: Dict[str, _AgentRecord] = {}
        self._coordinator_id: Optional[str] = None

        self._shared_buffer: Optional[ExperienceReplayBuffer] = None
        if self.config.shared_replay_buffer:
            self._shared_buffer = ExperienceReplayBuffer(copy.deepcopy(self.config.replay_config))

        self._portfolio_state = PortfolioState()
        self._portfolio_history: List[PortfolioState] = []

        self._message_queue: Deque[AgentCommunication] = deque()
        self._communication_history: List[AgentCommunication] = []
        self._global_knowledge: Dict[str, Any] = {}
        self._message_handlers: Dict[MessageType, Callable] = {
            MessageType.SIGNAL: self._forward_message,
            MessageType.EXPERIENCE: self._handle_experience_message,
            MessageType.MODEL: self._handle_model_message,
            MessageType.PERFORMANCE: self._handle_performance_message,
            MessageType.COORDINATION: self._forward_message
        }

        self._metrics = SystemMetrics()
        self._abort = threading.Event()
        self._learning_tasks: Dict[str, asyncio.Task] = {}

        logger.info(
            f"Multi-agent coordinator initialized: {self.config.coordination_strategy.value} coordination, "
            f"{'shared' if self._shared_buffer else 'private'} replay buffers"
        )

    # ------------------------------------------------------------------ #
    # Agent management
    # ------------------------------------------------------------------ #

    @property
    def agent_ids(self) -> List[str]:
        return list(self._agents)

    @property
    def coordinator_agent(self) -> Optional[str]:
        return self._coordinator_id

    @property
    def shared_replay_buffer(self) -> Optional[ExperienceReplayBuffer]:
        return self._shared_buffer

    @property
    def global_knowledge(self) -> Dict[str, Any]:
        return dict(self._global_knowledge)

    def __len__(self):
        return len(self._agents)

    def add_agent(self, agent_id: str, agent: Any, environment: Any,
                  reward_config: Optional[RewardConfig] = None,
                  symbols: Sequence[str] = (), role: AgentRole = AgentRole.GENERALIST):
        """
        Register an agent with its private environment.

        Raises:
            CapacityExceededError: `max_agents` already registered
            ConfigurationError: Duplicate agent id or invalid role
        """
        if len(self._agents) >= self.config.max_agents:
            raise CapacityExceededError(f"Maximum number of agents ({self.config.max_agents}) reached")

        if agent_id in self._agents:
            raise ConfigurationError(f"Agent {agent_id} already registered")

        try:
            role = coerce_enum(AgentRole, role)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        symbols = tuple(symbols)
        logger.info(f"Adding agent {agent_id} with role {role.value} for symbols: {', '.join(symbols)}")

        reward_engine = RewardEngine(reward_config or copy.deepcopy(self.config.default_reward_config))
        replay_buffer = self._shared_buffer or ExperienceReplayBuffer(copy.deepcopy(self.config.replay_config))

        if hasattr(agent, 'bind_replay_buffer'):
            agent.bind_replay_buffer(replay_buffer)

        specialization = None
        if symbols and self.config.enable_specialization:
            specialization = AgentSpecialization(symbol=symbols[0])

        self._agents[agent_id] = _AgentRecord(
            agent=agent,
            environment=environment,
            reward_engine=reward_engine,
            replay_buffer=replay_buffer,
            role=role,
            symbols=symbols,
            specialization=specialization
        )

        if self.config.coordination_strategy == CoordinationStrategy.HIERARCHICAL and self._coordinator_id is None:
            self._coordinator_id = agent_id
            logger.info(f"Agent {agent_id} assigned as coordinator")

        self._metrics.total_agents = len(self._agents)
        log_agent_event(agent_id, 'added', {'role': role.value, 'symbols': list(symbols)})

    async def remove_agent(self, agent_id: str):
        """Dispose an agent with its environment and private buffer"""
        record = self._agents.get(agent_id)
        if record is None:
            raise AgentNotFoundError(agent_id)

        logger.info(f"Removing agent {agent_id}")
        del self._agents[agent_id]
        pending = self._learning_tasks.pop(agent_id, None)
        if pending is not None and not pending.done():
            pending.cancel()

        await self._dispose_quietly(record.agent, f"agent {agent_id}")
        await self._dispose_quietly(record.environment, f"environment of {agent_id}")
        if record.replay_buffer is not self._shared_buffer:
            record.replay_buffer.dispose()

        if self._coordinator_id == agent_id:
            self._coordinator_id = None
            self._select_new_coordinator()

        self._metrics.total_agents = len(self._agents)
        log_agent_event(agent_id, 'removed', {'remaining': len(self._agents)})

    def _select_new_coordinator(self):
        if self.config.coordination_strategy != CoordinationStrategy.HIERARCHICAL or not self._agents:
            return

        best_agent = max(self._agents, key=lambda aid: self._agents[aid].rolling_average())
        self._coordinator_id = best_agent
        logger.info(f"New coordinator selected: {best_agent}")
        log_agent_event(best_agent, 'coordinator_assigned', {
            'rolling_average_reward': self._agents[best_agent].rolling_average()
        })

    def get_replay_buffer(self, agent_id: str) -> ExperienceReplayBuffer:
        record = self._agents.get(agent_id)
        if record is None:
            raise AgentNotFoundError(agent_id)
        return record.replay_buffer

    def get_reward_engine(self, agent_id: str) -> RewardEngine:
        record = self._agents.get(agent_id)
        if record is None:
            raise AgentNotFoundError(agent_id)
        return record.reward_engine

    # ------------------------------------------------------------------ #
    # Cancellation
    # ------------------------------------------------------------------ #

    def abort(self):
        """Request cancellation; honoured at the next episode or agent-tick boundary"""
        self._abort.set()
        logger.warning("Abort requested for multi-agent coordinator")

    def reset_abort(self):
        self._abort.clear()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    # ------------------------------------------------------------------ #
    # Stepping
    # ------------------------------------------------------------------ #

    async def step(self, learn: bool = True) -> Dict[str, StepResult]:
        """
        Advance every agent by one tick.

        Args:
            learn: Call `agent.learn()` inside each pipeline; `train` passes
                False and schedules learning itself

        Returns:
            agent_id -> StepResult for every agent whose pipeline succeeded
        """
        results: Dict[str, StepResult] = {}
        if self._abort.is_set():
            return results

        await self._process_communication()

        states: Dict[str, EnvironmentState] = {}
        for agent_id, record in list(self._agents.items()):
            try:
                state = await _maybe_await(record.environment.get_state())
                states[agent_id] = state
                record.last_state = state
            except Exception as e:
                self._record_failure(agent_id, 'state read', e)

        proposed: Dict[str, Action] = {}
        for agent_id, state in states.items():
            try:
                action = await _maybe_await(self._agents[agent_id].agent.select_action(state))
                proposed[agent_id] = self._as_action(action)
            except Exception as e:
                self._record_failure(agent_id, 'action selection', e)

        self._update_portfolio_state(record_history=False)
        coordinated = self.policy.reconcile(proposed, states, self._coordination_context())

        if self.config.parallel_execution:
            agent_ids = list(coordinated)
            outcomes = await asyncio.gather(*(
                self._execute_agent_step(agent_id, coordinated[agent_id],
                                         proposed.get(agent_id, coordinated[agent_id]),
                                         states[agent_id], learn)
                for agent_id in agent_ids
            ))
            for agent_id, outcome in zip(agent_ids, outcomes):
                if outcome is not None:
                    results[agent_id] = outcome
        else:
            for agent_id, action in coordinated.items():
                if self._abort.is_set():
                    logger.info("Abort flag set, stopping tick early")
                    break
                outcome = await self._execute_agent_step(
                    agent_id, action, proposed.get(agent_id, action), states[agent_id], learn
                )
                if outcome is not None:
                    results[agent_id] = outcome

        self._update_portfolio_state(record_history=True)
        self._update_system_metrics(results)

        sharing = self.config.information_sharing
        if sharing.share_rewards and self._metrics.ticks % sharing.sharing_frequency == 0:
            self._share_information()

        return results

    async def _execute_agent_step(self, agent_id: str, action: Action, proposed_action: Action,
                                  prev_state: EnvironmentState, learn: bool) -> Optional[StepResult]:
        record = self._agents.get(agent_id)
        if record is None:
            return None

        try:
            output = await _maybe_await(record.environment.step(action))
            new_state, _, done, info = self._unpack_step_output(output)
            record.last_state = new_state

            components = record.reward_engine.calculate_reward(
                action, prev_state, new_state, info.get('execution')
            )
            total_reward = components.total_reward

            agent_state = await self._refresh_agent_state(record)
            record.replay_buffer.add(Experience(
                state=prev_state,
                action=action,
                reward=total_reward,
                next_state=new_state,
                done=done,
                episode_id=f"{agent_id}-{agent_state.get('episode', record.episodes_completed)}",
                step_in_episode=new_state.step_count
            ))

            loss = None
            if learn:
                loss = await _maybe_await(record.agent.learn())
                agent_state = await self._refresh_agent_state(record)

            record.record_reward(total_reward)
            if record.specialization is not None:
                record.specialization.update(total_reward)

            return StepResult(
                agent_id=agent_id,
                episode=int(agent_state.get('episode', record.episodes_completed)),
                action=action,
                proposed_action=proposed_action,
                total_reward=total_reward,
                reward_components=components,
                done=done,
                loss=float(loss) if loss is not None else None,
                average_reward=float(agent_state.get('average_reward', record.rolling_average())),
                epsilon=float(agent_state.get('epsilon', 0.0)),
                step_count=new_state.step_count,
                info=dict(info)
            )

        except Exception as e:
            self._record_failure(agent_id, 'step', e)
            return None

    def _record_failure(self, agent_id: str, stage: str, error: Exception):
        self._metrics.failed_steps += 1
        logger.error(f"Error in agent {agent_id} {stage}: {error}")

    async def _refresh_agent_state(self, record: _AgentRecord) -> Dict[str, Any]:
        state = await _maybe_await(record.agent.get_state())
        record.agent_state = dict(state) if isinstance(state, Mapping) else {}
        return record.agent_state

    @staticmethod
    def _as_action(action: Any) -> Action:
        if isinstance(action, Action):
            return action
        if isinstance(action, Mapping):
            return Action.from_dict(action)
        raise TypeError(f"Agent returned {type(action).__name__}, expected Action")

    @staticmethod
    def _unpack_step_output(output: Any) -> Tuple[EnvironmentState, float, bool, Dict[str, Any]]:
        if isinstance(output, Mapping):
            state, reward, done, info = output['state'], output.get('reward', 0.0), \
                output.get('done', False), output.get('info')
        elif isinstance(output, (tuple, list)) and len(output) == 4:
            state, reward, done, info = output
        else:
            raise TypeError(f"Unsupported environment step output: {type(output).__name__}")

        if not isinstance(state, EnvironmentState):
            raise TypeError(f"Environment returned {type(state).__name__}, expected EnvironmentState")

        return state, float(reward or 0.0), bool(done), dict(info or {})

    def _coordination_context(self) -> CoordinationContext:
        constraints = self.config.portfolio_constraints
        return CoordinationContext(
            exposure=self._portfolio_state.exposure,
            max_total_exposure=constraints.max_total_exposure,
            max_position_per_asset=constraints.max_position_per_asset,
            coordinator_id=self._coordinator_id,
            roles={agent_id: record.role for agent_id, record in self._agents.items()},
            consensus_threshold=self.config.consensus_threshold,
            competition_weight=self.config.competition_weight
        )

    # ------------------------------------------------------------------ #
    # Training
    # ------------------------------------------------------------------ #

    async def train(self, episodes: int) -> List[Dict[str, Any]]:
        """
        Run training episodes.

        Each episode resets every environment, ticks until any agent reports
        done (or `max_steps_per_episode`), learning after every tick either
        synchronously or as fire-and-forget tasks.

        Returns:
            Per-episode summaries
        """
        if episodes <= 0:
            raise ValueError(f"Invalid training episodes: {episodes}")

        logger.info(f"Starting multi-agent training for {episodes} episodes...")
        summaries = []

        for episode in range(episodes):
            if self._abort.is_set():
                logger.warning(f"Training aborted before episode {episode + 1}")
                break

            await self._reset_environments()

            steps = 0
            episode_complete = False
            episode_rewards: Dict[str, float] = {agent_id: 0.0 for agent_id in self._agents}

            while not episode_complete and steps < self.config.max_steps_per_episode:
                if self._abort.is_set() or not self._agents:
                    break

                results = await self.step(learn=False)
                steps += 1

                for agent_id, result in results.items():
                    episode_rewards[agent_id] = episode_rewards.get(agent_id, 0.0) + result.total_reward
                episode_complete = any(result.done for result in results.values())

                if self.config.synchronous_learning:
                    await self._synchronized_learning()
                else:
                    self._asynchronous_learning()
                    await asyncio.sleep(0)

            await self._complete_episode(episode, episode_rewards, steps)

            if self.config.adaptive_allocation:
                await self._adapt_system()

            summaries.append({
                'episode': episode,
                'steps': steps,
                'rewards': dict(episode_rewards),
                'portfolio_value': self._portfolio_state.total_value,
                'active_agents': len(self._agents)
            })

            if (episode + 1) % 10 == 0:
                logger.info(
                    f"Episode {episode + 1}: Portfolio Performance = {self._metrics.total_return:.4f}"
                )

        await self._drain_learning_tasks()
        logger.info("Multi-agent training completed")
        return summaries

    async def _reset_environments(self):
        for agent_id, record in list(self._agents.items()):
            try:
                state = await _maybe_await(record.environment.reset())
                if isinstance(state, EnvironmentState):
                    record.last_state = state
            except Exception as e:
                self._record_failure(agent_id, 'environment reset', e)

    async def _safe_learn(self, agent_id: str) -> Optional[float]:
        record = self._agents.get(agent_id)
        if record is None:
            return None
        try:
            loss = await _maybe_await(record.agent.learn())
            return float(loss) if loss is not None else None
        except Exception as e:
            logger.error(f"Learning failed for agent {agent_id}: {e}")
            return None

    async def _synchronized_learning(self) -> Dict[str, Optional[float]]:
        agent_ids = list(self._agents)
        losses = await asyncio.gather(*(self._safe_learn(agent_id) for agent_id in agent_ids))
        return dict(zip(agent_ids, losses))

    def _asynchronous_learning(self):
        """Schedule one learning task per agent, skipping agents still learning"""
        for agent_id in self._agents:
            pending = self._learning_tasks.get(agent_id)
            if pending is not None and not pending.done():
                continue
            self._learning_tasks[agent_id] = asyncio.ensure_future(self._safe_learn(agent_id))

    async def _drain_learning_tasks(self):
        tasks = [task for task in self._learning_tasks.values() if not task.done()]
        if tasks:
            await asyncio.gather(*tasks)
        self._learning_tasks.clear()

    async def _complete_episode(self, episode: int, episode_rewards: Dict[str, float], steps: int):
        for agent_id, record in list(self._agents.items()):
            total = episode_rewards.get(agent_id, 0.0)
            record.episode_rewards.append(total)
            if len(record.episode_rewards) > HISTORY_CAP:
                record.episode_rewards = record.episode_rewards[-HISTORY_TRIM:]
            record.episodes_completed += 1

            if hasattr(record.agent, 'complete_episode'):
                try:
                    await _maybe_await(record.agent.complete_episode(total, steps))
                except Exception as e:
                    logger.error(f"Episode completion failed for agent {agent_id}: {e}")

            if record.reward_engine.config.adaptive_weighting:
                record.reward_engine.update_reward_function(record.reward_engine.recent_performance())

            log_episode(agent_id, episode, total, steps=steps)

    async def _adapt_system(self):
        """Remove agents underperforming for `underperformance_patience` consecutive episodes"""
        cfg = self.config
        for record in self._agents.values():
            if record.rolling_average() < cfg.underperformance_threshold:
                record.underperforming_streak += 1
            else:
                record.underperforming_streak = 0

        candidates = sorted(
            (agent_id for agent_id, record in self._agents.items()
             if record.underperforming_streak >= cfg.underperformance_patience),
            key=lambda agent_id: self._agents[agent_id].rolling_average()
        )

        for agent_id in candidates:
            if len(self._agents) <= cfg.min_active_agents:
                break
            logger.warning(
                f"Removing underperforming agent {agent_id} "
                f"(rolling average {self._agents[agent_id].rolling_average():.4f})"
            )
            await self.remove_agent(agent_id)

    # ------------------------------------------------------------------ #
    # Communication
    # ------------------------------------------------------------------ #

    def send_message(self, message: AgentCommunication):
        """Queue a message for delivery at the start of the next tick"""
        if not isinstance(message, AgentCommunication):
            raise TypeError(f"Expected AgentCommunication, got {type(message).__name__}")
        self._message_queue.append(message)

    @property
    def pending_messages(self) -> int:
        return len(self._message_queue)

    async def _process_communication(self):
        # Messages queued by handlers during the drain wait for the next tick
        for _ in range(len(self._message_queue)):
            message = self._message_queue.popleft()
            try:
                await self._message_handlers[message.message_type](message)
            except Exception as e:
                logger.error(f"Error processing {message.message_type.value} message from {message.sender_id}: {e}")

            self._metrics.messages_processed += 1
            self._communication_history.append(message)
            if len(self._communication_history) > HISTORY_CAP:
                self._communication_history = self._communication_history[-HISTORY_TRIM:]

    async def _forward_message(self, message: AgentCommunication):
        if message.is_broadcast:
            recipients = [aid for aid in self._agents if aid != message.sender_id]
        else:
            recipients = [message.recipient_id] if message.recipient_id in self._agents else []

        for agent_id in recipients:
            agent = self._agents[agent_id].agent
            if not hasattr(agent, 'receive_message'):
                continue
            try:
                await _maybe_await(agent.receive_message(message))
            except Exception as e:
                logger.error(f"Agent {agent_id} failed to receive message from {message.sender_id}: {e}")

    async def _handle_experience_message(self, message: AgentCommunication):
        if not (self.config.information_sharing.share_experiences and self._shared_buffer):
            return

        experience = message.payload
        if isinstance(experience, Mapping):
            experience = Experience.from_dict(experience)
        self._shared_buffer.add(experience)

    async def _handle_model_message(self, message: AgentCommunication):
        if self.config.information_sharing.share_models:
            await self._forward_message(message)
        else:
            logger.debug(f"Model sharing disabled, dropping model update from {message.sender_id}")

    async def _handle_performance_message(self, message: AgentCommunication):
        self._global_knowledge[f"{message.sender_id}_performance"] = message.payload

    def _share_information(self):
        for sender_id, record in self._agents.items():
            state = record.agent_state
            self._message_queue.append(AgentCommunication(
                sender_id=sender_id,
                message_type=MessageType.PERFORMANCE,
                payload={
                    'average_reward': state.get('average_reward', record.rolling_average()),
                    'win_rate': state.get('win_rate', 0.0),
                    'sharpe_ratio': state.get('sharpe_ratio', 0.0)
                }
            ))

    # ------------------------------------------------------------------ #
    # Portfolio and metrics
    # ------------------------------------------------------------------ #

    def _update_portfolio_state(self, record_history: bool):
        states = [record.last_state for record in self._agents.values() if record.last_state is not None]

        rows = [(symbol, size) for state in states for symbol, size in state.positions.items()]
        if rows:
            frame = pd.DataFrame(rows, columns=['symbol', 'position'])
            positions = frame.groupby('symbol', sort=False)['position'].sum()
            # Gross exposure across agents, offsetting positions do not net out
            exposure = float(frame['position'].abs().sum())
        else:
            positions = pd.Series(dtype=float)
            exposure = 0.0

        net_exposure = float(positions.abs().sum())
        weights = positions.abs() / net_exposure if net_exposure > 0 else positions.abs() * 0.0
        diversification = 1.0 - float(weights.max()) if len(weights) > 1 else 0.0

        self._portfolio_state = PortfolioState(
            positions={str(k): float(v) for k, v in positions.items()},
            weights={str(k): float(v) for k, v in weights.items()},
            total_value=float(sum(state.equity for state in states)),
            cash=float(sum(state.cash for state in states)),
            exposure=exposure,
            diversification=diversification
        )

        if not record_history:
            return

        self._check_constraints(positions, diversification)
        self._portfolio_history.append(self._portfolio_state)
        if len(self._portfolio_history) > HISTORY_CAP:
            self._portfolio_history = self._portfolio_history[-HISTORY_TRIM:]

    def _check_constraints(self, positions: pd.Series, diversification: float):
        constraints = self.config.portfolio_constraints
        state = self._portfolio_state

        if state.exposure > constraints.max_total_exposure:
            self._metrics.constraint_violations += 1
            logger.warning(
                f"Aggregate exposure {state.exposure:.4f} above cap {constraints.max_total_exposure:.4f}"
            )

        oversized = positions[positions.abs() > constraints.max_position_per_asset]
        if not oversized.empty:
            self._metrics.constraint_violations += 1
            logger.debug(f"Positions above per-asset limit: {oversized.to_dict()}")

        if len(positions) > 1 and diversification < constraints.min_diversification:
            logger.debug(f"Diversification {diversification:.3f} below {constraints.min_diversification:.3f}")

    def _update_system_metrics(self, results: Mapping[str, StepResult]):
        metrics = self._metrics
        rewards = [result.total_reward for result in results.values()]

        metrics.ticks += 1
        metrics.total_agents = len(self._agents)
        metrics.active_agents = len(results)
        metrics.average_performance = float(np.mean(rewards)) if rewards else 0.0
        metrics.win_rate = float(np.mean([r > 0 for r in rewards])) if rewards else 0.0
        metrics.diversification = self._portfolio_state.diversification

        values = [state.total_value for state in self._portfolio_history]
        if len(values) > 1 and values[0] != 0:
            metrics.total_return = (values[-1] - values[0]) / values[0]
        metrics.sharpe_ratio = risk_metrics.sharpe_ratio(risk_metrics.returns_from_equity(values))
        metrics.max_drawdown = risk_metrics.max_drawdown_from_equity(values)

    def get_portfolio_state(self) -> PortfolioState:
        return copy.deepcopy(self._portfolio_state)

    def get_portfolio_history(self) -> List[PortfolioState]:
        return list(self._portfolio_history)

    def get_system_metrics(self) -> SystemMetrics:
        return replace(self._metrics)

    def get_agent_comparison(self) -> Dict[str, Dict[str, Any]]:
        comparison = {}
        threshold = self.config.specialization_threshold

        for agent_id, record in self._agents.items():
            state = record.agent_state
            specialization = record.specialization
            comparison[agent_id] = {
                'role': record.role.value,
                'is_coordinator': agent_id == self._coordinator_id,
                'performance': {
                    'average_reward': state.get('average_reward', record.rolling_average()),
                    'rolling_reward': record.rolling_average(),
                    'win_rate': state.get('win_rate', 0.0),
                    'sharpe_ratio': state.get('sharpe_ratio', 0.0),
                    'total_episodes': state.get('episode', record.episodes_completed)
                },
                'specialization': None if specialization is None else {
                    'symbol': specialization.symbol,
                    'expertise': specialization.expertise,
                    'specialized': specialization.expertise >= threshold
                },
                'recent_performance': record.rewards[-10:],
                'current_state': {
                    'epsilon': state.get('epsilon', 0.0),
                    'buffer_size': len(record.replay_buffer)
                }
            }

        return comparison

    # ------------------------------------------------------------------ #
    # Cleanup
    # ------------------------------------------------------------------ #

    @staticmethod
    async def _dispose_quietly(resource: Any, label: str):
        if not hasattr(resource, 'dispose'):
            return
        try:
            await _maybe_await(resource.dispose())
        except Exception as e:
            logger.error(f"Error disposing {label}: {e}")

    async def dispose(self):
        """Release every agent, environment and buffer"""
        for task in self._learning_tasks.values():
            task.cancel()
        self._learning_tasks.clear()

        for agent_id, record in self._agents.items():
            await self._dispose_quietly(record.agent, f"agent {agent_id}")
            await self._dispose_quietly(record.environment, f"environment of {agent_id}")
            if record.replay_buffer is not self._shared_buffer:
                record.replay_buffer.dispose()

        if self._shared_buffer is not None:
            self._shared_buffer.dispose()

        self._agents.clear()
        self._coordinator_id = None
        self._global_knowledge.clear()
        self._message_queue.clear()
        self._communication_history.clear()
        self._portfolio_history.clear()

        logger.info("Multi-agent coordinator disposed")


# Default multi-agent configurations
DEFAULT_MULTI_AGENT_CONFIGS: Dict[str, MultiAgentConfig] = {
    'cooperative': MultiAgentConfig(
        coordination_strategy=CoordinationStrategy.COOPERATIVE,
        communication_protocol=CommunicationProtocol.BROADCAST,
        max_agents=5,
        enable_specialization=True,
        specialization_threshold=0.6,
        portfolio_constraints=PortfolioConstraints(
            max_position_per_asset=0.3,
            max_total_exposure=0.8,
            min_diversification=0.3,
            correlation_limit=0.7
        ),
        consensus_threshold=0.6,
        competition_weight=0.2,
        information_sharing=InformationSharing(
            share_experiences=True,
            share_rewards=True,
            share_models=False,
            sharing_frequency=10
        ),
        synchronous_learning=True,
        shared_replay_buffer=True,
        parallel_execution=True,
        adaptive_allocation=True
    ),
    'competitive': MultiAgentConfig(
        coordination_strategy=CoordinationStrategy.COMPETITIVE,
        communication_protocol=CommunicationProtocol.DIRECT,
        max_agents=8,
        enable_specialization=True,
        specialization_threshold=0.7,
        portfolio_constraints=PortfolioConstraints(
            max_position_per_asset=0.4,
            max_total_exposure=1.0,
            min_diversification=0.2,
            correlation_limit=0.8
        ),
        consensus_threshold=0.5,
        competition_weight=0.8,
        information_sharing=InformationSharing(
            share_experiences=False,
            share_rewards=False,
            share_models=False,
            sharing_frequency=50
        ),
        synchronous_learning=False,
        shared_replay_buffer=False,
        parallel_execution=True,
        adaptive_allocation=True
    ),
    'hierarchical': MultiAgentConfig(
        coordination_strategy=CoordinationStrategy.HIERARCHICAL,
        communication_protocol=CommunicationProtocol.HIERARCHICAL,
        max_agents=6,
        enable_specialization=True,
        specialization_threshold=0.5,
        portfolio_constraints=PortfolioConstraints(
            max_position_per_asset=0.25,
            max_total_exposure=0.7,
            min_diversification=0.4,
            correlation_limit=0.6
        ),
        consensus_threshold=0.7,
        competition_weight=0.1,
        information_sharing=InformationSharing(
            share_experiences=True,
            share_rewards=True,
            share_models=True,
            sharing_frequency=5
        ),
        synchronous_learning=True,
        shared_replay_buffer=True,
        parallel_execution=False,
        adaptive_allocation=True
    )
}
