"""
Reinforcement learning training-core components.

Components:
    - SegmentTree: Sum tree backing proportional priority sampling
    - ExperienceReplayBuffer: Prioritized experience replay with five sampling strategies
    - RewardEngine: Multi-objective risk-adjusted reward calculation
    - MultiAgentCoordinator: Coordinates multiple agents over one portfolio
    - CoordinationPolicy: Pluggable action reconciliation strategies
    - DataClasses: Experiences, states, actions and reward breakdowns

Author: Trading Bot Team
Version: 4.0
"""

from .exceptions import (
    RLCoreError, ConfigurationError, CapacityExceededError, InvalidIndexError, AgentNotFoundError
)
from .data_classes import (
    MarketCondition, ActionType, MessageType, AgentRole, BROADCAST,
    EnvironmentState, Action, ExecutionResult, Experience, SamplingMetadata, SamplingResult,
    RewardComponents, PerformanceMetrics, PortfolioRisk, PortfolioState, AgentCommunication, StepResult
)
from .interfaces import BaseAgent, BaseEnvironment
from .segment_tree import SegmentTree
from .replay_buffer import (
    SamplingStrategy, BetaSchedule, ReplayConfig, BufferStatistics, ExperienceReplayBuffer,
    DEFAULT_REPLAY_CONFIGS
)
from .reward_functions import RewardType, RiskMeasure, RewardConfig, RewardEngine, DEFAULT_REWARD_CONFIGS
from .coordination_policies import (
    CoordinationStrategy, CoordinationContext, CoordinationPolicy, IndependentPolicy,
    CooperativePolicy, CompetitivePolicy, HierarchicalPolicy, ConsensusPolicy,
    create_coordination_policy
)
from .multi_agent_coordinator import (
    CommunicationProtocol, PortfolioConstraints, InformationSharing, MultiAgentConfig,
    AgentSpecialization, SystemMetrics, MultiAgentCoordinator, DEFAULT_MULTI_AGENT_CONFIGS
)

__all__ = [
    'RLCoreError',
    'ConfigurationError',
    'CapacityExceededError',
    'InvalidIndexError',
    'AgentNotFoundError',
    'MarketCondition',
    'ActionType',
    'MessageType',
    'AgentRole',
    'BROADCAST',
    'EnvironmentState',
    'Action',
    'ExecutionResult',
    'Experience',
    'SamplingMetadata',
    'SamplingResult',
    'RewardComponents',
    'PerformanceMetrics',
    'PortfolioRisk',
    'PortfolioState',
    'AgentCommunication',
    'StepResult',
    'BaseAgent',
    'BaseEnvironment',
    'SegmentTree',
    'SamplingStrategy',
    'BetaSchedule',
    'ReplayConfig',
    'BufferStatistics',
    'ExperienceReplayBuffer',
    'DEFAULT_REPLAY_CONFIGS',
    'RewardType',
    'RiskMeasure',
    'RewardConfig',
    'RewardEngine',
    'DEFAULT_REWARD_CONFIGS',
    'CoordinationStrategy',
    'CoordinationContext',
    'CoordinationPolicy',
    'IndependentPolicy',
    'CooperativePolicy',
    'CompetitivePolicy',
    'HierarchicalPolicy',
    'ConsensusPolicy',
    'create_coordination_policy',
    'CommunicationProtocol',
    'PortfolioConstraints',
    'InformationSharing',
    'MultiAgentConfig',
    'AgentSpecialization',
    'SystemMetrics',
    'MultiAgentCoordinator',
    'DEFAULT_MULTI_AGENT_CONFIGS'
]
