"""
Multi-Agent Reinforcement Learning Training Core

Main module exposing the training-core components. The implementation is
split into modules under `modules/`.

File: multi_agent_system.py
Modified: 2026-10-19

Module Structure:
- exceptions.py: Error taxonomy (RLCoreError and subclasses)
- data_classes.py: Experience, EnvironmentState, Action, RewardComponents, messages
- interfaces.py: BaseAgent / BaseEnvironment collaborator contracts
- segment_tree.py: SegmentTree for O(log n) priority sampling
- replay_buffer.py: ExperienceReplayBuffer and replay presets
- risk_metrics.py: Sharpe, Sortino, Calmar, VaR, CVaR and concentration helpers
- reward_functions.py: RewardEngine and reward presets
- coordination_policies.py: CoordinationPolicy strategies
- multi_agent_coordinator.py: MultiAgentCoordinator and multi-agent presets
"""

from typing import Optional

from .modules.data_classes import (
    EnvironmentState, Action, ActionType, Experience, MarketCondition, AgentRole,
    AgentCommunication, MessageType, RewardComponents, SamplingResult, StepResult
)
from .modules.exceptions import (
    RLCoreError, ConfigurationError, CapacityExceededError, InvalidIndexError, AgentNotFoundError
)
from .modules.interfaces import BaseAgent, BaseEnvironment
from .modules.segment_tree import SegmentTree
from .modules.replay_buffer import ExperienceReplayBuffer, ReplayConfig, SamplingStrategy, DEFAULT_REPLAY_CONFIGS
from .modules.reward_functions import RewardEngine, RewardConfig, RewardType, DEFAULT_REWARD_CONFIGS
from .modules.coordination_policies import CoordinationPolicy, CoordinationStrategy, create_coordination_policy
from .modules.multi_agent_coordinator import (
    MultiAgentCoordinator, MultiAgentConfig, DEFAULT_MULTI_AGENT_CONFIGS
)
from ..utils.config import Config


def create_coordinator(config: Optional[Config] = None,
                       policy: Optional[CoordinationPolicy] = None) -> MultiAgentCoordinator:
    """Build a coordinator from a YAML-backed Config (defaults when None)"""
    config = config or Config()
    return MultiAgentCoordinator(config.multi_agent_config(), policy=policy)


__all__ = [
    'EnvironmentState',
    'Action',
    'ActionType',
    'Experience',
    'MarketCondition',
    'AgentRole',
    'AgentCommunication',
    'MessageType',
    'RewardComponents',
    'SamplingResult',
    'StepResult',
    'RLCoreError',
    'ConfigurationError',
    'CapacityExceededError',
    'InvalidIndexError',
    'AgentNotFoundError',
    'BaseAgent',
    'BaseEnvironment',
    'SegmentTree',
    'ExperienceReplayBuffer',
    'ReplayConfig',
    'SamplingStrategy',
    'DEFAULT_REPLAY_CONFIGS',
    'RewardEngine',
    'RewardConfig',
    'RewardType',
    'DEFAULT_REWARD_CONFIGS',
    'CoordinationPolicy',
    'CoordinationStrategy',
    'create_coordination_policy',
    'MultiAgentCoordinator',
    'MultiAgentConfig',
    'DEFAULT_MULTI_AGENT_CONFIGS',
    'create_coordinator'
]

# Version information
__version__ = '4.0.0'
