"""
Reinforcement learning training core for trading agents.

Shared infrastructure used by trading agents: a segment-tree indexed
prioritized replay buffer, a multi-objective risk-adjusted reward engine and
a multi-agent coordinator reconciling simultaneous actions against shared
portfolio constraints.

Main Components:
    - ExperienceReplayBuffer: Prioritized replay with uniform, temporal,
      diversity and curiosity sampling
    - RewardEngine: Risk-adjusted reward with an auditable breakdown
    - MultiAgentCoordinator: Steps and trains N agent/environment pairs

Usage:
    from rl_trading.reinforcement_learning import MultiAgentCoordinator, DEFAULT_MULTI_AGENT_CONFIGS

    coordinator = MultiAgentCoordinator(DEFAULT_MULTI_AGENT_CONFIGS['hierarchical'])
    coordinator.add_agent('btc', agent, environment, symbols=['BTC'])
    results = await coordinator.step()

Author: Trading Bot Team
Version: 4.0
"""

from .multi_agent_system import (
    ExperienceReplayBuffer, ReplayConfig, RewardEngine, RewardConfig,
    MultiAgentCoordinator, MultiAgentConfig, SegmentTree,
    DEFAULT_REPLAY_CONFIGS, DEFAULT_REWARD_CONFIGS, DEFAULT_MULTI_AGENT_CONFIGS,
    create_coordinator
)

__all__ = [
    'ExperienceReplayBuffer',
    'ReplayConfig',
    'RewardEngine',
    'RewardConfig',
    'MultiAgentCoordinator',
    'MultiAgentConfig',
    'SegmentTree',
    'DEFAULT_REPLAY_CONFIGS',
    'DEFAULT_REWARD_CONFIGS',
    'DEFAULT_MULTI_AGENT_CONFIGS',
    'create_coordinator'
]

# Version info
__version__ = '4.0.0'
__author__ = 'Trading Bot Team'
