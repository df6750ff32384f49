"""
Configuration Manager - YAML-based configuration management
Manages training-core configuration loading from YAML files and environment
variables with validation and default values.

File: config.py
Modified: 2026-10-19
"""

import os
import copy
import yaml
from typing import Dict, Any
from pathlib import Path

from .logger import setup_logger

logger = setup_logger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    'replay': {
        'preset': 'standard',
        'capacity': 100000,
        'min_size': 1000,
        'batch_size': 32,
        'strategy': 'prioritized',
        'alpha': 0.6,
        'beta_schedule': 'linear',
        'beta_start': 0.4,
        'beta_end': 1.0,
        'priority_epsilon': 0.001,
        'compression_enabled': True,
        'compression_threshold': 0.9
    },
    'reward': {
        'preset': 'balanced',
        'type': 'risk_adjusted',
        'adaptive_weighting': True
    },
    'multi_agent': {
        'preset': 'hierarchical',
        'coordination_strategy': 'hierarchical',
        'max_agents': 6,
        'shared_replay_buffer': True,
        'parallel_execution': False,
        'max_steps_per_episode': 10000
    },
    'logging': {
        'level': 'INFO'
    }
}


class Config:
    """Configuration management"""

    def __init__(self, config_path: str = "configs/rl_config.yaml"):
        self.config_path = Path(config_path)
        self.config = self._load_config()
        self._load_env_vars()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file"""
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_path.exists():
            with open(self.config_path, 'r') as f:
                loaded = yaml.safe_load(f) or {}

            # Merge file sections over the defaults
            for section, values in loaded.items():
                if isinstance(values, dict) and isinstance(config.get(section), dict):
                    config[section].update(values)
                else:
                    config[section] = values
        else:
            logger.info(f"Config file {self.config_path} not found, using defaults")

        return config

    def _load_env_vars(self):
        """Load environment variables and override config"""
        # Replay buffer
        if 'RL_REPLAY_CAPACITY' in os.environ:
            self.config['replay']['capacity'] = int(os.environ['RL_REPLAY_CAPACITY'])

        if 'RL_REPLAY_STRATEGY' in os.environ:
            self.config['replay']['strategy'] = os.environ['RL_REPLAY_STRATEGY'].lower()

        # Multi-agent
        if 'RL_MAX_AGENTS' in os.environ:
            self.config['multi_agent']['max_agents'] = int(os.environ['RL_MAX_AGENTS'])

        if 'RL_COORDINATION_STRATEGY' in os.environ:
            self.config['multi_agent']['coordination_strategy'] = \
                os.environ['RL_COORDINATION_STRATEGY'].lower()

        # Logging
        if 'RL_LOG_LEVEL' in os.environ:
            self.config['logging']['level'] = os.environ['RL_LOG_LEVEL'].upper()

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value"""
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def has(self, key: str) -> bool:
        """Check whether a dotted key is present"""
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def set(self, key: str, value: Any):
        """Set configuration value"""
        keys = key.split('.')
        config = self.config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def save(self):
        """Save configuration to file"""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w') as f:
            yaml.dump(self.config, f, default_flow_style=False)

    def _section_overrides(self, section: str) -> Dict[str, Any]:
        values = dict(self.get(section, {}) or {})
        values.pop('preset', None)
        return values

    def _preset(self, section: str, default: str, presets: Dict[str, Any]):
        from ..reinforcement_learning.modules.exceptions import ConfigurationError

        preset = self.get(f"{section}.preset", default)
        if preset not in presets:
            raise ConfigurationError(f"Unknown {section} preset: {preset}")
        return presets[preset]

    def replay_config(self):
        """Build a validated ReplayConfig from the `replay` section"""
        from ..reinforcement_learning.modules.replay_buffer import ReplayConfig, DEFAULT_REPLAY_CONFIGS

        base = self._preset('replay', 'standard', DEFAULT_REPLAY_CONFIGS)
        return ReplayConfig.from_dict(self._section_overrides('replay'), base=base)

    def reward_config(self):
        """Build a validated RewardConfig from the `reward` section"""
        from ..reinforcement_learning.modules.reward_functions import RewardConfig, DEFAULT_REWARD_CONFIGS

        base = self._preset('reward', 'balanced', DEFAULT_REWARD_CONFIGS)
        return RewardConfig.from_dict(self._section_overrides('reward'), base=base)

    def multi_agent_config(self):
        """Build a validated MultiAgentConfig from the `multi_agent` section"""
        from ..reinforcement_learning.modules.multi_agent_coordinator import (
            MultiAgentConfig, DEFAULT_MULTI_AGENT_CONFIGS
        )

        base = self._preset('multi_agent', 'hierarchical', DEFAULT_MULTI_AGENT_CONFIGS)
        config = MultiAgentConfig.from_dict(self._section_overrides('multi_agent'), base=base)
        config.replay_config = self.replay_config()
        config.default_reward_config = self.reward_config()
        config.validate()
        return config

    def validate(self) -> bool:
        """Validate configuration"""
        from ..reinforcement_learning.modules.exceptions import ConfigurationError

        required_keys = [
            'replay.capacity',
            'replay.strategy',
            'multi_agent.max_agents',
            'multi_agent.coordination_strategy'
        ]

        for key in required_keys:
            if self.get(key) is None:
                logger.error(f"Missing required configuration: {key}")
                return False

        try:
            self.multi_agent_config()
        except ConfigurationError as e:
            logger.error(f"Invalid configuration: {e}")
            return False

        return True
