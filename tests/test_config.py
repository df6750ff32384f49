import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import yaml

from rl_trading.utils.config import Config, DEFAULT_CONFIG
from rl_trading.reinforcement_learning import create_coordinator
from rl_trading.reinforcement_learning.modules.coordination_policies import CoordinationStrategy
from rl_trading.reinforcement_learning.modules.replay_buffer import SamplingStrategy
from rl_trading.reinforcement_learning.modules.reward_functions import RewardType
from rl_trading.reinforcement_learning.modules.exceptions import ConfigurationError

REPO_CONFIG = Path(__file__).resolve().parent.parent / 'configs' / 'rl_config.yaml'


class TestConfig(unittest.TestCase):
    """Test YAML loading, environment overrides and typed accessors"""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tmpdir.name) / 'rl_config.yaml'
        patcher = mock.patch.dict(os.environ, {}, clear=False)
        patcher.start()
        self.addCleanup(patcher.stop)
        for name in ('RL_REPLAY_CAPACITY', 'RL_REPLAY_STRATEGY', 'RL_MAX_AGENTS',
                     'RL_COORDINATION_STRATEGY', 'RL_LOG_LEVEL'):
            os.environ.pop(name, None)

    def tearDown(self):
        self.tmpdir.cleanup()

    def write(self, data):
        with open(self.path, 'w') as f:
            yaml.safe_dump(data, f)

    def test_defaults_when_missing(self):
        config = Config(str(self.path))
        self.assertEqual(config.get('replay.capacity'), DEFAULT_CONFIG['replay']['capacity'])
        self.assertEqual(config.get('missing.key', 'fallback'), 'fallback')
        self.assertFalse(config.has('missing.key'))
        self.assertTrue(config.validate())

    def test_file_sections_merge_over_defaults(self):
        self.write({'replay': {'capacity': 5000, 'min_size': 100}, 'multi_agent': {'max_agents': 3}})
        config = Config(str(self.path))

        self.assertEqual(config.get('replay.capacity'), 5000)
        self.assertEqual(config.get('replay.strategy'), 'prioritized')
        self.assertEqual(config.get('multi_agent.max_agents'), 3)

    def test_environment_overrides(self):
        self.write({'replay': {'capacity': 5000, 'min_size': 100}})
        with mock.patch.dict(os.environ, {'RL_REPLAY_CAPACITY': '2000', 'RL_REPLAY_STRATEGY': 'UNIFORM',
                                          'RL_MAX_AGENTS': '2', 'RL_COORDINATION_STRATEGY': 'Independent'}):
            config = Config(str(self.path))

        self.assertEqual(config.get('replay.capacity'), 2000)
        self.assertEqual(config.get('replay.strategy'), 'uniform')
        self.assertEqual(config.get('multi_agent.max_agents'), 2)
        self.assertEqual(config.multi_agent_config().coordination_strategy, CoordinationStrategy.INDEPENDENT)

    def test_set_and_save(self):
        config = Config(str(self.path))
        config.set('reward.type', 'sharpe_based')
        config.set('custom.nested.value', 7)
        config.save()

        reloaded = Config(str(self.path))
        self.assertEqual(reloaded.get('reward.type'), 'sharpe_based')
        self.assertEqual(reloaded.get('custom.nested.value'), 7)
        self.assertEqual(reloaded.reward_config().type, RewardType.SHARPE_BASED)

    def test_typed_accessors(self):
        self.write({
            'replay': {'preset': 'fast', 'capacity': 1000, 'min_size': 10},
            'multi_agent': {'preset': 'cooperative', 'max_agents': 4,
                            'portfolio_constraints': {'max_total_exposure': 0.6}}
        })
        config = Config(str(self.path))

        replay = config.replay_config()
        self.assertEqual(replay.capacity, 1000)
        self.assertEqual(replay.strategy, SamplingStrategy.PRIORITIZED)

        multi_agent = config.multi_agent_config()
        self.assertEqual(multi_agent.max_agents, 4)
        self.assertEqual(multi_agent.portfolio_constraints.max_total_exposure, 0.6)
        self.assertEqual(multi_agent.portfolio_constraints.max_position_per_asset, 0.3)
        self.assertEqual(multi_agent.replay_config.capacity, 1000)

    def test_validate_rejects_bad_values(self):
        self.write({'replay': {'capacity': 500}})
        self.assertFalse(Config(str(self.path)).validate())

        self.write({'multi_agent': {'coordination_strategy': 'democratic'}})
        self.assertFalse(Config(str(self.path)).validate())

    def test_unknown_preset_rejected(self):
        """Test an unknown preset name raises instead of falling back to defaults"""
        for section, accessor in (('replay', 'replay_config'), ('reward', 'reward_config'),
                                  ('multi_agent', 'multi_agent_config')):
            with self.subTest(section=section):
                config = Config(str(self.path))
                config.set(f'{section}.preset', 'no_such_preset')
                with self.assertRaises(ConfigurationError) as ctx:
                    getattr(config, accessor)()
                self.assertIn(f'Unknown {section} preset: no_such_preset', str(ctx.exception))
                self.assertFalse(config.validate())

    def test_repository_config(self):
        config = Config(str(REPO_CONFIG))
        self.assertTrue(config.validate())

        multi_agent = config.multi_agent_config()
        self.assertEqual(multi_agent.coordination_strategy, CoordinationStrategy.HIERARCHICAL)
        self.assertEqual(multi_agent.portfolio_constraints.max_total_exposure, 0.7)

    def test_create_coordinator(self):
        self.write({'replay': {'capacity': 1000, 'min_size': 10}})
        coordinator = create_coordinator(Config(str(self.path)))

        self.assertEqual(coordinator.config.coordination_strategy, CoordinationStrategy.HIERARCHICAL)
        self.assertIsNotNone(coordinator.shared_replay_buffer)
        self.assertEqual(coordinator.shared_replay_buffer.capacity, 1000)


if __name__ == '__main__':
    unittest.main()
