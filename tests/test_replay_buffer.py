import json
import threading
import unittest

import numpy as np

from rl_trading.reinforcement_learning.modules.replay_buffer import (
    ExperienceReplayBuffer, ReplayConfig, SamplingStrategy, BetaSchedule, DEFAULT_REPLAY_CONFIGS
)
from rl_trading.reinforcement_learning.modules.data_classes import ActionType, SamplingResult
from rl_trading.reinforcement_learning.modules.exceptions import ConfigurationError
from tests.mocks import make_experience, make_state


def small_buffer(**overrides) -> ExperienceReplayBuffer:
    values = dict(capacity=64, min_size=1, batch_size=8, compression_enabled=False, seed=0)
    values.update(overrides)
    return ExperienceReplayBuffer(ReplayConfig(**values))


class TestReplayInsertion(unittest.TestCase):
    """Test circular insertion and initial priorities"""

    def test_capacity_bound(self):
        """Test size never exceeds capacity and the oldest slot is overwritten"""
        buffer = small_buffer(capacity=10)
        for i in range(15):
            buffer.add(make_experience(reward=float(i + 1)))

        self.assertEqual(buffer.size(), 10)
        self.assertEqual(len(buffer), 10)
        self.assertEqual(buffer.get(0).reward, 11.0)
        self.assertEqual(buffer.get(4).reward, 15.0)
        self.assertEqual(buffer.get(5).reward, 6.0)

    def test_rejects_invalid_experiences(self):
        buffer = small_buffer()
        self.assertIsNone(buffer.add("not an experience"))
        self.assertIsNone(buffer.add(make_experience(reward=float('nan'))))
        self.assertIsNone(buffer.add(make_experience(reward=float('inf'))))
        self.assertEqual(buffer.size(), 0)

    def test_priority_floor(self):
        """Test every stored priority is at least epsilon"""
        buffer = small_buffer()
        for reward in (0.0, 0.5, -3.0):
            buffer.add(make_experience(reward=reward))

        eps = buffer.config.priority_epsilon
        for i in range(buffer.size()):
            self.assertGreaterEqual(buffer.get(i).priority, eps)
        self.assertGreater(buffer.tree.total_sum(), 0)

    def test_initial_priority_sources(self):
        """Test TD error beats reward, and 'max' mode uses the running max"""
        buffer = small_buffer(alpha=1.0)
        index = buffer.add(make_experience(reward=5.0, td_error=0.5))
        self.assertAlmostEqual(buffer.get(index).priority, 0.5 + buffer.config.priority_epsilon)

        index = buffer.add(make_experience(reward=2.0))
        self.assertAlmostEqual(buffer.get(index).priority, 2.0 + buffer.config.priority_epsilon)

        max_buffer = small_buffer(new_priority='max')
        index = max_buffer.add(make_experience(reward=7.0))
        self.assertEqual(max_buffer.get(index).priority, 1.0)

    def test_state_signature_and_novelty(self):
        signature = ExperienceReplayBuffer.generate_state_signature(make_state(market=0.123))
        self.assertEqual(signature, "12-0-0-sideways")

        buffer = small_buffer()
        first = buffer.get(buffer.add(make_experience(market=0.2)))
        second = buffer.get(buffer.add(make_experience(market=0.2)))
        self.assertEqual(first.state_signature, second.state_signature)
        self.assertAlmostEqual(first.novelty, 1.0)
        self.assertAlmostEqual(second.novelty, 1.0 / np.sqrt(2))


class TestReplaySampling(unittest.TestCase):
    """Test the sampling strategies"""

    def test_below_min_size(self):
        buffer = small_buffer(min_size=10)
        for _ in range(5):
            buffer.add(make_experience())

        self.assertFalse(buffer.can_sample())
        self.assertIsNone(buffer.sample())

    def test_invalid_batch_size(self):
        buffer = small_buffer()
        buffer.add(make_experience())
        with self.assertRaises(ValueError):
            buffer.sample(0)

    def test_prioritized_weights(self):
        """Test IS weights are positive and normalized to a max of 1"""
        buffer = small_buffer()
        for i in range(50):
            buffer.add(make_experience(reward=float(i % 7) - 3.0, market=i / 100))

        result = buffer.sample(16)
        self.assertEqual(len(result), 16)
        self.assertEqual(result.generation, 0)
        self.assertAlmostEqual(float(result.weights.max()), 1.0)
        self.assertTrue(np.all(result.weights > 0))
        for index in result.indices:
            self.assertTrue(0 <= index < buffer.size())
        self.assertGreater(result.metadata.average_priority, 0)

    def test_prioritized_prefers_high_priority(self):
        buffer = small_buffer(alpha=1.0)
        buffer.add(make_experience(reward=100.0))
        for _ in range(9):
            buffer.add(make_experience(reward=0.0))

        hits = 0
        for _ in range(50):
            hits += buffer.sample(4).indices.count(0)
        self.assertGreater(hits, 150)

    def test_uniform_sampling(self):
        buffer = small_buffer(strategy='uniform')
        for i in range(20):
            buffer.add(make_experience(reward=float(i)))

        result = buffer.sample(10)
        self.assertEqual(len(set(result.indices)), 10)
        np.testing.assert_array_equal(result.weights, np.ones(10))

    def test_temporal_sampling(self):
        buffer = small_buffer(strategy=SamplingStrategy.TEMPORAL)
        for i in range(20):
            buffer.add(make_experience(age_hours=float(i)))

        result = buffer.sample(10)
        self.assertEqual(len(result), 10)
        self.assertEqual(len(set(result.indices)), 10)
        self.assertGreater(result.metadata.temporal_spread, 0)

    def test_curiosity_sampling(self):
        buffer = small_buffer(strategy=SamplingStrategy.CURIOSITY)
        for i in range(20):
            buffer.add(make_experience(market=(i % 4) / 10))

        result = buffer.sample(12)
        self.assertEqual(len(set(result.indices)), 12)

    def test_diversity_duplicate_cap(self):
        """Test no signature exceeds max_duplicates when enough variety exists"""
        buffer = small_buffer(strategy=SamplingStrategy.DIVERSITY, max_duplicates=3)
        for _ in range(10):
            buffer.add(make_experience(market=0.0))
        for _ in range(10):
            buffer.add(make_experience(market=0.5))

        result = buffer.sample(6)
        signatures = [exp.state_signature for exp in result.experiences]
        self.assertEqual(len(result), 6)
        for signature in set(signatures):
            self.assertEqual(signatures.count(signature), 3)
        self.assertAlmostEqual(result.metadata.diversity_score, 2 / 6)

    def test_diversity_backfills(self):
        buffer = small_buffer(strategy=SamplingStrategy.DIVERSITY, max_duplicates=1)
        for _ in range(10):
            buffer.add(make_experience(market=0.0))

        result = buffer.sample(5)
        self.assertEqual(len(set(result.indices)), 5)

    def test_batch_larger_than_size(self):
        buffer = small_buffer(strategy='uniform')
        for _ in range(3):
            buffer.add(make_experience())
        self.assertEqual(len(buffer.sample(10)), 3)


class TestBetaAnnealing(unittest.TestCase):
    """Test importance-sampling exponent schedules"""

    def _run(self, schedule, samples=20):
        buffer = small_buffer(beta_schedule=schedule, beta=0.5, beta_start=0.4, beta_end=1.0,
                              beta_annealing_steps=10)
        buffer.add(make_experience())
        betas = [buffer.beta]
        for _ in range(samples):
            buffer.sample(1)
            betas.append(buffer.beta)
        return betas

    def test_linear(self):
        betas = self._run(BetaSchedule.LINEAR)
        self.assertAlmostEqual(betas[0], 0.4)
        self.assertEqual(betas, sorted(betas))
        self.assertAlmostEqual(betas[-1], 1.0)

    def test_exponential(self):
        betas = self._run(BetaSchedule.EXPONENTIAL)
        self.assertEqual(betas, sorted(betas))
        self.assertAlmostEqual(betas[-1], 1.0)

    def test_constant(self):
        betas = self._run(BetaSchedule.CONSTANT)
        for beta in betas:
            self.assertAlmostEqual(beta, 0.5)


class TestPriorityUpdates(unittest.TestCase):
    """Test TD error feedback"""

    def setUp(self):
        self.buffer = small_buffer(alpha=1.0)
        for _ in range(10):
            self.buffer.add(make_experience(reward=1.0))

    def test_update(self):
        result = self.buffer.sample(4)
        updated = self.buffer.update_priorities(result.indices, [2.0] * 4, generation=result.generation)

        self.assertEqual(updated, 4)
        for index in result.indices:
            self.assertAlmostEqual(self.buffer.get(index).priority, 2.0 + self.buffer.config.priority_epsilon)
            self.assertEqual(self.buffer.get(index).td_error, 2.0)
        self.assertGreaterEqual(self.buffer.max_priority, 2.0)

    def test_non_finite_and_out_of_range_skipped(self):
        before = self.buffer.get(1).priority
        updated = self.buffer.update_priorities([0, 1, 99], [0.3, float('nan'), 1.0])

        self.assertEqual(updated, 1)
        self.assertEqual(self.buffer.get(1).priority, before)

    def test_zero_error_keeps_floor(self):
        self.buffer.update_priorities([0], [0.0])
        self.assertGreaterEqual(self.buffer.get(0).priority, self.buffer.config.priority_epsilon)

    def test_length_mismatch(self):
        with self.assertRaises(ValueError):
            self.buffer.update_priorities([0, 1], [0.1])


class TestCompression(unittest.TestCase):
    """Test priority-based compression"""

    def setUp(self):
        self.buffer = small_buffer(capacity=10, compression_enabled=True, compression_threshold=0.9,
                                   compression_ratio=0.8, alpha=1.0)

    def test_compression_keeps_highest_priorities(self):
        for i in range(9):
            self.buffer.add(make_experience(reward=float(i + 1)))
        self.assertEqual(self.buffer.size(), 9)
        self.assertEqual(self.buffer.generation, 0)

        self.buffer.add(make_experience(reward=10.0))

        self.assertEqual(self.buffer.size(), 8)
        self.assertEqual(self.buffer.generation, 1)
        rewards = [self.buffer.get(i).reward for i in range(self.buffer.size())]
        self.assertEqual(rewards, [float(r) for r in range(3, 11)])
        self.assertAlmostEqual(
            self.buffer.tree.total_sum(),
            sum(self.buffer.get(i).priority for i in range(8))
        )

        stats = self.buffer.get_statistics()
        self.assertEqual(stats.compressions, 1)
        self.assertAlmostEqual(stats.compression_ratio, 0.8)

    def test_stale_update_ignored(self):
        for i in range(9):
            self.buffer.add(make_experience(reward=float(i + 1)))
        result = self.buffer.sample(4)

        self.buffer.add(make_experience(reward=10.0))
        snapshot = [self.buffer.get(i).priority for i in range(self.buffer.size())]

        updated = self.buffer.update_priorities(result.indices, [50.0] * 4, generation=result.generation)
        self.assertEqual(updated, 0)
        self.assertEqual(snapshot, [self.buffer.get(i).priority for i in range(self.buffer.size())])

    def test_insertion_continues_after_compression(self):
        for i in range(10):
            self.buffer.add(make_experience(reward=float(i + 1)))
        index = self.buffer.add(make_experience(reward=0.5))
        self.assertEqual(index, 8)
        self.assertEqual(self.buffer.size(), 9)


class TestConcurrentAccess(unittest.TestCase):
    """Test one buffer shared by several writer and learner threads"""

    def test_threads_keep_tree_consistent(self):
        buffer = small_buffer(capacity=64, compression_enabled=True, compression_threshold=0.9,
                              compression_ratio=0.8, alpha=1.0)
        errors = []

        def writer(offset):
            try:
                for i in range(200):
                    buffer.add(make_experience(reward=0.1 + (offset * 200 + i) % 17 * 0.1))
            except Exception as e:
                errors.append(e)

        def learner():
            try:
                for i in range(200):
                    batch = buffer.sample(8)
                    if batch is None:
                        continue
                    td_errors = [0.05 * (i % 7 + 1)] * len(batch.indices)
                    buffer.update_priorities(batch.indices, td_errors, generation=batch.generation)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        threads += [threading.Thread(target=learner) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertLessEqual(buffer.size(), buffer.capacity)
        self.assertGreater(buffer.get_statistics().compressions, 0)

        leaves = buffer.tree.leaves()
        size = buffer.size()
        self.assertAlmostEqual(buffer.tree.total_sum(), leaves[:size].sum(), places=9)
        self.assertTrue(np.all(leaves[size:] == 0.0))
        for index in range(size):
            self.assertAlmostEqual(leaves[index], buffer.get(index).priority)


class TestStatisticsAndSerialization(unittest.TestCase):

    def test_statistics(self):
        buffer = small_buffer()
        buffer.add(make_experience(market=0.1, action_type=ActionType.BUY))
        buffer.add(make_experience(market=0.1, action_type=ActionType.SELL))
        buffer.add(make_experience(market=0.3, action_type=ActionType.BUY))

        stats = buffer.get_statistics()
        self.assertEqual(stats.size, 3)
        self.assertEqual(stats.total_added, 3)
        self.assertAlmostEqual(stats.utilization, 3 / 64)
        self.assertEqual(stats.unique_states, 2)
        self.assertEqual(stats.action_distribution, {'buy': 2, 'sell': 1})
        self.assertLessEqual(stats.priority_range[0], stats.priority_range[1])

    def test_empty_statistics(self):
        stats = small_buffer().get_statistics()
        self.assertEqual(stats.size, 0)
        self.assertIsNone(stats.oldest_timestamp)

    def test_clear(self):
        buffer = small_buffer()
        buffer.add(make_experience())
        buffer.clear()
        self.assertEqual(buffer.size(), 0)
        self.assertEqual(buffer.generation, 1)
        self.assertEqual(buffer.tree.total_sum(), 0.0)

    def test_json_round_trip(self):
        buffer = small_buffer()
        for i in range(10):
            buffer.add(make_experience(reward=float(i), market=i / 10))

        result = buffer.sample(4)
        restored = SamplingResult.from_dict(json.loads(json.dumps(result.to_dict())))

        self.assertEqual(restored.indices, result.indices)
        np.testing.assert_allclose(restored.weights, result.weights)
        for original, copy in zip(result.experiences, restored.experiences):
            self.assertEqual(copy.reward, original.reward)
            self.assertEqual(copy.action, original.action)
            self.assertEqual(copy.priority, original.priority)
            np.testing.assert_array_equal(copy.state.market_features, original.state.market_features)

    def test_to_tensors(self):
        buffer = small_buffer()
        for _ in range(10):
            buffer.add(make_experience())

        tensors = buffer.sample(4).to_tensors()
        self.assertEqual(tuple(tensors['states'].shape), (4, 8))
        self.assertEqual(tuple(tensors['rewards'].shape), (4, 1))
        self.assertEqual(tuple(tensors['weights'].shape), (4,))


class TestReplayConfig(unittest.TestCase):
    """Test configuration validation and presets"""

    def test_presets_valid(self):
        for name, config in DEFAULT_REPLAY_CONFIGS.items():
            with self.subTest(preset=name):
                config.validate()

    def test_invalid_values(self):
        for values in ({'capacity': 0}, {'min_size': 200, 'capacity': 100}, {'alpha': -1},
                       {'priority_epsilon': 0}, {'beta_end': 1.5}, {'compression_ratio': 1.0},
                       {'new_priority': 'median'}):
            with self.subTest(values=values):
                with self.assertRaises(ConfigurationError):
                    ReplayConfig.from_dict(values)

    def test_unknown_strategy(self):
        with self.assertRaises(ConfigurationError):
            ReplayConfig(strategy='random_walk')

    def test_from_dict(self):
        config = ReplayConfig.from_dict({'capacity': 500, 'min_size': 10, 'strategy': 'temporal'},
                                        base=DEFAULT_REPLAY_CONFIGS['fast'])
        self.assertEqual(config.capacity, 500)
        self.assertEqual(config.strategy, SamplingStrategy.TEMPORAL)
        self.assertEqual(config.batch_size, 64)

        with self.assertRaises(ConfigurationError):
            ReplayConfig.from_dict({'eviction': 'fifo'})

    def test_overrides_in_constructor(self):
        buffer = ExperienceReplayBuffer(capacity=32, min_size=2)
        self.assertEqual(buffer.capacity, 32)
        self.assertEqual(buffer.config.min_size, 2)


if __name__ == '__main__':
    unittest.main()
