import unittest

import numpy as np

from rl_trading.reinforcement_learning.modules import risk_metrics


class TestRatios(unittest.TestCase):
    """Test rolling risk ratios and their zero guards"""

    def test_short_history_is_zero(self):
        self.assertEqual(risk_metrics.sharpe_ratio([0.01] * 5), 0.0)
        self.assertEqual(risk_metrics.sortino_ratio([0.01] * 5), 0.0)
        self.assertEqual(risk_metrics.value_at_risk([-0.01] * 10), 0.0)

    def test_flat_returns(self):
        self.assertEqual(risk_metrics.sharpe_ratio([0.5] * 20), 0.0)

    def test_sharpe(self):
        mixed = [0.02, -0.01, 0.03, 0.0, -0.02] * 4
        array = np.array(mixed)
        self.assertAlmostEqual(risk_metrics.sharpe_ratio(mixed), array.mean() / array.std())

    def test_sortino_without_downside(self):
        self.assertEqual(risk_metrics.sortino_ratio([0.01] * 15), risk_metrics.SORTINO_NO_DOWNSIDE)
        self.assertEqual(risk_metrics.sortino_ratio([0.0] * 15), 0.0)

    def test_sortino(self):
        returns = [0.02, -0.01] * 10
        array = np.array(returns)
        downside = np.sqrt(np.mean(array[array < 0] ** 2))
        self.assertAlmostEqual(risk_metrics.sortino_ratio(returns), array.mean() / downside)

    def test_calmar(self):
        equity = list(np.linspace(100, 120, 12))
        drawdowns = [0.0] * 11 + [0.1]
        self.assertAlmostEqual(risk_metrics.calmar_ratio(equity, drawdowns), 0.2 / 0.1)
        self.assertEqual(risk_metrics.calmar_ratio(equity, [0.0] * 12), 0.0)


class TestTailRisk(unittest.TestCase):

    def test_var_and_cvar(self):
        returns = [-0.05, -0.04] + [0.01] * 38
        # floor(0.05 * 40) = 2, third smallest return is 0.01
        self.assertAlmostEqual(risk_metrics.value_at_risk(returns, 0.95), 0.01)

        returns = [-0.10, -0.08, -0.06] + [0.01] * 17
        # floor(0.05 * 20) = 1 -> -0.08; tail mean of -0.10, -0.08
        self.assertAlmostEqual(risk_metrics.value_at_risk(returns, 0.95), 0.08)
        self.assertAlmostEqual(risk_metrics.conditional_value_at_risk(returns, 0.95), 0.09)


class TestPortfolioHelpers(unittest.TestCase):

    def test_max_drawdown_from_equity(self):
        self.assertAlmostEqual(risk_metrics.max_drawdown_from_equity([100, 120, 90, 110]), 0.25)
        self.assertEqual(risk_metrics.max_drawdown_from_equity([100]), 0.0)

    def test_returns_from_equity(self):
        np.testing.assert_allclose(risk_metrics.returns_from_equity([100, 110, 99]), [0.1, -0.1])
        np.testing.assert_allclose(risk_metrics.returns_from_equity([0, 10]), [0.0])

    def test_diversification(self):
        self.assertEqual(risk_metrics.diversification_score({}), 0.0)
        self.assertEqual(risk_metrics.diversification_score({'BTC': 3.0}), 0.0)
        self.assertAlmostEqual(risk_metrics.diversification_score({'BTC': 1.0, 'ETH': 1.0}), 0.5)
        self.assertAlmostEqual(risk_metrics.herfindahl_index([0.5, 0.5]), 0.5)

    def test_consistency(self):
        self.assertEqual(risk_metrics.consistency_score([100.0] * 5), 0.0)
        self.assertAlmostEqual(risk_metrics.consistency_score([100.0] * 15), 1.0)

    def test_linear_trend(self):
        self.assertAlmostEqual(risk_metrics.linear_trend([1.0, 3.0, 5.0]), 2.0)
        self.assertEqual(risk_metrics.linear_trend([1.0]), 0.0)


if __name__ == '__main__':
    unittest.main()
