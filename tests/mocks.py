"""Mock agents and environments driving the coordinator in tests"""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from rl_trading.reinforcement_learning.modules.data_classes import (
    Action, ActionType, EnvironmentState, Experience, MarketCondition
)


def make_state(equity: float = 10000.0, market: float = 0.0, portfolio: float = 0.0,
               risk: float = 0.0, condition: MarketCondition = MarketCondition.SIDEWAYS,
               volatility: float = 0.0, drawdown: float = 0.0,
               positions: Optional[Dict[str, float]] = None, step_count: int = 0,
               cash: float = 0.0, timestamp: Optional[datetime] = None) -> EnvironmentState:
    return EnvironmentState(
        market_features=[market, 0.5, 0.25],
        portfolio_state=[portfolio, 1.0],
        risk_metrics=[risk],
        time_features=[0.0, 1.0],
        condition=condition,
        volatility=volatility,
        positions=positions or {},
        cash=cash,
        equity=equity,
        drawdown=drawdown,
        timestamp=timestamp or datetime.now(),
        step_count=step_count
    )


def make_experience(reward: float = 1.0, market: float = 0.0, td_error: Optional[float] = None,
                    age_hours: float = 0.0, action_type: ActionType = ActionType.BUY) -> Experience:
    state = make_state(market=market)
    return Experience(
        state=state,
        action=Action(action_type, 0.1),
        reward=reward,
        next_state=make_state(market=market, step_count=1),
        done=False,
        td_error=td_error,
        timestamp=datetime.now() - timedelta(hours=age_hours)
    )


class MockAgent:
    """Agent proposing a fixed action and counting calls"""

    def __init__(self, action: Optional[Action] = None, loss: float = 0.1):
        self.action = action or Action(ActionType.HOLD, 0.0)
        self.loss = loss
        self.learn_calls = 0
        self.episode = 0
        self.disposed = False
        self.buffer = None
        self.messages: List = []
        self.completed_episodes: List[float] = []

    def bind_replay_buffer(self, buffer):
        self.buffer = buffer

    def select_action(self, state):
        return self.action

    def learn(self):
        self.learn_calls += 1
        return self.loss

    def get_state(self):
        return {'episode': self.episode, 'average_reward': 0.0, 'epsilon': 0.1}

    def receive_message(self, message):
        self.messages.append(message)

    def complete_episode(self, total_reward, steps):
        self.episode += 1
        self.completed_episodes.append(total_reward)

    def dispose(self):
        self.disposed = True


class AsyncMockAgent(MockAgent):
    """Same behaviour exposed through coroutines"""

    async def select_action(self, state):
        return self.action

    async def learn(self):
        self.learn_calls += 1
        return self.loss


class EpisodeRecordingAgent(AsyncMockAgent):
    """Remembers how many learn calls had finished when each episode completed"""

    def __init__(self, action: Optional[Action] = None, loss: float = 0.1):
        super().__init__(action, loss)
        self.learn_calls_at_episode_end: List[int] = []

    def complete_episode(self, total_reward, steps):
        super().complete_episode(total_reward, steps)
        self.learn_calls_at_episode_end.append(self.learn_calls)


class SlowLearningAgent(MockAgent):
    """learn() suspends until the current episode completes"""

    def __init__(self, action: Optional[Action] = None, loss: float = 0.1):
        super().__init__(action, loss)
        self.learn_started = 0
        self.release = asyncio.Event()

    async def learn(self):
        self.learn_started += 1
        await self.release.wait()
        self.learn_calls += 1
        return self.loss

    def complete_episode(self, total_reward, steps):
        super().complete_episode(total_reward, steps)
        self.release.set()


class FailingAgent(MockAgent):
    """Raises from select_action"""

    def select_action(self, state):
        raise RuntimeError("model exploded")


class MockEnvironment:
    """
    Environment growing equity by a fixed return per step.

    Executed BUY/SELL sizes accumulate into the position of `symbol`.
    """

    def __init__(self, symbol: str = 'BTC', step_return: float = 0.01,
                 episode_length: int = 5, initial_position: float = 0.0,
                 commission: float = 0.0):
        self.symbol = symbol
        self.step_return = step_return
        self.episode_length = episode_length
        self.initial_position = initial_position
        self.commission = commission
        self.executed: List[Action] = []
        self.disposed = False
        self._reset_state()

    def _reset_state(self):
        self.steps = 0
        self.equity = 10000.0
        self.position = self.initial_position

    def _state(self) -> EnvironmentState:
        return make_state(
            equity=self.equity,
            market=float(self.steps) / 10,
            positions={self.symbol: self.position} if self.position else {},
            step_count=self.steps
        )

    def reset(self):
        self._reset_state()
        return self._state()

    def get_state(self):
        return self._state()

    def step(self, action: Action):
        self.executed.append(action)
        if action.type == ActionType.BUY:
            self.position += action.size
        elif action.type == ActionType.SELL:
            self.position -= action.size

        self.steps += 1
        self.equity *= 1 + self.step_return
        done = self.steps >= self.episode_length

        return {
            'state': self._state(),
            'reward': self.step_return,
            'done': done,
            'info': {'execution': {'success': True, 'commission': self.commission, 'slippage': 0.0}}
        }

    def get_metrics(self):
        return {'steps': self.steps}

    def dispose(self):
        self.disposed = True


class TupleEnvironment(MockEnvironment):
    """Returns the (state, reward, done, info) tuple form"""

    async def step(self, action: Action):
        output = MockEnvironment.step(self, action)
        return output['state'], output['reward'], output['done'], output['info']
