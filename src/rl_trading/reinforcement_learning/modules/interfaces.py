"""
Interfaces of the external collaborators driven by the coordinator.

The coordinator duck-types against these: any object exposing the same
methods works, and every method may be a coroutine function.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Tuple, Union

from .data_classes import Action, EnvironmentState

# {state, reward, done, info} mapping or the (state, reward, done, info) tuple
EnvironmentStepOutput = Union[Mapping[str, Any], Tuple[EnvironmentState, float, bool, Dict[str, Any]]]


class BaseAgent(ABC):
    """Policy/learner owned outside the core"""

    @abstractmethod
    def select_action(self, state: EnvironmentState) -> Action:
        """Choose an action for the given state"""
        pass

    @abstractmethod
    def learn(self) -> float:
        """Sample from the bound replay buffer and run one gradient update; returns the loss"""
        pass

    @abstractmethod
    def get_state(self) -> Dict[str, Any]:
        """Training state, e.g. {'episode', 'average_reward', 'epsilon'}"""
        pass

    def dispose(self) -> None:
        pass


class BaseEnvironment(ABC):
    """Market simulator owned outside the core"""

    @abstractmethod
    def reset(self) -> EnvironmentState:
        pass

    @abstractmethod
    def step(self, action: Action) -> EnvironmentStepOutput:
        """Execute an action; `info['execution']` carries {success, commission, slippage}"""
        pass

    @abstractmethod
    def get_state(self) -> EnvironmentState:
        pass

    def get_metrics(self) -> Dict[str, Any]:
        return {}

    def dispose(self) -> None:
        pass
