"""
Coordination policies reconciling simultaneous agent actions
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Type

from .data_classes import Action, AgentRole, EnvironmentState, coerce_enum
from .exceptions import ConfigurationError
from ...utils.logger import setup_logger

logger = setup_logger(__name__)

EXPOSURE_SCALE_FACTOR = 0.5


class CoordinationStrategy(Enum):
    """How proposed actions are reconciled before execution."""
    INDEPENDENT = "independent"
    COOPERATIVE = "cooperative"
    COMPETITIVE = "competitive"
    HIERARCHICAL = "hierarchical"
    CONSENSUS = "consensus"


@dataclass
class CoordinationContext:
    """Portfolio facts a policy may consult during one tick."""
    exposure: float = 0.0
    max_total_exposure: float = 1.0
    max_position_per_asset: float = 1.0
    coordinator_id: Optional[str] = None
    roles: Dict[str, AgentRole] = field(default_factory=dict)
    consensus_threshold: float = 0.5
    competition_weight: float = 0.0


class CoordinationPolicy(ABC):
    """Strategy interface: map proposed actions to the actions to execute"""

    strategy: CoordinationStrategy

    @abstractmethod
    def reconcile(self, proposed_actions: Mapping[str, Action],
                  states: Mapping[str, EnvironmentState],
                  context: CoordinationContext) -> Dict[str, Action]:
        pass


class IndependentPolicy(CoordinationPolicy):
    """Actions pass through unchanged"""

    strategy = CoordinationStrategy.INDEPENDENT

    def reconcile(self, proposed_actions, states, context):
        return dict(proposed_actions)


class CooperativePolicy(IndependentPolicy):
    """Extension point for shared-objective negotiation; currently pass-through"""

    strategy = CoordinationStrategy.COOPERATIVE


class CompetitivePolicy(IndependentPolicy):
    """Extension point for competitive allocation; currently pass-through"""

    strategy = CoordinationStrategy.COMPETITIVE


class ConsensusPolicy(IndependentPolicy):
    """Extension point for vote-based agreement; currently pass-through"""

    strategy = CoordinationStrategy.CONSENSUS


class HierarchicalPolicy(CoordinationPolicy):
    """
    Coordinator-gated exposure control.

    Orders (BUY/SELL) are admitted in agent order against the portfolio
    exposure plus every order already admitted this tick. An order that would
    push the projection above `max_total_exposure` is halved, never dropped.
    Without a coordinator every action passes through.
    """

    strategy = CoordinationStrategy.HIERARCHICAL

    def __init__(self, scale_factor: float = EXPOSURE_SCALE_FACTOR):
        if not 0 < scale_factor < 1:
            raise ConfigurationError(f"scale_factor must be in (0, 1), got {scale_factor}")
        self.scale_factor = scale_factor

    def reconcile(self, proposed_actions, states, context):
        if context.coordinator_id is None:
            return dict(proposed_actions)

        coordinated: Dict[str, Action] = {}
        pending = 0.0

        for agent_id, action in proposed_actions.items():
            if not action.is_order:
                coordinated[agent_id] = action
                continue

            projected = context.exposure + pending + action.size
            if projected > context.max_total_exposure:
                adjusted = action.scaled(self.scale_factor)
                if context.exposure + pending + adjusted.size > context.max_total_exposure:
                    logger.warning(
                        f"Agent {agent_id} order still exceeds exposure cap after scaling: "
                        f"{context.exposure + pending + adjusted.size:.4f} > {context.max_total_exposure:.4f}"
                    )
                else:
                    logger.debug(f"Agent {agent_id} order scaled {action.size:.4f} -> {adjusted.size:.4f}")
                action = adjusted

            pending += action.size
            coordinated[agent_id] = action

        return coordinated


POLICY_REGISTRY: Dict[CoordinationStrategy, Type[CoordinationPolicy]] = {
    CoordinationStrategy.INDEPENDENT: IndependentPolicy,
    CoordinationStrategy.COOPERATIVE: CooperativePolicy,
    CoordinationStrategy.COMPETITIVE: CompetitivePolicy,
    CoordinationStrategy.HIERARCHICAL: HierarchicalPolicy,
    CoordinationStrategy.CONSENSUS: ConsensusPolicy
}


def create_coordination_policy(strategy) -> CoordinationPolicy:
    """Instantiate the registered policy for a strategy (enum, value or name)"""
    try:
        strategy = coerce_enum(CoordinationStrategy, strategy)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    return POLICY_REGISTRY[strategy]()
