"""
Error types for the reinforcement learning training core
"""


class RLCoreError(Exception):
    """Base class for training-core errors."""


class ConfigurationError(RLCoreError, ValueError):
    """Invalid construction parameters (capacity, thresholds, strategy names)."""


class CapacityExceededError(RLCoreError, RuntimeError):
    """Raised when an agent is added beyond the configured maximum."""


class InvalidIndexError(RLCoreError, IndexError):
    """Segment tree index outside [0, capacity)."""


class AgentNotFoundError(RLCoreError, KeyError):
    """Unknown agent id."""
