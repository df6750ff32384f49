"""
Utils Package - Utility modules for the training core
Provides common utilities including configuration management and logging setup.

File: __init__.py
Modified: 2026-10-19
"""

from .config import Config
from .logger import setup_logger, log_episode, log_agent_event

__all__ = ['Config', 'setup_logger', 'log_episode', 'log_agent_event']
