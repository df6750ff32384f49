import logging
import os
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Dict, Optional


def _resolve_level(level: int) -> int:
    """Environment override for the console/logger level"""
    env_level = os.environ.get('RL_LOG_LEVEL')
    if env_level:
        resolved = logging.getLevelName(env_level.upper())
        if isinstance(resolved, int):
            return resolved
    return level


def setup_logger(name: str = __name__, level: int = logging.INFO) -> logging.Logger:
    """Set up logger with console and file handlers"""

    # Create logger
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(level))

    # Avoid adding handlers multiple times
    if logger.handlers:
        return logger

    # Create logs directory
    log_dir = Path(os.environ.get('RL_LOG_DIR', 'logs'))
    log_dir.mkdir(parents=True, exist_ok=True)

    # Format
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler - rotating by size
    file_handler = RotatingFileHandler(
        log_dir / 'rl_training.log',
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # Error file handler
    error_handler = RotatingFileHandler(
        log_dir / 'errors.log',
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=5
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)
    logger.addHandler(error_handler)

    # Training event logger - daily rotation
    training_logger = logging.getLogger('training')
    if not training_logger.handlers:
        training_handler = TimedRotatingFileHandler(
            log_dir / 'training_events.log',
            when='midnight',
            interval=1,
            backupCount=30
        )
        training_handler.setLevel(logging.INFO)
        training_formatter = logging.Formatter(
            '%(asctime)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        training_handler.setFormatter(training_formatter)
        training_logger.setLevel(logging.INFO)
        training_logger.addHandler(training_handler)

    return logger

# Convenience functions for training event logging
def log_episode(agent_id: str, episode: int, total_reward: float,
                steps: int = None, loss: Optional[float] = None, reason: str = None):
    """Log completion of one training episode"""
    training_logger = logging.getLogger('training')

    message = f"EPISODE - Agent: {agent_id}, Episode: {episode}, Reward: {total_reward:.4f}"

    if steps is not None:
        message += f", Steps: {steps}"

    if loss is not None:
        message += f", Loss: {loss:.6f}"

    if reason:
        message += f", Reason: {reason}"

    training_logger.info(message)

def log_agent_event(agent_id: str, action: str, details: Dict):
    """Log agent lifecycle events (added, removed, promoted)"""
    training_logger = logging.getLogger('training')

    message = f"AGENT - Id: {agent_id}, Action: {action}"

    for key, value in details.items():
        message += f", {key}: {value}"

    training_logger.info(message)
