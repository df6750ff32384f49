"""
RL Trading Core - reinforcement learning infrastructure for trading agents

File: __init__.py
Modified: 2026-10-19
"""

__version__ = '4.0.0'
