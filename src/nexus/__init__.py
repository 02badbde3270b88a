"""Nexus gamification engine: points ledger, levels, badges and leaderboard."""

__version__ = "0.1.0"
