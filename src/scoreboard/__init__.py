"""Scoreboard: ranked leaderboard engine with tiered caching and async rank recomputation."""

__version__ = "0.1.0"
