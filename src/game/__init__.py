"""Game session wiring feeds, chart engine and staking together."""

from .session import Frame, GameConfig, GameSession

__all__ = ["GameSession", "GameConfig", "Frame"]
