"""wallbounce: supervised reasoning-engine calls and tool-use policy."""

__version__ = "0.1.0"
