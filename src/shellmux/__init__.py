"""shellmux — persistent shell sessions multiplexed over reconnecting clients."""

__version__ = "0.1.0"
