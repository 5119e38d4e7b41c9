"""In-memory staking and distribution keepers, with storage, a mock address API and a minimal bank."""

__version__ = "0.20.0"
__all__ = ["types", "messages", "env", "staking", "distribution"]