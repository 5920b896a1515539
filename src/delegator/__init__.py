"""Task Delegator: skill-aware task distribution across a pool of agents."""

__version__ = "0.1.0"
