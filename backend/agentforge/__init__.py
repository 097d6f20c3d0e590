"""agentforge — streaming multi-provider agent orchestration."""

__version__ = "0.1.0"
