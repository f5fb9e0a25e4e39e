"""chatbridge - turn-based conversation orchestrator for browser chat agents."""

__version__ = "0.1.0"
