"""agentplan: plan & progress orchestration store for multi-agent workflows."""

__version__ = "0.3.0"
