"""Allow ``python -m agentplan``."""

from agentplan.cli import main

main()
