"""Allow running as: python -m agentboard"""
from agentboard.cli import main

main()
