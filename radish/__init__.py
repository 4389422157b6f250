"""
Radish — autonomous coding sessions with safety guardrails.

Radish does not write code. It watches an agent that does:
checkpoints the working tree, checks every change against a
declarative policy, and stops the agent when it crosses a line.
"""

__version__ = "0.2.0"
