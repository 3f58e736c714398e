"""
Check Tool Adapters

Adapters that put external check tools behind one run/pass-fail/log
contract.
"""

from .base import BaseCheckTool, CheckResult
from .command import CommandCheckTool, parse_api_diff
from .mock import MockCheckTool

__all__ = [
    "BaseCheckTool",
    "CheckResult",
    "CommandCheckTool",
    "MockCheckTool",
    "parse_api_diff",
]
