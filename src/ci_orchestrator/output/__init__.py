"""
Run Output

Console rendering of job progress, version decisions, gate verdicts and
pipeline reports.
"""

from .base import BaseFormatter, OutputLevel
from .console import ConsoleFormatter

__all__ = ["BaseFormatter", "ConsoleFormatter", "OutputLevel"]
