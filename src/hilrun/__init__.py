"""
hilrun - Hardware-in-the-loop firmware test orchestration.

Build every test under every profile, run it on the device, and turn
sentinel markers into a single exit status.
"""

from hilrun.models.session import BuildProfile, Outcome, RunResult, RunSession, TestCase
from hilrun.parser import MarkerSet, OutputParser, Verdict

__version__ = "0.1.0"
__all__ = [
    "BuildProfile",
    "MarkerSet",
    "Outcome",
    "OutputParser",
    "RunResult",
    "RunSession",
    "TestCase",
    "Verdict",
    "__version__",
]
