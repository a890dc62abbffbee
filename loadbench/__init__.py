"""
LoadBench - staged virtual-user load testing engine.
"""

__version__ = "0.1.0"
