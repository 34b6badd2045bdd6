"""
Content and rules engine for branching interactive fiction
"""

__version__ = "0.1.0"
