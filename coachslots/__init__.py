"""
coachslots - slot availability and booking conflict engine for a single coach.
"""

__version__ = "0.1.0"
