"""
Career Stories

Groups work activities pulled from external tools into clusters and turns
each cluster into a structured career narrative, then re-renders accepted
narratives for specific audiences.
"""

__version__ = "0.1.0"
