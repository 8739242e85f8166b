"""
tabulator
Live tabulation and session synchronization engine for judged competitions.
"""
__version__ = "1.0.0"
