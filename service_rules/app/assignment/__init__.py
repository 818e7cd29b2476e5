"""
Outcome computation and batch execution for rule sets.
"""
