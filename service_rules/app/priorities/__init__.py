"""
Two-phase priority rewriting for rule reordering.
"""
