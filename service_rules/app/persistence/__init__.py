"""
Rule store interfaces and implementations.
"""
