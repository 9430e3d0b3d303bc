"""
Configuration — capacity budgets for gallery derivatives.
"""
