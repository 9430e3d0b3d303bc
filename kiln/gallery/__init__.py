"""
Gallery — submission preparation for the pottery catalog.
"""
