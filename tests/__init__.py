"""
Test suite for partkit.
"""
