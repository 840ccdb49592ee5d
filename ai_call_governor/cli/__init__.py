"""
Command-line interface for AI Call Governor.
"""
