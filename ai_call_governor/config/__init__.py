"""
Configuration loading for AI Call Governor.
"""
