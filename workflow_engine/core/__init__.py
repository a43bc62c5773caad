"""
Core engine packages
"""
