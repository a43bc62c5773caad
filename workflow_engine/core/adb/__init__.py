"""
ADB device access
"""
