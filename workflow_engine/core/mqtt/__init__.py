"""
MQTT event publishing
"""
