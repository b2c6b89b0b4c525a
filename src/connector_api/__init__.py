"""
Connector HTTP API.
"""
