"""
Connector CLI
"""
