"""
Connector core: settings, database, Redis and logging plumbing shared by
the API, the CLI and the messaging services.
"""
