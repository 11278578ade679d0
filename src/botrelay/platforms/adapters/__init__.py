"""Platform adapters.

Adapters are imported from their modules so that only the client
libraries of enabled platforms are loaded.
"""
