"""
Migrant Help - Chat Gateway

HTTP entry point for the retrieval-augmented chat service: caller
authentication, daily rate limiting and the chat/conversation endpoints.
"""

__version__ = "1.0.0"
