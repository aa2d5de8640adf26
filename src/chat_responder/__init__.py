"""Chat Responder: AI response service for the mobile chat client.

This package provides the server-side handler that:
- Validates an inbound chat message
- Replays the conversation to a completion API with retry/backoff
- Persists user and AI messages in the hosted relational store
- Derives a chat title from the opening message

Usage:
    uvicorn chat_responder.main:app

Configuration:
    DATABASE_URL, DATABASE_SERVICE_KEY, OPENAI_API_KEY: Required secrets
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
