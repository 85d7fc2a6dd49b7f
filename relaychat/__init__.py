"""
RELAY CHAT APPLICATION PACKAGE
==============================

Chat client core plus the thin server-side relay it talks through.

  from relaychat.main import app
  from relaychat.services.session import ChatSession
  from relaychat.services.fetch_client import RetryingFetchClient

FILE STRUCTURE:
  relaychat/
    __init__.py   - This file; marks 'relaychat' as a package.
    main.py       - FastAPI relay and all HTTP endpoints (/api/chat, /api/image/generate, ...).
    models.py     - Pydantic models for relay bodies, messages, normalized results, model catalog.
    errors.py     - Exception taxonomy shared by relay and client.
    services/     - Retrying HTTP client, normalizer, model router, conversation controller, session.
    utils/        - Helpers: retry policy and backoff, data URLs and placeholder images.
"""
