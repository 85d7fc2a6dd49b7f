"""
RUN SCRIPT - Start the relay server
===================================

PURPOSE:
  Single entry point to start the relay. The browser (or cli.py) then sends
  all chat, vision, image and model-list requests through it.

WHAT IT DOES:
  - Imports the FastAPI app from relaychat.main.
  - Runs it with uvicorn on host 0.0.0.0 and port 8000.
  - reload=True restarts the server when a Python file changes (handy for development).

USAGE:
  python run.py

  API docs: http://localhost:8000/docs

NOTE:
  Set REDBUILDER_API_KEY (or OPENAI_API_KEY) in .env first. Without a key the
  relay still starts; in development it answers image requests with placeholders.
"""

import uvicorn

# ------------------------------------------------------------------------------
# ENTRY POINT
# ------------------------------------------------------------------------------
if __name__ == "__main__":
    uvicorn.run(
        "relaychat.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
