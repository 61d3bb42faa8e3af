"""
Amparo: encrypted journaling chat with a supportive AI assistant.

Packages:
- amparo.lib: encryption, error codes, logging, security helpers
- amparo.core: database access and pipeline step results
- amparo.models: SQLAlchemy models
- amparo.services: risk classification, context assembly, message pipeline
- amparo.api: FastAPI application and WebSocket endpoint
"""

__version__ = "0.1.0"
