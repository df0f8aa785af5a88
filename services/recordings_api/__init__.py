"""Scribe Pipeline - Recordings API service.

FastAPI service for registering recordings and driving their pipeline.
"""

__all__: list[str] = []
