"""
turntable HTTP API (FastAPI).

Start with::

    turntable serve
    # or
    uvicorn turntable.api:create_app --factory
"""

from turntable.api.app import create_app

__all__ = ["create_app"]
