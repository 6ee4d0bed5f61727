"""
App assembly entry point.

Re-exports the FastAPI `app` from `envpersist.api.main` so it can be served
with `uvicorn app:app`.
"""

from envpersist.api.main import app  # noqa: F401
