"""API package - FastAPI router and request/response schemas"""
from scanflow.api.router import api_router, scanflow_error_handler

__all__ = ["api_router", "scanflow_error_handler"]
