"""
API Module - REST Interface

Provides the HTTP adapter over the map service.
"""

from .rest import create_app, run_api_server

__all__ = ['create_app', 'run_api_server']
