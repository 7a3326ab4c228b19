"""Gateway Package - entry point and error taxonomy of the Ghost Admin API gateway.

Usage:
    $ ghost-gateway            # serve with Gunicorn
    $ ghost-gateway --debug    # verbose logging, no worker timeout
"""
from .gateway import main

__all__ = ["main"]
