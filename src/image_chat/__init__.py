"""Chat-style image editing server proxying to a generative image model.

This package provides a FastAPI application factory named ``create_app``
inside ``image_chat/server.py`` (see :func:`create_app`).

Typical usage
-------------
from image_chat import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 3000
"""

from __future__ import annotations

__all__ = ["create_app", "__version__", "get_version"]

# ---------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------
__version__ = "0.1.0"

def get_version() -> str:
    """Return the package version."""
    return __version__

# ---------------------------------------------------------------------
# App factory export
# ---------------------------------------------------------------------
def create_app(*args, **kwargs):
    """Return a configured FastAPI application.

    This forwards to :func:`image_chat.server.create_app`; the import is
    deferred so ``import image_chat`` works without the web stack loaded.
    """
    from .server import create_app as _create_app

    return _create_app(*args, **kwargs)
