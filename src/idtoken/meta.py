"""Package metadata."""

from __future__ import annotations

__app_name__ = "idtoken"
__version__ = "0.1.0"
__author__ = "idtoken contributors"
__description__ = "Validate provider-issued identity tokens (RS256 JWT) against published certificates."

__all__ = ["__app_name__", "__author__", "__description__", "__version__"]
