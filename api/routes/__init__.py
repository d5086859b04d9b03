"""
API Routes Module.

Contains route handlers with kebab-case naming:
- auth: Session token refresh and sign-out (/auth/*)
- ms_graph: Microsoft account connection and OneDrive (/ms-graph/*)
"""

from .auth import router as auth_router
from .ms_graph import router as ms_graph_router

__all__ = [
    "auth_router",
    "ms_graph_router",
]
