"""MentorFlow Routes"""

from .usage import router as usage_router
from .generations import router as generations_router

__all__ = [
    "usage_router",
    "generations_router",
]
