"""Repository layer for data access.

Repositories encapsulate database operations and provide a clean interface
for CRUD operations on domain objects.
"""

from app.repositories.chat import ChatRepository, SessionStats
from app.repositories.patient import ProfileRepository
from app.repositories.visit import VisitRepository

__all__ = ["ChatRepository", "ProfileRepository", "SessionStats", "VisitRepository"]
