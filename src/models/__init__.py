from src.models.base import Base, BaseModel
from src.models.wedding import Wedding

__all__ = [
    "Base",
    "BaseModel",
    "Wedding",
]
