"""Target profile models and loader exports."""

from .loader import TargetProfileLoadError, TargetProfileLoader
from .models import TargetProfile

__all__ = [
    "TargetProfile",
    "TargetProfileLoadError",
    "TargetProfileLoader",
]
