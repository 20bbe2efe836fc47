from .discoveries import DiscoveriesRepository
from . import models

__all__ = ["DiscoveriesRepository", "models"]
