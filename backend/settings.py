import os

# Basic settings helper to read environment configuration.


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_float(val: str | None, default: float) -> float:
    if val is None or not val.strip():
        return default
    return float(val)


class Settings:
    def __init__(self) -> None:
        self.PLACES_API_KEY: str = os.getenv("PLACES_API_KEY", "")
        self.PLACES_NEW_BASE_URL: str = os.getenv("PLACES_NEW_BASE_URL", "https://places.googleapis.com/v1")
        self.PLACES_LEGACY_BASE_URL: str = os.getenv(
            "PLACES_LEGACY_BASE_URL", "https://maps.googleapis.com/maps/api/place"
        )
        self.PLACES_TIMEOUT_SECONDS: float = _as_float(os.getenv("PLACES_TIMEOUT_SECONDS"), 10.0)
        self.PLACES_USE_NEW_API: bool = _as_bool(os.getenv("PLACES_USE_NEW_API"), True)
        self.DISCOVERY_RADIUS_M: float = _as_float(os.getenv("DISCOVERY_RADIUS_M"), 250.0)
        self.DISCOVERY_MAX_SAMPLES: int = int(os.getenv("DISCOVERY_MAX_SAMPLES", "12"))
        self.DISCOVERY_CACHE_PATH: str | None = os.getenv("DISCOVERY_CACHE_PATH")
        self.DATABASE_URL: str | None = os.getenv("DATABASE_URL")


settings = Settings()
