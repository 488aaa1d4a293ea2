from typing import List, Optional

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "Vacation Curator"
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Home
    HOME_TIMEZONE: str = "Europe/Berlin"
    HOME_LAT: Optional[float] = None
    HOME_LON: Optional[float] = None
    HOME_RADIUS_KM: Optional[float] = None
    DEFAULT_HOME_RADIUS_KM: float = 15.0
    MAX_HOME_CENTERS: int = 3

    # Selection
    SELECTION_DEFAULT_PROFILE: str = "vacation"
    FACE_DETECTION_AVAILABLE: bool = True
    IMPORTANT_PERSON_IDS: List[str] = []

    # Monitoring
    MONITORING_ENABLED: bool = True

    class Config:
        env_file = ".env"

configs = Settings()
