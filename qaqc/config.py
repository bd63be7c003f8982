from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATA_ROOT: str = "Field_Data"
    RAW_DIR: str = "Raw_CSVs"
    PROCESSED_DIR: str = "Processed_Data"
    NOTES_DIR: str = "QAQC_Notes"
    DATASET_KEYWORDS: List[str] = [
        "spp", "browns", "cwd", "ground", "plant",
        "resprout", "seedling", "shrub", "site", "soils",
        "combustion", "disk", "dbh",
    ]
    # "extreme-only" | "mild-and-extreme"; unset = ask the reviewer per dataset
    OUTLIER_SENSITIVITY: Optional[str] = None
    QUARTILE_METHOD: str = "tukey"
    ZERO_RARITY_FRACTION: float = 0.05
    MOISTURE_MATCH_TOLERANCE: float = 0.2
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "console"

    model_config = SettingsConfigDict(env_file=".env", env_prefix="QAQC_")


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
