import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        identity_secret: str,
        identity_max_age_secs: int,
        max_segments: int,
        db_timeout_secs: float,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.identity_secret = identity_secret
        self.identity_max_age_secs = identity_max_age_secs
        self.max_segments = max_segments
        self.db_timeout_secs = db_timeout_secs
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SEGMENTATION_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "segmentation.db"
    database_url = os.getenv("SEGMENTATION_DATABASE_URL", f"sqlite:///{default_db}")
    identity_secret = os.getenv(
        "SEGMENTATION_IDENTITY_SECRET",
        "3f9c1e7a52b04d8e96a1c0d4b7e25f68a1d93c4e7b60f2a85d1c9e3b7a40f6d2",
    )
    identity_max_age_secs = int(
        os.getenv("SEGMENTATION_IDENTITY_MAX_AGE_SECS", str(8 * 3600))
    )
    max_segments = int(os.getenv("SEGMENTATION_MAX_SEGMENTS", "20"))
    db_timeout_secs = float(os.getenv("SEGMENTATION_DB_TIMEOUT_SECS", "5"))
    log_level = os.getenv("SEGMENTATION_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        identity_secret=identity_secret,
        identity_max_age_secs=identity_max_age_secs,
        max_segments=max_segments,
        db_timeout_secs=db_timeout_secs,
        log_level=log_level,
    )
