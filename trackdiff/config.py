"""Application configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """App settings with env var overrides."""

    # Audio
    sample_rate: int = 22050
    max_download_mb: int = 20
    download_timeout: float = 15.0

    # Frame extraction
    frame_size: int = 4096
    tempo_window_seconds: float = 8.0
    min_tempo_context_seconds: float = 4.0
    tempo_stride: int = 4  # frames between tempo estimates
    highpass_cutoff: float = 60.0
    silence_floor: float = 1e-5  # RMS at or below this has no loudness sample
    min_bpm: float = 40.0
    max_bpm: float = 300.0

    # Reconciliation
    energy_scale: float = 2.5
    danceable_min_bpm: float = 100.0
    danceable_max_bpm: float = 140.0
    off_band_bpm_factor: float = 0.7
    tempo_threshold: float = 5.0
    loudness_tolerance_db: float = 3.0
    energy_tolerance: float = 0.1
    danceability_tolerance: float = 0.1

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    max_upload_mb: int = 50
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    model_config = {"env_prefix": "TRACKDIFF_"}


settings = Settings()
