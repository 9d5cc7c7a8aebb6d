from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration settings"""

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="EXAMROOM_", case_sensitive=False, extra="ignore"
    )

    # Application
    app_name: str = "ExamRoom"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./examroom.db"

    # Security
    secret_key: str = "CHANGE_ME_TO_A_RANDOM_SECRET"

    # Object storage for question and answer images
    media_dir: str = "./media"
    media_url: str = "/media"

    # Per-attempt answer drafts
    drafts_dir: str = "./drafts"

    # Image compression
    image_max_bytes: int = 200 * 1024
    image_max_dimension: int = 1600
    image_start_quality: int = 90
    image_min_quality: int = 10
    image_quality_step: int = 10
    image_fallback_scale: float = 0.7
    image_fallback_quality: int = 70

    # Create a demo teacher, student and exam on first start
    seed_demo_data: bool = False


# Global settings instance
settings = Settings()
