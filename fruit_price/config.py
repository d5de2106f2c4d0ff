from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from fruit_price.core.backends import Backend, ModelVersion
from fruit_price.core.price_associator import ReferencePoint


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore', protected_namespaces=('settings_',))

    provider: str = 'dummy'
    model_version: ModelVersion = ModelVersion.V1
    model_dir: str = 'models'
    conf_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    max_results: int = Field(default=3, ge=1)
    num_threads: int = Field(default=2, ge=1)
    backend: Backend = Backend.CPU
    text_detection_enabled: bool = True
    text_provider: str = 'tesseract'
    ocr_language: str = 'slv'
    ocr_data_dir: str = 'tesseract'
    ocr_asset_dir: str = 'assets'
    ocr_min_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    price_max_distance_px: float | None = 250.0
    price_reference_point: ReferencePoint = ReferencePoint.CENTER
    price_only: bool = True
    run_stages_concurrently: bool = True
    max_image_bytes: int = 8 * 1024 * 1024
    log_level: str = 'INFO'
    version: str = '1.0.0'


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
