from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    cms_catalog_url: str = "https://data.cms.gov/data.json"
    cms_formulary_dataset_title: str = (
        "Monthly Prescription Drug Plan Formulary and Pharmacy Network Information"
    )
    rxnav_base_url: str = "https://rxnav.nlm.nih.gov/REST"
    formulary_cache_dir: Path = Path.home() / ".cache" / "medicare-mcp" / "formulary"
    formulary_data_dir: Path | None = None
    formulary_cache_max_age_days: int = 30
    formulary_dataset_ttl: int = 3600
    formulary_default_page_size: int = 25
    formulary_coverage_page_size: int = 100
    http_timeout: float = 30.0
    download_timeout: float = 600.0
    cors_origins: str = "*"
    log_format: str = "text"
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
