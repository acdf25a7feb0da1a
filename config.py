from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    auth_enabled: bool = False
    admin_user: str = "admin"
    admin_pass: str = "changeme"
    db_path: str = "data/sldinspector.db"
    uploads_dir: str = "uploads"
    max_features_per_project: int = 50000
    default_language: str = "es"
    log_level: str = "INFO"
    service_title: str = "SLD Inspector"
    service_description: str = "Overlay a geographic layer with an SLD style and inspect rule coverage"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "SLDI_"}


settings = Settings()
