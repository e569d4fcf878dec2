import os


class Settings:
    data_dir: str = os.getenv("GIFTCRM_DATA_DIR", os.path.join(os.getcwd(), "data"))
    app_host: str = os.getenv("APP_HOST", "127.0.0.1")
    app_port: int = int(os.getenv("APP_PORT", "8000"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
