from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
    )
    headless: bool = True
    log_level: str = "INFO"
    cors_origins: str = "*"

    # Navigation
    navigation_timeout_ms: int = 45000
    fallback_timeout_ms: int = 30000
    networkidle_timeout_ms: int = 8000

    # Phase timings (all waits are bounded)
    settle_delay_ms: int = 5000
    consent_wait_ms: int = 5000
    consent_grace_ms: int = 1000
    link_observation_ms: int = 3500
    form_observation_ms: int = 5000

    # CTA caps
    max_phone_links: int = 3
    max_email_links: int = 3
    max_forms: int = 2

    # Contact pages tried after the home page
    contact_page_timeout_ms: int = 20000

    max_runtime_seconds: int = 600

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
