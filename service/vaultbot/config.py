from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Telegram
    telegram_bot_token: str
    telegram_webhook_secret: str = ""  # Optional: for webhook verification
    telegram_mode: str = "webhook"  # "webhook" (FastAPI) or "polling"

    # Required channel (subscription gate)
    required_channel_id: int | str = "@steambattle"
    required_channel_url: str = "https://t.me/steambattle"
    subscription_ttl_seconds: int = 15 * 60

    # Admins (Telegram user ids), e.g. ADMIN_IDS='[123, 456]'
    admin_ids: list[int] = []

    # JSON storage
    accounts_file: str = "acc.json"
    requests_file: str = "requests.json"
    aliases_file: str = "alias.json"

    # Steam authentication
    steam_api_url: str = "https://api.steampowered.com"
    probe_timeout_seconds: float = 10.0

    # UI
    page_size: int = 5

    # Environment
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    def is_admin(self, user_id: int) -> bool:
        return int(user_id) in self.admin_ids


@lru_cache()
def get_settings() -> Settings:
    return Settings()
