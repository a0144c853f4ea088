# settings.py
import os

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Local development reads a .env file; deployed environments set variables directly.
load_dotenv()


class Settings(BaseSettings):
    # Project
    PROJECT_NAME: str = "Merchmate Backend"
    API_PREFIX: str = "/api"

    # Generative AI (OpenAI-compatible API)
    AI_API_KEY: str = os.getenv("AI_API_KEY", "")
    AI_API_URL: str = os.getenv("AI_API_URL", "https://api.openai.com/v1")
    AI_CHAT_MODEL: str = "gpt-4o"
    AI_IMAGE_MODEL: str = "dall-e-3"
    AI_VISION_MODEL: str = "gpt-4o"
    AI_IMAGE_SIZE: str = "1024x1024"
    AI_TIMEOUT: float = 60.0  # Seconds, per remote call

    # Printify
    PRINTIFY_API_TOKEN: str = os.getenv("PRINTIFY_API_TOKEN", "")
    PRINTIFY_SHOP_ID: str = os.getenv("PRINTIFY_SHOP_ID", "")
    PRINTIFY_API_URL: str = "https://api.printify.com/v1"
    PRINTIFY_TIMEOUT: float = 30.0  # Seconds, per remote call
    PRINTIFY_DEFAULT_PROVIDER_ID: int = 99
    PRINTIFY_DEFAULT_PRICE: int = 2500  # Cents

    # Conversation
    SEARCH_PAGE_SIZE: int = 3
    SESSION_TTL_MINUTES: int = 60 * 2

    # Frontend URL (CORS)
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
