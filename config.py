import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Settings:
    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./library.db")

    # Server
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "3000"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Lending rules
    max_open_borrowings: int = int(os.getenv("MAX_OPEN_BORROWINGS", "2"))
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "7"))
    penalty_days: int = int(os.getenv("PENALTY_DAYS", "3"))


settings = Settings()
