import os
from typing import Optional
from pydantic import BaseModel


class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "santa-ledger")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Randomness: "system" draws from OS entropy, "seeded" is reproducible (dev and test only)
    randomness_mode: str = os.getenv("RANDOMNESS_MODE", "system")
    randomness_seed: int = int(os.getenv("RANDOMNESS_SEED", "0"))

    # Clock: "wall" counts fixed-length epochs since the Unix epoch, "logical" is a manual counter
    clock_mode: str = os.getenv("CLOCK_MODE", "wall")
    epoch_duration_seconds: int = int(os.getenv("EPOCH_DURATION_SECONDS", "86400"))

    # Peer reports per reporter, per ledger, per epoch. 0 keeps reporting open.
    report_max_per_epoch: int = int(os.getenv("REPORT_MAX_PER_EPOCH", "0"))

    event_buffer_size: int = int(os.getenv("EVENT_BUFFER_SIZE", "1000"))

    groq_api_key: Optional[str] = os.getenv("GROQ_API_KEY") or None
    groq_model: str = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")


settings = Settings()
