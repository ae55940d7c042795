from pydantic import ConfigDict, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8787

    # Challenge nonces
    ttl_seconds: int = 300  # 5 minutes
    nonce_grace_seconds: int = 60
    nonce_gc_interval_seconds: int = 60

    # Receiving accounts (empty = chain not offered)
    receiver_sol: str = ""
    receiver_evm: str = ""

    # Pricing, in each chain's native unit
    premium_price_sol: float = 0.01
    premium_price_eth: float = 0.0001

    # Rate Limiting
    rate_limit_premium: str = "60/minute"

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # "console" or "json"

    # CORS
    cors_origin: str = "*"

    @field_validator("ttl_seconds", "nonce_grace_seconds", "nonce_gc_interval_seconds")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive number of seconds")
        return v

    @field_validator("receiver_sol", "receiver_evm", "cors_origin")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip()

    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from "*" or a comma-separated string."""
        if self.cors_origin == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origin.split(",") if origin.strip()]


settings = Settings()
