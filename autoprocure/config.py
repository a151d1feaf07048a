"""
Runtime configuration, read from the environment (and a .env file if present).

load_settings() is the only place environment variables are read. Everything
downstream takes explicit arguments, so tests build components directly
instead of patching the environment.
"""
import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from autoprocure.ledger import DEFAULT_AMOUNT_SCALE
from autoprocure.oracle import DEFAULT_MODEL
from autoprocure.orchestrator import DEFAULT_PAYEE_ADDRESS

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    encryption_key: str | None = None
    allow_insecure_key: bool = False
    on_oracle_failure: str = Field(default="fallback", pattern="^(fail|fallback)$")
    oracle_model: str = DEFAULT_MODEL
    oracle_timeout: float = Field(default=30.0, gt=0)
    oracle_max_tokens: int = Field(default=2048, gt=0)
    amount_scale: float = Field(default=DEFAULT_AMOUNT_SCALE, gt=0)
    payee_address: str = DEFAULT_PAYEE_ADDRESS
    block_time: float = Field(default=0.0, ge=0)
    log_level: str = "INFO"
    port: int = 8000


def load_settings() -> Settings:
    """
    Build Settings from PROCUREMENT_* environment variables.

    Raises:
        ValueError  (pydantic.ValidationError) for malformed values, e.g. an
                    unknown PROCUREMENT_ON_ORACLE_FAILURE mode
    """
    load_dotenv()
    env = os.environ
    values = {
        "encryption_key": env.get("PROCUREMENT_ENCRYPTION_KEY") or None,
        "allow_insecure_key": env.get("PROCUREMENT_ALLOW_INSECURE_KEY", "0").lower() in _TRUTHY,
        "on_oracle_failure": env.get("PROCUREMENT_ON_ORACLE_FAILURE", "fallback").lower(),
        "oracle_model": env.get("PROCUREMENT_ORACLE_MODEL", DEFAULT_MODEL),
        "oracle_timeout": env.get("PROCUREMENT_ORACLE_TIMEOUT", 30.0),
        "oracle_max_tokens": env.get("PROCUREMENT_ORACLE_MAX_TOKENS", 2048),
        "amount_scale": env.get("PROCUREMENT_AMOUNT_SCALE", DEFAULT_AMOUNT_SCALE),
        "payee_address": env.get("PROCUREMENT_PAYEE_ADDRESS", DEFAULT_PAYEE_ADDRESS),
        "block_time": env.get("PROCUREMENT_BLOCK_TIME", 0.0),
        "log_level": env.get("PROCUREMENT_LOG_LEVEL", "INFO").upper(),
        "port": env.get("PORT", 8000),
    }
    return Settings.model_validate(values)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
