import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _float_env(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def _int_env(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


@dataclass(frozen=True)
class Settings:
    backend_urls: list[str] = field(default_factory=list)
    auth_token: str | None = field(default=None, repr=False)
    http_timeout: float = 10.0
    max_retries: int = 3
    retry_base_delay: float = 5.0
    claim_ttl: float = 300.0
    request_ttl: float = 300.0
    status_ttl: float = 86400.0
    claim_signing_secret: str = field(default="", repr=False)
    algod_address: str = ""
    algod_token: str = field(default="", repr=False)
    tx_timeout_rounds: int = 12
    log_level: str = "INFO"
    log_format: str = DEFAULT_LOG_FORMAT

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv()
        backend_urls = [url.strip() for url in os.getenv("BALLOT_BACKEND_URLS", "").split(",") if url.strip()]
        if not backend_urls:
            raise RuntimeError("BALLOT_BACKEND_URLS must list at least one backend URL")
        return cls(
            backend_urls=backend_urls,
            auth_token=os.getenv("BALLOT_AUTH_TOKEN") or None,
            http_timeout=_float_env("BALLOT_HTTP_TIMEOUT_SECONDS", "10"),
            max_retries=_int_env("BALLOT_MAX_RETRIES", "3"),
            retry_base_delay=_float_env("BALLOT_RETRY_BASE_DELAY_SECONDS", "5"),
            claim_ttl=_float_env("BALLOT_CLAIM_TTL_SECONDS", "300"),
            request_ttl=_float_env("BALLOT_REQUEST_TTL_SECONDS", "300"),
            status_ttl=_float_env("BALLOT_STATUS_TTL_SECONDS", "86400"),
            claim_signing_secret=os.getenv("CLAIM_SIGNING_SECRET", ""),
            algod_address=os.getenv("ALGORAND_ALGOD_ADDRESS", ""),
            algod_token=os.getenv("ALGORAND_ALGOD_TOKEN", ""),
            tx_timeout_rounds=_int_env("ALGORAND_TX_TIMEOUT_ROUNDS", "12"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", DEFAULT_LOG_FORMAT),
        )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(format=settings.log_format, level=settings.log_level)
