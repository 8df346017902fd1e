"""Runtime settings read from the environment."""
import os
from dataclasses import dataclass

from esign.models.enums import SigningPolicy


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    signing_policy: SigningPolicy
    review_complete_percent: int
    review_autocomplete_chars: int
    contract_prefix: str
    certificate_prefix: str
    audit_rejections: bool
    log_level: str


def load_settings() -> Settings:
    database_url = os.getenv("DATABASE_URL", "sqlite:///./esign.db")

    # Render/Heroku hand out postgres:// but SQLAlchemy needs postgresql://
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    return Settings(
        database_url=database_url,
        signing_policy=SigningPolicy(os.getenv("ESIGN_SIGNING_POLICY", SigningPolicy.SEQUENTIAL.value)),
        review_complete_percent=int(os.getenv("ESIGN_REVIEW_COMPLETE_PERCENT", "100")),
        review_autocomplete_chars=int(os.getenv("ESIGN_REVIEW_AUTOCOMPLETE_CHARS", "1200")),
        contract_prefix=os.getenv("ESIGN_CONTRACT_PREFIX", "CON"),
        certificate_prefix=os.getenv("ESIGN_CERTIFICATE_PREFIX", "CERT"),
        audit_rejections=_env_bool("ESIGN_AUDIT_REJECTIONS", True),
        log_level=os.getenv("ESIGN_LOG_LEVEL", "INFO").upper(),
    )


settings = load_settings()
