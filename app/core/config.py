import secrets
import warnings
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import (
    AnyUrl,
    BeforeValidator,
    HttpUrl,
    computed_field,
    model_validator,
)
from pydantic_core import MultiHostUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def parse_cors(v: Any) -> list[str] | str:
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "National Identity Credential API"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    LOG_LEVEL: str = "INFO"

    # Tokens are issued by the external identity provider; the key is shared.
    SECRET_KEY: str = secrets.token_urlsafe(32)
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    ROLE_CLAIM: str = "roles"

    FRONTEND_HOST: str = "http://localhost:5173"
    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS] + [
            self.FRONTEND_HOST
        ]

    SENTRY_DSN: HttpUrl | None = None

    DATABASE_URL: str | None = None
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "identity"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return str(
            MultiHostUrl.build(
                scheme="postgresql+psycopg",
                username=self.POSTGRES_USER,
                password=self.POSTGRES_PASSWORD,
                host=self.POSTGRES_SERVER,
                port=self.POSTGRES_PORT,
                path=self.POSTGRES_DB,
            )
        )

    # Blob storage
    UPLOAD_ROOT: Path = PROJECT_ROOT / "data" / "uploads"
    MAX_UPLOAD_SIZE_MB: int = 10
    SIGNED_URL_TTL_SECONDS: int = 3600

    # Vision service
    VISION_API_BASE_URL: str | None = None
    VISION_API_KEY: str | None = None
    VISION_TIMEOUT_SECONDS: float = 15.0
    VISION_MAX_RETRIES: int = 2
    FACE_COLLECTION_ID: str = "identity-credential-faces"
    FACE_MATCH_THRESHOLD: float = 80.0
    TESSERACT_CMD: str | None = None

    # Workflow
    CREDENTIAL_TYPE: str = "national_id"
    REVIEW_CONFIDENCE_THRESHOLD: float = 80.0
    AUTO_APPROVE_CONFIDENCE: float | None = None
    SYSTEM_REVIEWER_ID: str = "system:auto-approval"
    UIN_PREFIX: str = "PNG"
    UIN_MAX_ATTEMPTS: int = 5
    APPLICATION_ID_MAX_ATTEMPTS: int = 5
    CREDENTIAL_VALIDITY_YEARS: int = 10
    DEFAULT_NATIONALITY: str = "Papua New Guinea"

    def _check_default_secret(self, var_name: str, value: str | None) -> None:
        if value == "changethis":
            message = (
                f'The value of {var_name} is "changethis", '
                "for security, please change it, at least for deployments."
            )
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)

    @model_validator(mode="after")
    def _enforce_non_default_secrets(self) -> Self:
        self._check_default_secret("SECRET_KEY", self.SECRET_KEY)
        self._check_default_secret("POSTGRES_PASSWORD", self.POSTGRES_PASSWORD)
        if (
            self.AUTO_APPROVE_CONFIDENCE is not None
            and self.AUTO_APPROVE_CONFIDENCE < self.REVIEW_CONFIDENCE_THRESHOLD
        ):
            raise ValueError(
                "AUTO_APPROVE_CONFIDENCE must not be lower than "
                "REVIEW_CONFIDENCE_THRESHOLD"
            )
        return self


settings = Settings()  # type: ignore
