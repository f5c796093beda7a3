"""Configuration management for LabPulse.

Loads FHIR credentials and pipeline settings from environment variables
using Pydantic. Secrets belong in .env (never hardcoded).

Settings are built explicitly and passed to each component; there is no
module-level instance.

Usage:
    from labpulse.config import Settings

    settings = Settings()
    print(settings.fhir_base_url)
    print(settings.poll_interval_seconds)
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_SUPPORTED_ALGORITHMS = {"RS256", "RS384", "RS512", "ES256", "ES384", "ES512"}


class Settings(BaseSettings):
    """LabPulse configuration from environment variables.

    Loads from .env file automatically. Validates on instantiation.
    FHIR client id, group id and private key path are required.

    Attributes:
        fhir_client_id: Backend app client id registered with the EHR
        fhir_group_id: Group whose members are exported
        private_key_path: PEM private key used to sign client assertions
        token_url: OAuth2 token endpoint
        fhir_base_url: FHIR R4 base URL
        export_types: Comma-separated resource types for _type
        export_type_filter: Value of the _typeFilter parameter
        poll_interval_seconds: Initial wait between status polls
        export_timeout_seconds: Give up on the export job after this long
        run_timeout_seconds: Deadline for the whole run
        smtp_host: SMTP relay; when unset the report is printed instead
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown env vars
    )

    # FHIR backend app (REQUIRED)
    fhir_client_id: str = Field(..., min_length=1, description="Backend app client id")
    fhir_group_id: str = Field(..., min_length=1, description="Bulk export Group id")
    private_key_path: str = Field(..., min_length=1, description="PEM private key path")

    # Endpoints (Epic sandbox defaults)
    token_url: str = Field(
        default="https://fhir.epic.com/interconnect-fhir-oauth/oauth2/token",
        description="OAuth2 token endpoint",
    )
    fhir_base_url: str = Field(
        default="https://fhir.epic.com/interconnect-fhir-oauth/api/FHIR/R4",
        description="FHIR R4 base URL",
    )

    # Client assertion
    jwt_key_id: str | None = Field(default=None, description="kid header matching the JWKS")
    jwt_algorithm: str = Field(default="RS384", description="Assertion signing algorithm")
    assertion_lifetime_seconds: int = Field(
        default=240,
        ge=30,
        le=300,
        description="Client assertion lifetime (token endpoints cap this at 5 minutes)",
    )
    token_scope: str | None = Field(default=None, description="Optional scope for the token request")

    # Export request
    export_types: str = Field(default="Patient,Observation", description="_type parameter")
    export_type_filter: str | None = Field(
        default="Observation?category=laboratory",
        description="_typeFilter parameter (None = no filter)",
    )

    # Polling
    poll_interval_seconds: float = Field(default=30.0, ge=0, description="Initial poll interval")
    poll_backoff_factor: float = Field(default=1.0, ge=1.0, description="Interval growth per poll")
    poll_max_interval_seconds: float = Field(default=300.0, ge=0, description="Poll interval cap")
    max_poll_attempts: int | None = Field(default=None, ge=1, description="Optional poll count bound")
    export_timeout_seconds: float = Field(default=3600.0, gt=0, description="Export wait bound")
    run_timeout_seconds: float = Field(default=5400.0, gt=0, description="Whole-run deadline")

    # HTTP
    http_timeout: float = Field(default=30.0, gt=0, description="Per-request timeout (seconds)")
    http_max_retries: int = Field(default=2, ge=0, le=10, description="Retries for kick-off")
    rate_limit: int = Field(default=10, ge=1, description="FHIR requests/second")
    stream_concurrency: int = Field(default=4, ge=1, le=32, description="Parallel NDJSON streams")

    # E-mail delivery (optional; the report is printed when smtp_host is unset)
    smtp_host: str | None = Field(default=None, description="SMTP relay host")
    smtp_port: int = Field(default=587, ge=1, le=65535, description="SMTP port")
    smtp_username: str | None = Field(default=None, description="SMTP user")
    smtp_password: str | None = Field(default=None, description="SMTP password")
    smtp_starttls: bool = Field(default=True, description="Upgrade the SMTP session with STARTTLS")
    email_from: str = Field(default="labpulse@localhost", description="Sender address")
    email_to: str = Field(default="", description="Comma-separated recipients")

    # System Settings
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid:
            raise ValueError(f"log_level must be one of {valid}, got {v}")
        return v_upper

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """Only asymmetric algorithms are accepted for client assertions."""
        v_upper = v.upper()
        if v_upper not in _SUPPORTED_ALGORITHMS:
            raise ValueError(
                f"jwt_algorithm must be one of {sorted(_SUPPORTED_ALGORITHMS)}, got '{v}'"
            )
        return v_upper

    @property
    def resource_types(self) -> list[str]:
        """Export resource types as a list."""
        return [t.strip() for t in self.export_types.split(",") if t.strip()]

    @property
    def recipients(self) -> list[str]:
        """E-mail recipients as a list."""
        return [r.strip() for r in self.email_to.split(",") if r.strip()]
