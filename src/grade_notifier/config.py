"""
Configuration management for the grade notifier.

Settings come from (highest priority first) explicit keyword arguments,
environment variables prefixed with ``GRADE_NOTIFIER_``, a ``.env`` file and
a TOML config file. Uses Pydantic Settings for type safety and validation.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Type

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from grade_notifier.exceptions import ConfigError
from grade_notifier.models import CommandCredential, Credential, LiteralCredential

DEFAULT_CONFIG_FILE = "config.toml"


class Settings(BaseSettings):
    """
    Application settings for a single monitored student.

    Required values must be present in one of the sources, or loading
    fails fast with a message naming the missing fields.
    """

    model_config = SettingsConfigDict(
        env_prefix="GRADE_NOTIFIER_",
        env_file=".env",
        env_file_encoding="utf-8",
        toml_file=DEFAULT_CONFIG_FILE,
        case_sensitive=False,
        extra="ignore",
    )

    # Portal
    portal_base_url: str = Field(
        ...,
        description="Base URL of the academic-records portal"
    )
    portal_username: str = Field(
        ...,
        description="Portal login username (student ID)"
    )
    portal_password: Optional[str] = Field(
        default=None,
        repr=False,
        description="Portal password in plain text"
    )
    portal_password_command: Optional[str] = Field(
        default=None,
        repr=False,
        description="Shell command printing the portal password on stdout"
    )
    login_path: str = Field(default="/login", description="Login form page")
    logout_path: str = Field(default="/logout", description="Logout endpoint")
    success_path: str = Field(
        default="/home",
        description="Path fragment of the landing page reached after a successful login"
    )
    username_field: str = Field(default="username")
    password_field: str = Field(default="password")
    login_token_field: Optional[str] = Field(
        default="csrf_token",
        description="Anti-forgery input the login form must carry; empty disables the check"
    )
    login_error_markers: List[str] = Field(
        default_factory=lambda: [
            "Invalid login",
            "invalid credentials",
            "Login failed",
            "incorrect password",
            "authentication failed",
        ],
        description="Body fragments that mark a rejected login"
    )
    login_success_markers: List[str] = Field(
        default_factory=lambda: ["logout", "sign out"],
        description="Body fragments that mark an authenticated page"
    )
    terms_path: str = Field(default="/for-std/grade/sheet/getSemesters")
    grades_path: str = Field(default="/for-std/grade/sheet/getGradeList")
    grades_query_params: Dict[str, str] = Field(
        default_factory=lambda: {"trainTypeId": "1"},
        description="Extra query parameters sent with every grade-list request"
    )
    terms: List[str] = Field(
        default_factory=list,
        description="Term names to watch. If empty, all terms are watched."
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Per-request timeout in seconds"
    )

    # Mail
    recipient_emails: Annotated[List[str], NoDecode] = Field(
        ...,
        description="Where grade notifications go; a list or a comma-separated string"
    )
    smtp_host: str = Field(..., description="SMTP server host")
    smtp_port: Optional[int] = Field(
        default=None,
        description="SMTP port; defaults to 465 for ssl, 587 for starttls, 25 otherwise"
    )
    smtp_username: Optional[str] = Field(default=None)
    smtp_password: Optional[str] = Field(default=None, repr=False)
    smtp_password_command: Optional[str] = Field(default=None, repr=False)
    smtp_security: Literal["ssl", "starttls", "none"] = Field(default="ssl")
    smtp_sender: Optional[str] = Field(
        default=None,
        description="From address; defaults to smtp_username"
    )
    smtp_timeout: float = Field(default=30.0, gt=0)

    # Run behaviour
    snapshot_path: Path = Field(
        default=Path("grades.json"),
        description="File holding the last committed grade snapshot"
    )
    relogin_on_expiry: bool = Field(
        default=True,
        description="Log in again once and retry the fetch if the session expires"
    )
    notify_on_first_run: bool = Field(
        default=True,
        description="Email every grade when no snapshot has been saved yet"
    )
    notify_errors: bool = Field(
        default=False,
        description="Email a short error report when a run fails"
    )
    include_overview: bool = Field(
        default=True,
        description="Include GPA and earned credits in notification emails"
    )
    log_level: str = Field(default="INFO", description="Logging level")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @field_validator("portal_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base URL doesn't have trailing slash."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("portal_base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return upper

    @field_validator("recipient_emails", mode="before")
    @classmethod
    def split_recipients(cls, v: Any) -> Any:
        """Accept a single address or a comma-separated string."""
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, (list, tuple)):
            v = [str(address).strip() for address in v if str(address).strip()]
            if not v:
                raise ValueError("recipient_emails needs at least one address")
        return v

    @field_validator("login_token_field")
    @classmethod
    def empty_token_field_disables_check(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @model_validator(mode="after")
    def check_credentials(self) -> "Settings":
        if (self.portal_password is None) == (self.portal_password_command is None):
            raise ValueError(
                "exactly one of portal_password or portal_password_command must be set"
            )
        if self.smtp_password is not None and self.smtp_password_command is not None:
            raise ValueError(
                "smtp_password and smtp_password_command are mutually exclusive"
            )
        return self

    @property
    def portal_credential(self) -> Credential:
        """Portal password as a not-yet-resolved credential."""
        if self.portal_password_command is not None:
            return CommandCredential(command=self.portal_password_command)
        return LiteralCredential(value=self.portal_password)

    @property
    def smtp_credential(self) -> Optional[Credential]:
        """SMTP password credential, or None for unauthenticated relays."""
        if self.smtp_password_command is not None:
            return CommandCredential(command=self.smtp_password_command)
        if self.smtp_password is not None:
            return LiteralCredential(value=self.smtp_password)
        return None

    @property
    def effective_smtp_port(self) -> int:
        if self.smtp_port is not None:
            return self.smtp_port
        return {"ssl": 465, "starttls": 587}.get(self.smtp_security, 25)

    @property
    def sender_address(self) -> str:
        return self.smtp_sender or self.smtp_username or self.recipient_emails[0]


def load_settings(config_file: Optional[Path] = None, **overrides) -> Settings:
    """
    Load and validate settings.

    Args:
        config_file: TOML file to read instead of ./config.toml. Must exist.
        **overrides: Values taking priority over every other source

    Returns:
        Settings: Validated settings

    Raises:
        ConfigError: If the file is missing or validation fails
    """
    settings_cls: Type[Settings] = Settings
    if config_file is not None:
        config_file = Path(config_file)
        if not config_file.is_file():
            raise ConfigError(f"Cannot find configuration file '{config_file}'")

        class FileSettings(Settings):
            model_config = SettingsConfigDict(toml_file=config_file)

        settings_cls = FileSettings

    try:
        return settings_cls(**overrides)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings from the default sources.

    Raises:
        ConfigError: If required values are missing or invalid
    """
    return load_settings()


def setup_logging(settings: Optional[Settings] = None) -> logging.Logger:
    """
    Configure application logging.

    Args:
        settings: Optional settings instance, will be loaded if not provided

    Returns:
        logging.Logger: Configured logger instance
    """
    if settings is None:
        settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return logging.getLogger("grade_notifier")
