"""Configuration models for Active Directory objects."""

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


DEFAULT_FIRST_SITE_NAME = "Default-First-Site-Name"


class ActiveDirectoryConfig(BaseModel):
    """
    Connection settings for the directory.

    When ``server`` is empty the server is resolved from ``site_name``
    and ``domain`` (or the domain this machine is joined to).
    """

    server: Optional[str] = None
    domain: Optional[str] = None
    site_name: Optional[str] = DEFAULT_FIRST_SITE_NAME
    port: int = 389
    use_ssl: bool = False
    base_dn: Optional[str] = None
    ou_dn: Optional[str] = None
    bind_dn: Optional[str] = None
    password: Optional[str] = None
    authentication: Literal["SIMPLE", "NTLM", "KERBEROS"] = "SIMPLE"
    timeout: int = 30
    receive_timeout: int = 30

    @field_validator("server", "domain", "site_name", "base_dn", "ou_dn", "bind_dn", mode="before")
    @classmethod
    def _trim_or_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class SecurityConfig(BaseModel):
    """TLS settings."""

    enable_tls: bool = False
    validate_certificate: bool = True
    ca_cert_file: Optional[str] = None


class PerformanceConfig(BaseModel):
    """Search and cache tuning."""

    page_size: int = 1000
    # None keeps every query result for the lifetime of the session
    cache_capacity: Optional[int] = Field(default=None, ge=1)


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


class Config(BaseModel):
    """Complete configuration."""

    active_directory: ActiveDirectoryConfig = Field(default_factory=ActiveDirectoryConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
