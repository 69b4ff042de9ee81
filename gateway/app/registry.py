"""
Portal Registry
===============

Loads the ``auth`` section of the YAML configuration document into frozen
pydantic models and exposes it as a read-only registry for the lifetime of
the process.

Sensitive scalars (``session_secret``, ``client_secret``) are
``EncryptedString`` fields: they are decrypted during validation and
re-encrypted by ``dump_auth_options``. A portal added or changed on disk only
takes effect after a restart.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.encryption import EncryptedString
from app.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = ["openid", "profile", "email"]
DISCOVERY_DOCUMENT_PATH = "/.well-known/openid-configuration"


# =============================================================================
# Configuration Models
# =============================================================================

class OidcConfig(BaseModel):
    """OIDC client registration for one portal."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str = ""
    client_id: str = ""
    client_secret: EncryptedString = Field(default_factory=EncryptedString)
    scopes: List[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))

    @field_validator("issuer", "client_id", mode="before")
    @classmethod
    def _none_as_blank(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("scopes")
    @classmethod
    def _dedupe_scopes(cls, v: List[str]) -> List[str]:
        seen = []
        for scope in v:
            scope = scope.strip()
            if scope and scope not in seen:
                seen.append(scope)
        return seen

    @property
    def is_eligible(self) -> bool:
        """True when both client_id and issuer are present."""
        return bool(self.client_id.strip()) and bool(self.issuer.strip())

    @property
    def uses_metadata_address(self) -> bool:
        """True when the issuer is itself a discovery-document URL."""
        return DISCOVERY_DOCUMENT_PATH in self.issuer.lower()

    @property
    def metadata_address(self) -> str:
        if self.uses_metadata_address:
            return self.issuer
        return self.issuer.rstrip("/") + DISCOVERY_DOCUMENT_PATH

    @property
    def require_https_metadata(self) -> bool:
        return self.issuer.startswith("https://")


class PortalConfig(BaseModel):
    """One protected backend."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    display: str = ""
    hostname: str = ""
    cookie_domain: str = ""
    oidc: Optional[OidcConfig] = None

    @field_validator("display", "hostname", "cookie_domain", mode="before")
    @classmethod
    def _none_as_blank(cls, v: Any) -> Any:
        return "" if v is None else v

    @property
    def is_oidc_eligible(self) -> bool:
        return self.oidc is not None and self.oidc.is_eligible


class AuthOptions(BaseModel):
    """The ``auth`` section of the configuration document."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    # Loaded and decrypted but not used for signing; see DESIGN.md.
    session_secret: EncryptedString = Field(default_factory=EncryptedString)
    session_timeout_minutes: int = Field(default=60, ge=1)
    portals: Dict[str, PortalConfig] = Field(default_factory=dict)

    @field_validator("portals", mode="before")
    @classmethod
    def _default_portal_names(cls, v: Any) -> Any:
        if v is None:
            return {}
        if not isinstance(v, dict):
            return v

        portals = {}
        for key, entry in v.items():
            if entry is None:
                entry = {}
            if isinstance(entry, dict) and not entry.get("name"):
                entry = {**entry, "name": key}
            portals[key] = entry
        return portals


# =============================================================================
# Loading / Writing
# =============================================================================

def parse_auth_options(document: str) -> AuthOptions:
    """
    Parse a YAML configuration document.

    Raises:
        ConfigurationError: If the YAML is malformed or fails validation
        DecryptionFailedError: If an ``ENC:`` value cannot be decrypted
    """
    try:
        data = yaml.safe_load(document) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Configuration document is not valid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError("Configuration document must be a mapping")

    try:
        return AuthOptions.model_validate(data.get("auth") or {})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid auth configuration: {e}") from e


def load_auth_options(path: str) -> AuthOptions:
    """
    Read and validate the configuration document at ``path``.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
        DecryptionFailedError: If an ``ENC:`` value cannot be decrypted
    """
    config_file = Path(path)
    try:
        document = config_file.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Unable to read configuration file {path}: {e}") from e

    options = parse_auth_options(document)
    logger.info(
        f"Loaded configuration from {path}",
        extra={"portals": list(options.portals), "timeout_minutes": options.session_timeout_minutes},
    )
    return options


def dump_auth_options(options: AuthOptions) -> str:
    """Serialize options back to YAML, encrypting every secret scalar."""
    data = {"auth": options.model_dump(mode="json")}
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


def write_auth_options(options: AuthOptions, path: str) -> None:
    """Write options to ``path``; secrets are encrypted when a key is configured."""
    config_file = Path(path)
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(dump_auth_options(options), encoding="utf-8")
    logger.info(f"Wrote configuration for {len(options.portals)} portal(s) to {path}")


# =============================================================================
# Registry
# =============================================================================

class PortalRegistry:
    """Read-only view over the loaded portals."""

    def __init__(self, options: AuthOptions):
        self._options = options

    @classmethod
    def from_file(cls, path: str) -> "PortalRegistry":
        return cls(load_auth_options(path))

    @property
    def options(self) -> AuthOptions:
        return self._options

    @property
    def session_timeout_minutes(self) -> int:
        return self._options.session_timeout_minutes

    @property
    def session_timeout_seconds(self) -> int:
        return self._options.session_timeout_minutes * 60

    @property
    def names(self) -> List[str]:
        return list(self._options.portals)

    def get(self, name: str) -> Optional[PortalConfig]:
        return self._options.portals.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._options.portals

    def __len__(self) -> int:
        return len(self._options.portals)

    def __iter__(self) -> Iterator[PortalConfig]:
        return iter(self._options.portals.values())
