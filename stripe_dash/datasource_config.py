"""Data source configuration contract.

The persisted layout follows the host's provisioning format::

    {"jsonData": {}, "secureJsonData": {"apiKey": "..."}, "secureJsonFields": {"apiKey": true}}

``secureJsonData`` only ever travels *towards* storage. Whatever is returned
to the editing surface goes through :func:`redacted`, which drops it, so a
saved key is represented by the ``secureJsonFields`` flag alone.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import MissingCredentialError

API_KEY = "apiKey"


class SecureJsonData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    api_key: Optional[str] = Field(None, alias=API_KEY)

    def __repr__(self) -> str:
        return f"SecureJsonData(api_key={'<set>' if self.api_key else self.api_key!r})"


class SecureJsonFields(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    api_key: bool = Field(False, alias=API_KEY)


class DataSourceConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    json_data: Dict[str, Any] = Field(default_factory=dict, alias="jsonData")
    secure_json_data: SecureJsonData = Field(
        default_factory=SecureJsonData, alias="secureJsonData", repr=False
    )
    secure_json_fields: SecureJsonFields = Field(
        default_factory=SecureJsonFields, alias="secureJsonFields"
    )

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class SecretState(str, Enum):
    UNSET = "unset"
    PENDING_VALUE = "pending_value"
    SAVED = "saved"


def is_configured(config: DataSourceConfig) -> bool:
    return config.secure_json_fields.api_key


def pending_key(config: DataSourceConfig) -> Optional[str]:
    """The key typed in this editing session, if any."""
    return config.secure_json_data.api_key or None


def apply_key_change(config: DataSourceConfig, new_value: str) -> DataSourceConfig:
    # The presence flag is left alone; the host recomputes it after a persist.
    return config.model_copy(update={"secure_json_data": SecureJsonData(api_key=new_value)})


def reset_key(config: DataSourceConfig) -> DataSourceConfig:
    return config.model_copy(
        update={
            "secure_json_data": config.secure_json_data.model_copy(update={"api_key": ""}),
            "secure_json_fields": config.secure_json_fields.model_copy(update={"api_key": False}),
        }
    )


def secret_state(config: DataSourceConfig) -> SecretState:
    if pending_key(config):
        return SecretState.PENDING_VALUE
    if is_configured(config):
        return SecretState.SAVED
    return SecretState.UNSET


def validate_for_save_and_test(config: DataSourceConfig) -> None:
    """Raise :class:`MissingCredentialError` unless a key is pending or already stored."""
    if secret_state(config) is SecretState.UNSET:
        raise MissingCredentialError()


def mark_persisted(config: DataSourceConfig, stored: bool) -> DataSourceConfig:
    """Config as the editing surface sees it after a successful save."""
    return config.model_copy(
        update={
            "secure_json_data": SecureJsonData(),
            "secure_json_fields": SecureJsonFields(api_key=stored),
        }
    )


def redacted(config: DataSourceConfig) -> Dict[str, Any]:
    """Payload safe to send to the editing surface. Never contains the key."""
    return {
        "jsonData": dict(config.json_data),
        "secureJsonFields": config.secure_json_fields.model_dump(by_alias=True),
    }
