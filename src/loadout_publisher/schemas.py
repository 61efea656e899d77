# src/loadout_publisher/schemas.py

from typing import Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from .exceptions import InvalidIdentifierError, MissingParameterError
from .security import validate_path_segment


# --- Request Parameters ---


class PublishRequest(BaseModel):
    """
    The identifiers carried by the trigger's query string.

    Built through `from_query_parameters` so that a missing parameter surfaces
    as a MissingParameterError naming it, and an unsafe one as an
    InvalidIdentifierError, rather than a raw pydantic error.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    loadout_id: str

    @field_validator("user_id", "loadout_id")
    @classmethod
    def validate_identifier_security(cls, value: str, info: ValidationInfo) -> str:
        try:
            return validate_path_segment(value, info.field_name)
        except InvalidIdentifierError as e:
            raise ValueError(str(e))

    @classmethod
    def from_query_parameters(cls, params: Optional[dict]) -> "PublishRequest":
        params = params or {}
        # The console sends the Cognito subject; older clients send userId.
        user_id = params.get("userSub") or params.get("userId")
        if not user_id:
            raise MissingParameterError("userSub", alternatives=("userId",))
        loadout_id = params.get("loadoutId")
        if not loadout_id:
            raise MissingParameterError("loadoutId")

        try:
            return cls(user_id=user_id, loadout_id=loadout_id)
        except pydantic.ValidationError as e:
            errors = e.errors(include_url=False, include_input=False)
            raise InvalidIdentifierError(
                errors[0]["msg"] if errors else "Invalid identifier",
                context={"validation_errors": errors},
            ) from e


# --- Device Lookup ---


class DeviceLookupPayload(BaseModel):
    """The innermost layer of a device lookup response."""

    device_id: str = Field(..., min_length=1, alias="deviceId")

    @field_validator("device_id", mode="before")
    @classmethod
    def integer_ids_become_strings(cls, value):
        # Some linking backends store numeric device ids.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


# --- Pipeline Entities ---


class SignedUrlEntry(BaseModel):
    """One stored object paired with its time-limited access URL."""

    model_config = ConfigDict(frozen=True)

    key: str
    url: str

    def to_wire(self) -> dict[str, str]:
        """The object shape the device parses: `{key, presignedUrl}`."""
        return {"key": self.key, "presignedUrl": self.url}


class PublishOutcome(BaseModel):
    """Aggregate counters for one pipeline run."""

    topic: str
    prefix: str
    total_enumerated: int = 0
    total_signed: int = 0
    total_published: int = 0
    batches_published: int = 0
    total_dropped: int = 0
    placeholders_skipped: int = 0
