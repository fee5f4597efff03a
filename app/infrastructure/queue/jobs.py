"""
Job names and payload schemas shared by producers and workers.

Payloads travel as JSON with camelCase keys; the models accept either the
alias or the field name so Python producers can build them directly.
"""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class JobName(StrEnum):
    ADD_RECIPIENT_TO_SESSION = "add-recipient-to-session"
    POPULATE_DID_CACHE = "populate-did-cache"
    UPDATE_SESSION_KEYS = "update-session-keys"
    REVOKE_SESSION = "revoke-session"
    DELETE_SESSION_KEYS = "delete-session-keys"


class JobPayload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
        frozen=True,
    )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class AddRecipientToSessionJob(JobPayload):
    author_did: str = Field(min_length=1)
    recipient_did: str = Field(min_length=1)
    # Optional pre-wrapped key material; fetched from the user-keys service when absent
    user_key_pair_id: str | None = None
    encrypted_dek: str | None = None

    @model_validator(mode="after")
    def _key_material_complete(self) -> "AddRecipientToSessionJob":
        if (self.user_key_pair_id is None) != (self.encrypted_dek is None):
            raise ValueError("userKeyPairId and encryptedDek must be provided together")
        return self


class PopulateDidCacheJob(JobPayload):
    dids: list[str]
    # AppView to resolve against; the worker's default host when absent or blank
    host: str | None = None

    @field_validator("dids")
    @classmethod
    def _non_empty_dids(cls, value: list[str]) -> list[str]:
        if any(not did or not did.strip() for did in value):
            raise ValueError("dids must not contain empty identifiers")
        return value


class SessionKeyUpdate(JobPayload):
    recipient_did: str = Field(min_length=1)
    user_key_pair_id: str = Field(min_length=1)
    encrypted_dek: str = Field(min_length=1)


class UpdateSessionKeysJob(JobPayload):
    session_id: str = Field(min_length=1)
    keys: list[SessionKeyUpdate]


class RevokeSessionJob(JobPayload):
    author_did: str = Field(min_length=1)
    recipient_did: str | None = None


class DeleteSessionKeysJob(JobPayload):
    author_did: str = Field(min_length=1)
    recipient_did: str = Field(min_length=1)


PAYLOAD_MODELS: dict[JobName, type[JobPayload]] = {
    JobName.ADD_RECIPIENT_TO_SESSION: AddRecipientToSessionJob,
    JobName.POPULATE_DID_CACHE: PopulateDidCacheJob,
    JobName.UPDATE_SESSION_KEYS: UpdateSessionKeysJob,
    JobName.REVOKE_SESSION: RevokeSessionJob,
    JobName.DELETE_SESSION_KEYS: DeleteSessionKeysJob,
}
