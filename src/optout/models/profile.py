"""User profile snapshot.

The profile is owned by the surrounding application (which stores it
encrypted). The engine receives a frozen snapshot at run start, resolves
``ProfileKey`` references against it and never persists or logs it.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from optout.models.playbook import ProfileKey


class PreviousAddress(BaseModel):
    """A prior postal address."""

    model_config = ConfigDict(frozen=True)

    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""


class Profile(BaseModel):
    """Read-only snapshot of the user's personal details."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    dob: str = ""
    alternate_emails: tuple[str, ...] = Field(default=(), alias="alternateEmails")
    alternate_phones: tuple[str, ...] = Field(default=(), alias="alternatePhones")
    previous_addresses: tuple[PreviousAddress, ...] = Field(default=(), alias="previousAddresses")

    def resolve(self, key: ProfileKey | str) -> str | None:
        """Return the literal value for *key*, or ``None`` if it is empty/unknown.

        Callers must treat the return value as PII: never log it.
        """
        try:
            key = ProfileKey(key)
        except ValueError:
            return None

        if key == ProfileKey.FULL_NAME:
            parts = [p for p in (self.first_name, self.last_name) if p]
            return " ".join(parts) or None

        attr = {
            ProfileKey.FIRST_NAME: "first_name",
            ProfileKey.LAST_NAME: "last_name",
        }.get(key, key.value)
        value = getattr(self, attr, "")
        return value or None

    def __repr__(self) -> str:
        # Keep PII out of tracebacks and debug output.
        return "Profile(<redacted>)"

    __str__ = __repr__
