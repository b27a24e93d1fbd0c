"""
Identifier validation for creators, channels and roles
"""
import re
from dataclasses import dataclass
from typing import Optional

from errors import ValidationError

_USERNAME_RE = re.compile(r"^[a-z0-9_.]{2,24}$")
_SNOWFLAKE_RE = re.compile(r"^\d{17,20}$")
_NON_LETTERS_RE = re.compile(r"[^a-zA-Z]")


@dataclass(frozen=True)
class CreatorUsername:
    value: str

    @classmethod
    def create(cls, raw: str) -> "CreatorUsername":
        """Normalise (lowercase, no leading @) and validate a creator handle"""
        normalized = (raw or "").strip().lower()
        if normalized.startswith("@"):
            normalized = normalized[1:]
        if not _USERNAME_RE.match(normalized):
            raise ValidationError(f"Invalid creator username: {raw!r}")
        return cls(normalized)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class _SnowflakeId:
    value: str

    kind = "id"

    @classmethod
    def create(cls, raw: str) -> "_SnowflakeId":
        raw = str(raw or "").strip()
        if not _SNOWFLAKE_RE.match(raw):
            raise ValidationError(f"Invalid {cls.kind}: {raw!r}")
        return cls(raw)

    def __str__(self) -> str:
        return self.value


class ChannelId(_SnowflakeId):
    kind = "channel id"


class RoleId(_SnowflakeId):
    kind = "role id"


def sanitize_channel_name(username: str) -> Optional[str]:
    """Channel name for an auto-provisioned channel, or None if too little is left"""
    name = _NON_LETTERS_RE.sub("", username or "").lower()
    if len(name) < 2:
        return None
    return name
