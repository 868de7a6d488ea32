# storefront/core/identity.py
import uuid
from dataclasses import dataclass

from storefront.core.errors import ValidationError


@dataclass(frozen=True)
class Identity:
    """
    Owner of a cart or an order.

    Exactly one of:
      - user_id    : authenticated customer (JWT "sub")
      - session_id : guest browser session

    Constructing with both or neither raises ValidationError.
    """

    user_id: uuid.UUID | None = None
    session_id: str | None = None

    def __post_init__(self) -> None:
        # An empty session id means "no session"
        if self.session_id == "":
            object.__setattr__(self, "session_id", None)

        has_user = self.user_id is not None
        has_session = self.session_id is not None
        if not has_user and not has_session:
            raise ValidationError("Either userId or sessionId is required")
        if has_user and has_session:
            raise ValidationError("Identity cannot have both userId and sessionId")

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    @classmethod
    def for_user(cls, user_id: uuid.UUID) -> "Identity":
        return cls(user_id=user_id)

    @classmethod
    def for_guest(cls, session_id: str) -> "Identity":
        return cls(session_id=session_id)
