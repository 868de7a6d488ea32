import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from storefront.core.errors import ValidationError
from storefront.core.identity import Identity
from storefront.models.cart import Cart


class TestIdentity:
    def test_user_identity(self):
        user_id = uuid.uuid4()
        identity = Identity.for_user(user_id)

        assert identity.user_id == user_id
        assert identity.session_id is None
        assert identity.is_guest is False

    def test_guest_identity(self):
        identity = Identity.for_guest("sess-123")

        assert identity.session_id == "sess-123"
        assert identity.user_id is None
        assert identity.is_guest is True

    def test_neither_is_rejected(self):
        with pytest.raises(ValidationError):
            Identity()

    def test_empty_session_is_rejected(self):
        with pytest.raises(ValidationError):
            Identity(session_id="")

    def test_both_are_rejected(self):
        with pytest.raises(ValidationError):
            Identity(user_id=uuid.uuid4(), session_id="sess-123")

    def test_empty_session_with_user_means_no_session(self):
        user_id = uuid.uuid4()
        identity = Identity(user_id=user_id, session_id="")

        assert identity.session_id is None
        assert identity.user_id == user_id
        assert identity.is_guest is False

    def test_empty_session_with_user_can_own_a_cart(self, session, cart_repo):
        identity = Identity(user_id=uuid.uuid4(), session_id="")

        cart = cart_repo.create(
            session, identity, datetime.now(timezone.utc) + timedelta(days=1)
        )

        assert cart.user_id == identity.user_id
        assert cart.session_id is None

    def test_identity_is_immutable(self):
        identity = Identity.for_guest("sess-123")
        with pytest.raises(AttributeError):
            identity.session_id = "other"


class TestCartIdentityConstraint:
    def test_table_rejects_cart_with_both_owners(self, session):
        session.add(
            Cart(
                user_id=uuid.uuid4(),
                session_id="sess-123",
                expires_at=datetime.now(timezone.utc) + timedelta(days=1),
            )
        )
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

    def test_table_rejects_cart_without_owner(self, session):
        session.add(Cart(expires_at=datetime.now(timezone.utc) + timedelta(days=1)))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()
