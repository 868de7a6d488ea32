import uuid
from datetime import datetime, timedelta, timezone

import pytest

from storefront.core.errors import NotFoundError, ValidationError
from storefront.core.identity import Identity

GUEST = Identity.for_guest("guest-session-1")


class TestAddToCart:
    def test_creates_cart_lazily(self, session, cart_service, make_product):
        product = make_product(base_price=2500)

        assert cart_service.get_cart(session, GUEST) is None

        cart = cart_service.add_to_cart(session, GUEST, product.id, quantity=2)

        assert cart.session_id == GUEST.session_id
        assert cart.user_id is None
        assert len(cart.items) == 1
        assert cart.items[0].index == 0
        assert cart.items[0].price == 2500
        assert cart.items[0].line_total == 5000
        assert cart.subtotal == 5000
        assert cart.item_count == 2

    def test_guest_cart_expires_in_seven_days(self, session, cart_service, make_product):
        product = make_product()
        cart = cart_service.add_to_cart(session, GUEST, product.id, quantity=1)

        lifetime = cart.expires_at - cart.created_at
        assert timedelta(days=6, hours=23) < lifetime <= timedelta(days=7)

    def test_user_cart_expires_in_thirty_days(self, session, cart_service, make_product):
        product = make_product()
        user = Identity.for_user(uuid.uuid4())
        cart = cart_service.add_to_cart(session, user, product.id, quantity=1)

        lifetime = cart.expires_at - cart.created_at
        assert timedelta(days=29, hours=23) < lifetime <= timedelta(days=30)

    def test_same_key_sums_quantity(self, session, cart_service, make_product):
        product = make_product()
        cart_service.add_to_cart(session, GUEST, product.id, quantity=1)
        cart = cart_service.add_to_cart(session, GUEST, product.id, quantity=3)

        assert len(cart.items) == 1
        assert cart.items[0].quantity == 4

    def test_different_variants_are_separate_lines(
        self, session, cart_service, make_product, make_variant
    ):
        product = make_product()
        small = make_variant(product, name="Small", base_price=1500)
        large = make_variant(product, name="Large", base_price=3000)

        cart_service.add_to_cart(session, GUEST, product.id, 1, variant_id=small.id)
        cart = cart_service.add_to_cart(session, GUEST, product.id, 1, variant_id=large.id)

        assert [it.variant_id for it in cart.items] == [small.id, large.id]
        assert cart.subtotal == 4500

    def test_price_precedence(self, session, cart_service, make_product, make_variant):
        plain = make_product(base_price=2000, discount_price=1800)
        with_variant = make_product(base_price=2000, discount_price=1800)
        variant = make_variant(with_variant, base_price=2600, discount_price=2400)

        cart_service.add_to_cart(session, GUEST, plain.id, 1)
        cart = cart_service.add_to_cart(
            session, GUEST, with_variant.id, 1, variant_id=variant.id
        )

        assert cart.items[0].price == 1800
        assert cart.items[1].price == 2400

    def test_missing_product(self, session, cart_service):
        with pytest.raises(NotFoundError):
            cart_service.add_to_cart(session, GUEST, uuid.uuid4(), 1)

    def test_inactive_product(self, session, cart_service, make_product):
        product = make_product(status="draft")
        with pytest.raises(ValidationError):
            cart_service.add_to_cart(session, GUEST, product.id, 1)

    def test_variant_required_when_product_has_variants(
        self, session, cart_service, make_product, make_variant
    ):
        product = make_product()
        make_variant(product)

        with pytest.raises(ValidationError, match="variant is required"):
            cart_service.add_to_cart(session, GUEST, product.id, 1)

    def test_variant_must_belong_to_product(
        self, session, cart_service, make_product, make_variant
    ):
        product = make_product()
        other = make_product(name="Other Cake")
        variant = make_variant(other)

        with pytest.raises(ValidationError, match="does not belong"):
            cart_service.add_to_cart(session, GUEST, product.id, 1, variant_id=variant.id)

    def test_unknown_variant(self, session, cart_service, make_product):
        product = make_product()
        with pytest.raises(NotFoundError):
            cart_service.add_to_cart(session, GUEST, product.id, 1, variant_id=uuid.uuid4())

    def test_stock_ceiling(self, session, cart_service, make_product, make_variant):
        product = make_product()
        variant = make_variant(product, stock=3)

        with pytest.raises(ValidationError, match="Only 3 items available"):
            cart_service.add_to_cart(session, GUEST, product.id, 4, variant_id=variant.id)

    def test_stock_ceiling_applies_to_combined_quantity(
        self, session, cart_service, make_product, make_variant
    ):
        product = make_product()
        variant = make_variant(product, stock=3)
        cart_service.add_to_cart(session, GUEST, product.id, 2, variant_id=variant.id)

        with pytest.raises(ValidationError):
            cart_service.add_to_cart(session, GUEST, product.id, 2, variant_id=variant.id)

        cart = cart_service.get_cart(session, GUEST)
        assert cart.items[0].quantity == 2

    def test_quantity_equal_to_stock_is_accepted(
        self, session, cart_service, make_product, make_variant
    ):
        product = make_product()
        variant = make_variant(product, stock=5)

        cart = cart_service.add_to_cart(session, GUEST, product.id, 5, variant_id=variant.id)

        assert cart.items[0].quantity == 5

    def test_combined_quantity_may_reach_stock(
        self, session, cart_service, make_product, make_variant
    ):
        product = make_product()
        variant = make_variant(product, stock=5)
        cart_service.add_to_cart(session, GUEST, product.id, 2, variant_id=variant.id)

        cart = cart_service.add_to_cart(session, GUEST, product.id, 3, variant_id=variant.id)

        assert len(cart.items) == 1
        assert cart.items[0].quantity == 5

    def test_zero_quantity(self, session, cart_service, make_product):
        product = make_product()
        with pytest.raises(ValidationError):
            cart_service.add_to_cart(session, GUEST, product.id, 0)

    def test_readd_refreshes_price(self, session, cart_service, product_repo, make_product):
        product = make_product(base_price=2500)
        cart_service.add_to_cart(session, GUEST, product.id, 1)

        product.base_price = 2200
        product_repo.update(session, product)
        cart = cart_service.add_to_cart(session, GUEST, product.id, 1)

        assert cart.items[0].price == 2200


class TestReadModel:
    def test_price_drift_is_flagged_but_not_applied(
        self, session, cart_service, product_repo, make_product
    ):
        product = make_product(base_price=2500)
        cart_service.add_to_cart(session, GUEST, product.id, 1)

        product.base_price = 2000
        product_repo.update(session, product)
        cart = cart_service.get_cart(session, GUEST)

        item = cart.items[0]
        assert item.price == 2500
        assert item.current_price == 2000
        assert item.price_changed is True

    def test_product_summary_includes_images(self, session, cart_service, make_product):
        product = make_product(images=[("https://cdn/a.jpg", False), ("https://cdn/b.jpg", True)])
        cart = cart_service.add_to_cart(session, GUEST, product.id, 1)

        summary = cart.items[0].product
        assert summary.slug == product.slug
        assert [img.url for img in summary.images] == ["https://cdn/a.jpg", "https://cdn/b.jpg"]
        assert summary.images[1].is_primary is True


class TestUpdateAndRemove:
    def test_update_quantity(self, session, cart_service, make_product):
        product = make_product()
        cart_service.add_to_cart(session, GUEST, product.id, 1)

        cart = cart_service.update_cart_item(session, GUEST, item_index=0, quantity=5)

        assert cart.items[0].quantity == 5

    def test_update_without_cart(self, session, cart_service):
        with pytest.raises(NotFoundError):
            cart_service.update_cart_item(session, GUEST, item_index=0, quantity=1)

    def test_update_invalid_index(self, session, cart_service, make_product):
        product = make_product()
        cart_service.add_to_cart(session, GUEST, product.id, 1)

        with pytest.raises(ValidationError, match="Invalid item index"):
            cart_service.update_cart_item(session, GUEST, item_index=1, quantity=1)

    def test_update_respects_stock(self, session, cart_service, make_product, make_variant):
        product = make_product()
        variant = make_variant(product, stock=2)
        cart_service.add_to_cart(session, GUEST, product.id, 1, variant_id=variant.id)

        with pytest.raises(ValidationError):
            cart_service.update_cart_item(session, GUEST, item_index=0, quantity=3)

    def test_update_to_exact_stock(self, session, cart_service, make_product, make_variant):
        product = make_product()
        variant = make_variant(product, stock=5)
        cart_service.add_to_cart(session, GUEST, product.id, 1, variant_id=variant.id)

        cart = cart_service.update_cart_item(session, GUEST, item_index=0, quantity=5)

        assert cart.items[0].quantity == 5

    def test_update_keeps_price_snapshot(
        self, session, cart_service, product_repo, make_product
    ):
        product = make_product(base_price=2500)
        cart_service.add_to_cart(session, GUEST, product.id, 1)
        product.base_price = 1000
        product_repo.update(session, product)

        cart = cart_service.update_cart_item(session, GUEST, item_index=0, quantity=2)

        assert cart.items[0].price == 2500

    def test_remove_preserves_order(self, session, cart_service, make_product):
        first = make_product(name="First")
        second = make_product(name="Second")
        third = make_product(name="Third")
        for p in (first, second, third):
            cart_service.add_to_cart(session, GUEST, p.id, 1)

        cart = cart_service.remove_cart_item(session, GUEST, item_index=1)

        assert [it.product_id for it in cart.items] == [first.id, third.id]
        assert [it.index for it in cart.items] == [0, 1]

    def test_remove_invalid_index(self, session, cart_service, make_product):
        product = make_product()
        cart_service.add_to_cart(session, GUEST, product.id, 1)

        with pytest.raises(ValidationError):
            cart_service.remove_cart_item(session, GUEST, item_index=5)


class TestClearCart:
    def test_clear_keeps_cart_and_expiry(self, session, cart_service, make_product):
        product = make_product()
        before = cart_service.add_to_cart(session, GUEST, product.id, 2)

        cart_service.clear_cart(session, GUEST)
        after = cart_service.get_cart(session, GUEST)

        assert after is not None
        assert after.id == before.id
        assert after.items == []
        assert after.subtotal == 0
        assert after.expires_at == before.expires_at

    def test_clear_without_cart_is_noop(self, session, cart_service):
        cart_service.clear_cart(session, GUEST)
        assert cart_service.get_cart(session, GUEST) is None


class TestRecalculate:
    def test_drops_inactive_and_clamps_stock(
        self, session, cart_service, product_repo, make_product, make_variant
    ):
        archived = make_product(name="Archived")
        scarce = make_product(name="Scarce")
        scarce_variant = make_variant(scarce, stock=5)
        sold_out = make_product(name="Sold Out")
        sold_out_variant = make_variant(sold_out, stock=5)

        cart_service.add_to_cart(session, GUEST, archived.id, 1)
        cart_service.add_to_cart(session, GUEST, scarce.id, 4, variant_id=scarce_variant.id)
        cart_service.add_to_cart(session, GUEST, sold_out.id, 1, variant_id=sold_out_variant.id)

        archived.status = "archived"
        product_repo.update(session, archived)
        scarce_variant.stock = 2
        product_repo.update_variant(session, scarce_variant)
        sold_out_variant.stock = 0
        product_repo.update_variant(session, sold_out_variant)

        cart = cart_service.recalculate_cart(session, GUEST)

        assert len(cart.items) == 1
        assert cart.items[0].product_id == scarce.id
        assert cart.items[0].quantity == 2

    def test_refreshes_price(self, session, cart_service, product_repo, make_product):
        product = make_product(base_price=2500)
        cart_service.add_to_cart(session, GUEST, product.id, 1)
        product.discount_price = 1999
        product_repo.update(session, product)

        cart = cart_service.recalculate_cart(session, GUEST)

        assert cart.items[0].price == 1999
        assert cart.items[0].price_changed is False

    def test_without_cart(self, session, cart_service):
        with pytest.raises(NotFoundError):
            cart_service.recalculate_cart(session, GUEST)


class TestMergeCarts:
    def test_sums_matching_lines_and_deletes_guest_cart(
        self, session, cart_service, product_repo, make_product
    ):
        shared = make_product(name="Shared", base_price=1000)
        guest_only = make_product(name="Guest Only")
        user_id = uuid.uuid4()
        user = Identity.for_user(user_id)

        cart_service.add_to_cart(session, user, shared.id, 1)
        shared.base_price = 900
        product_repo.update(session, shared)
        cart_service.add_to_cart(session, GUEST, shared.id, 2)
        cart_service.add_to_cart(session, GUEST, guest_only.id, 1)

        merged = cart_service.merge_carts(session, GUEST.session_id, user_id)

        by_product = {it.product_id: it for it in merged.items}
        assert by_product[shared.id].quantity == 3
        assert by_product[shared.id].price == 900
        assert by_product[guest_only.id].quantity == 1
        assert cart_service.get_cart(session, GUEST) is None

    def test_clamps_merged_quantity_to_stock(
        self, session, cart_service, make_product, make_variant
    ):
        product = make_product()
        variant = make_variant(product, stock=3)
        user_id = uuid.uuid4()
        user = Identity.for_user(user_id)

        cart_service.add_to_cart(session, user, product.id, 2, variant_id=variant.id)
        cart_service.add_to_cart(session, GUEST, product.id, 2, variant_id=variant.id)

        merged = cart_service.merge_carts(session, GUEST.session_id, user_id)

        assert merged.items[0].quantity == 3

    def test_missing_guest_cart_returns_user_cart(self, session, cart_service):
        user_id = uuid.uuid4()

        merged = cart_service.merge_carts(session, "no-such-session", user_id)

        assert merged.user_id == user_id
        assert merged.items == []

    def test_merge_is_idempotent(self, session, cart_service, make_product):
        product = make_product()
        user_id = uuid.uuid4()
        cart_service.add_to_cart(session, GUEST, product.id, 2)

        first = cart_service.merge_carts(session, GUEST.session_id, user_id)
        second = cart_service.merge_carts(session, GUEST.session_id, user_id)

        assert [(it.product_id, it.quantity) for it in first.items] == [
            (it.product_id, it.quantity) for it in second.items
        ]


class TestExpiry:
    def test_expired_cart_is_invisible_and_swept(
        self, session, cart_service, cart_repo
    ):
        cart_repo.create(
            session,
            GUEST,
            datetime.now(timezone.utc) - timedelta(minutes=1),
        )

        assert cart_service.get_cart(session, GUEST) is None
        assert cart_service.cleanup_expired_carts(session) == 1
        assert cart_service.cleanup_expired_carts(session) == 0

    def test_live_cart_survives_sweep(self, session, cart_service, make_product):
        product = make_product()
        cart_service.add_to_cart(session, GUEST, product.id, 1)

        assert cart_service.cleanup_expired_carts(session) == 0
        assert cart_service.get_cart(session, GUEST) is not None
