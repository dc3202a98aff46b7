from decimal import Decimal

from storefront.enums import ErrorCode
from storefront.schemas.cart import AddToCartRequest


SESSION = "cart-session"


async def add(cart_service, db, product, quantity=1, color=None, session_id=SESSION):
    return await cart_service.add_item(
        session_id, AddToCartRequest(product_id=product.id, quantity=quantity, selected_color=color), db
    )


async def test_new_session_gets_empty_cart(db, cart_service):
    cart = (await cart_service.get_cart(SESSION, db)).data

    assert cart.items == []
    assert cart.subtotal == Decimal("0.00")
    assert cart.total_amount == Decimal("0.00")
    assert cart.total_items == 0


async def test_add_item_prices_line(db, cart_service, products):
    result = await add(cart_service, db, products["lamp"], quantity=2, color="black")
    cart = result.data

    assert result.succeeded
    item = cart.items[0]
    assert item.selected_color == "Black"
    assert item.unit_price == Decimal("150.00")
    assert item.line_total == Decimal("300.00")
    assert item.line_discount == Decimal("100.00")
    assert cart.subtotal == Decimal("300.00")
    assert cart.total_original_price == Decimal("400.00")
    assert cart.total_product_discount == Decimal("100.00")
    assert cart.discount_percentage == Decimal("25.00")


async def test_same_product_and_colour_merge(db, cart_service, products):
    await add(cart_service, db, products["lamp"], color="Black")
    await add(cart_service, db, products["lamp"], quantity=2, color="Black")
    cart = (await add(cart_service, db, products["lamp"], color="White")).data

    assert [(i.selected_color, i.quantity) for i in cart.items] == [("Black", 3), ("White", 1)]
    assert cart.total_items == 4


async def test_add_rejections(db, cart_service, products):
    unknown_colour = await add(cart_service, db, products["lamp"], color="Purple")
    assert unknown_colour.error_code == ErrorCode.COLOR_NOT_AVAILABLE

    retired = await add(cart_service, db, products["retired"])
    assert retired.error_code == ErrorCode.PRODUCT_NOT_FOUND

    too_many = await add(cart_service, db, products["chair"], quantity=3)
    assert too_many.error_code == ErrorCode.INSUFFICIENT_STOCK

    over_cap = await add(cart_service, db, products["mug"], quantity=51)
    assert over_cap.error_code == ErrorCode.INVALID_QUANTITY


async def test_update_and_remove(db, cart_service, products):
    cart = (await add(cart_service, db, products["mug"], quantity=2)).data
    item_id = cart.items[0].id

    cart = (await cart_service.update_quantity(SESSION, item_id, 5, db)).data
    assert cart.items[0].quantity == 5
    assert cart.subtotal == Decimal("250.00")

    invalid = await cart_service.update_quantity(SESSION, item_id, 0, db)
    assert invalid.error_code == ErrorCode.INVALID_QUANTITY

    missing = await cart_service.update_quantity(SESSION, 9999, 1, db)
    assert missing.error_code == ErrorCode.CART_ITEM_NOT_FOUND

    cart = (await cart_service.remove_item(SESSION, item_id, db)).data
    assert cart.items == []
    assert cart.subtotal == Decimal("0.00")


async def test_apply_discount_and_totals(db, cart_service, products, discounts):
    empty = await cart_service.apply_discount_code(SESSION, "SAVE10", db)
    assert empty.error_code == ErrorCode.CART_EMPTY

    await add(cart_service, db, products["chair"])
    cart = (await cart_service.apply_discount_code(SESSION, "save10", db)).data

    assert cart.discount_code == "SAVE10"
    assert cart.subtotal == Decimal("500.00")
    assert cart.discount_amount == Decimal("50.00")
    assert cart.total_amount == Decimal("450.00")
    assert cart.coupon_discount_percentage == Decimal("10.00")

    summary = (await cart_service.get_summary(SESSION, db)).data
    assert summary.total == Decimal("450.00")
    assert not summary.is_empty

    cart = (await cart_service.remove_discount_code(SESSION, db)).data
    assert cart.discount_code is None
    assert cart.total_amount == Decimal("500.00")


async def test_minimum_order_not_met(db, cart_service, products, discounts):
    await add(cart_service, db, products["mug"])
    result = await cart_service.apply_discount_code(SESSION, "BIG100", db)
    assert result.error_code == ErrorCode.MINIMUM_ORDER_NOT_MET


async def test_discount_dropped_when_cart_falls_below_minimum(db, cart_service, products, discounts):
    cart = (await add(cart_service, db, products["mug"], quantity=3)).data
    cart = (await cart_service.apply_discount_code(SESSION, "BIG100", db)).data
    assert cart.discount_amount == Decimal("100.00")
    assert cart.total_amount == Decimal("50.00")

    cart = (await cart_service.update_quantity(SESSION, cart.items[0].id, 1, db)).data
    assert cart.discount_code is None
    assert cart.total_amount == Decimal("50.00")


async def test_fixed_discount_follows_subtotal(db, cart_service, products, discounts):
    cart = (await add(cart_service, db, products["mug"], quantity=4)).data
    cart = (await cart_service.apply_discount_code(SESSION, "BIG100", db)).data
    assert cart.total_amount == Decimal("100.00")

    cart = (await cart_service.update_quantity(SESSION, cart.items[0].id, 2, db)).data
    assert cart.discount_amount == Decimal("100.00")
    assert cart.total_amount == Decimal("0.00")


async def test_clear_cart(db, cart_service, products, discounts):
    await add(cart_service, db, products["chair"])
    await cart_service.apply_discount_code(SESSION, "SAVE10", db)

    cart = (await cart_service.clear_cart(SESSION, db)).data
    assert cart.items == []
    assert cart.discount_code is None
    assert (await cart_service.get_item_count(SESSION, db)).data == 0


async def test_item_count(db, cart_service, products):
    assert (await cart_service.get_item_count("nobody", db)).data == 0

    await add(cart_service, db, products["mug"], quantity=3)
    await add(cart_service, db, products["lamp"])
    assert (await cart_service.get_item_count(SESSION, db)).data == 4


async def test_merge_carts(db, cart_service, products):
    await add(cart_service, db, products["mug"], quantity=2, session_id="guest-phone")
    await add(cart_service, db, products["lamp"], color="White", session_id="guest-phone")
    await add(cart_service, db, products["mug"], quantity=1)

    cart = (await cart_service.merge_carts("guest-phone", SESSION, db)).data

    by_product = {i.product_name: i.quantity for i in cart.items}
    assert by_product == {"Coffee Mug": 3, "Desk Lamp": 1}
    assert (await cart_service.get_item_count("guest-phone", db)).data == 0


async def test_merge_unknown_cart(db, cart_service):
    result = await cart_service.merge_carts("missing", SESSION, db)
    assert result.error_code == ErrorCode.CART_NOT_FOUND
