import pytest
from sqlalchemy import select

from foody.core.exceptions import ValidationError
from foody.models import CartItem, DiscountType, Order, OrderStatus, Product
from foody.services.cart import CartLine, CartProduct, MemoryCartStore, SqlCartStore
from foody.services.checkout import CheckoutConverter, calculate_order_totals


def line(product_id, price, quantity, name="Item"):
    return CartLine(product=CartProduct(id=product_id, name=name, price=price), quantity=quantity)


def test_totals():
    totals = calculate_order_totals([line(1, 250.0, 2), line(2, 120.0, 1)], tax_rate=0.05)
    assert totals.subtotal == 620.0
    assert totals.tax == 31.0
    assert totals.total == 651.0
    assert totals.tax_rate == 0.05


def test_tax_rounds_half_up_to_cents():
    totals = calculate_order_totals([line(1, 10.5, 1)], tax_rate=0.05)
    # 0.525 rounds up
    assert totals.tax == 0.53
    assert round(totals.total, 2) == 11.03


@pytest.mark.parametrize("cents", [78, 92, 134, 162, 1010, 1999, 4545, 12345])
@pytest.mark.parametrize("quantity", [1, 3])
def test_total_is_exactly_subtotal_plus_tax(cents, quantity):
    totals = calculate_order_totals([line(1, cents / 100, quantity)], tax_rate=0.05)
    assert totals.total == totals.subtotal + totals.tax


def test_total_invariant_across_price_range():
    for cents in range(1, 5000, 7):
        lines = [line(1, cents / 100, 1), line(2, (cents + 13) / 100, 2)]
        totals = calculate_order_totals(lines, tax_rate=0.13)
        assert totals.total == totals.subtotal + totals.tax, cents


def test_snapshot_rejects_zero_quantity():
    with pytest.raises(ValidationError):
        CheckoutConverter.snapshot([line(1, 100.0, 0)])


async def test_empty_cart(session):
    with pytest.raises(ValidationError) as exc_info:
        await CheckoutConverter(session, MemoryCartStore()).place_order(7)
    assert exc_info.value.message == "Cart is empty"


async def test_place_order_snapshots_cart(session, make_product):
    momo = await make_product(name="Chicken Momo", price=250.0)
    lassi = await make_product(name="Mango Lassi", price=120.0, image="lassi.jpg")

    cart = MemoryCartStore()
    cart.add(7, CartProduct(id=momo.id, name=momo.name, price=momo.price, image=momo.image), 2)
    cart.add(7, CartProduct(id=lassi.id, name=lassi.name, price=lassi.price, image=lassi.image), 1)

    order = await CheckoutConverter(session, cart).place_order(7, table_number=" 12 ", notes="no onion")

    assert order.status == OrderStatus.PENDING
    assert order.user_id == 7
    assert order.table_number == "12"
    assert order.is_paid is False
    assert (order.subtotal, order.tax, order.total, order.tax_rate) == (620.0, 31.0, 651.0, 0.05)
    assert [(i.position, i.name, i.price, i.quantity) for i in order.items] == [
        (0, "Chicken Momo", 250.0, 2),
        (1, "Mango Lassi", 120.0, 1),
    ]
    assert order.items[1].image == "lassi.jpg"

    # the converter leaves the cart alone
    assert len(await cart.get_populated(7)) == 2


async def test_items_survive_product_changes(session, make_product):
    momo = await make_product(price=250.0)
    cart = MemoryCartStore()
    cart.add(7, CartProduct(id=momo.id, name=momo.name, price=momo.price), 1)
    order = await CheckoutConverter(session, cart).place_order(7)

    product = await session.get(Product, momo.id)
    product.price = 400.0
    product.name = "Buff Momo"
    await session.commit()

    stored = await session.get(Order, order.id, populate_existing=True)
    assert stored.items[0].price == 250.0
    assert stored.items[0].name == "Chicken Momo"
    assert stored.subtotal == 250.0


async def test_checkout_charges_list_price(session, make_product):
    pizza = await make_product(
        name="Pizza", price=1000.0, discount_type=DiscountType.PERCENTAGE, discount_value=20
    )
    session.add(CartItem(user_id=7, product_id=pizza.id, quantity=1))
    await session.commit()

    cart = SqlCartStore(session)
    order = await CheckoutConverter(session, cart).place_order(7)
    assert order.subtotal == 1000.0


async def test_sql_cart_store(session, make_product):
    momo = await make_product(name="Momo", price=250.0)
    soup = await make_product(name="Thukpa", price=180.0, is_veg=True)
    session.add_all([
        CartItem(user_id=7, product_id=momo.id, quantity=3),
        CartItem(user_id=7, product_id=soup.id, quantity=1),
        CartItem(user_id=8, product_id=soup.id, quantity=2),
    ])
    await session.commit()

    cart = SqlCartStore(session)
    lines = await cart.get_populated(7)
    assert [(line.product.name, line.quantity) for line in lines] == [("Momo", 3), ("Thukpa", 1)]
    assert lines[1].product.is_veg is True

    await cart.clear(7)
    assert await cart.get_populated(7) == []
    remaining = (await session.execute(select(CartItem))).scalars().all()
    assert [(c.user_id, c.quantity) for c in remaining] == [(8, 2)]


async def test_stored_totals_keep_the_invariant(session, make_product):
    chai = await make_product(name="Masala Chai", price=1.62)
    cart = MemoryCartStore()
    cart.add(7, CartProduct(id=chai.id, name=chai.name, price=chai.price), 1)
    order = await CheckoutConverter(session, cart).place_order(7)

    stored = await session.get(Order, order.id, populate_existing=True)
    assert (stored.subtotal, stored.tax) == (1.62, 0.08)
    assert stored.total == stored.subtotal + stored.tax
