import threading

import pytest
from sqlmodel import Session, create_engine, select

import agrimarket.services.checkout as checkout_module
from agrimarket.core.exceptions import ConflictError, InsufficientStockError
from agrimarket.db.session import create_db_and_tables
from agrimarket.models.cart import CartItem
from agrimarket.models.order import Order
from agrimarket.models.product import Product
from agrimarket.models.user import UserRole
from agrimarket.services.checkout import CheckoutService

from conftest import add_to_cart, make_product, make_user

ADDRESS = "14 Harvest Lane, Ludhiana 141001"


@pytest.fixture()
def file_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'market.db'}", connect_args={"check_same_thread": False})
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def rendezvous(monkeypatch):
    """Hold every checkout right after it has read the cart until all of them have."""
    def install(parties):
        barrier = threading.Barrier(parties, timeout=10)
        original = checkout_module.partition_by_farmer

        def partition(rows):
            barrier.wait()
            return original(rows)

        monkeypatch.setattr(checkout_module, "partition_by_farmer", partition)
    return install


def run_checkouts(engine, buyer_ids):
    outcomes = [None] * len(buyer_ids)

    def worker(index, buyer_id):
        with Session(engine) as session:
            try:
                outcomes[index] = CheckoutService(session).checkout(buyer_id, ADDRESS)
            except Exception as e:
                outcomes[index] = e

    threads = [threading.Thread(target=worker, args=(i, b)) for i, b in enumerate(buyer_ids)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


def test_double_submit_places_the_cart_once(file_engine, rendezvous):
    with Session(file_engine) as session:
        farmer = make_user(session, UserRole.FARMER)
        buyer = make_user(session, UserRole.BUYER)
        product = make_product(session, farmer, stock=10)
        add_to_cart(session, buyer, product, 2)
        buyer_id, product_id = buyer.id, product.id

    rendezvous(2)
    outcomes = run_checkouts(file_engine, [buyer_id, buyer_id])

    placed = [o for o in outcomes if isinstance(o, dict)]
    rejected = [o for o in outcomes if isinstance(o, ConflictError)]
    assert (len(placed), len(rejected)) == (1, 1)

    with Session(file_engine) as session:
        assert len(session.exec(select(Order).where(Order.buyer_id == buyer_id)).all()) == 1
        assert session.get(Product, product_id).stock == 8
        assert session.exec(select(CartItem).where(CartItem.buyer_id == buyer_id)).all() == []


def test_parallel_buyers_cannot_oversell(file_engine, rendezvous):
    with Session(file_engine) as session:
        farmer = make_user(session, UserRole.FARMER)
        buyers = [make_user(session, UserRole.BUYER) for _ in range(2)]
        product = make_product(session, farmer, stock=3)
        for buyer in buyers:
            add_to_cart(session, buyer, product, 2)
        buyer_ids, product_id = [b.id for b in buyers], product.id

    rendezvous(2)
    outcomes = run_checkouts(file_engine, buyer_ids)

    assert sum(isinstance(o, dict) for o in outcomes) == 1
    assert sum(isinstance(o, InsufficientStockError) for o in outcomes) == 1

    with Session(file_engine) as session:
        assert len(session.exec(select(Order)).all()) == 1
        assert session.get(Product, product_id).stock == 1
