from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from agrimarket.models.product import Product
from agrimarket.services.catalog import CatalogService

from conftest import make_product


class TestStoreConstraints:
    def test_stock_cannot_go_negative(self, session, farmer):
        product = make_product(session, farmer, stock=2)

        with pytest.raises(IntegrityError):
            session.exec(update(Product).where(Product.id == product.id).values(stock=-1))
            session.commit()
        session.rollback()

        assert session.get(Product, product.id).stock == 2

    def test_price_must_be_positive(self, session, farmer):
        session.add(Product(farmer_id=farmer.id, title="Gift", category="misc", price=Decimal("0.00"), stock=1))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()


class TestUpdate:
    def test_partial_update_keeps_other_fields(self, session, farmer):
        product = make_product(session, farmer, price="4.99", stock=7)

        CatalogService(session).update(farmer.id, product.id, price=Decimal("5.25"))

        refreshed = session.get(Product, product.id)
        assert (refreshed.price, refreshed.stock) == (Decimal("5.25"), 7)

    def test_timestamps_are_naive_utc(self, session, farmer):
        product = make_product(session, farmer)

        assert product.created_at.tzinfo is None
        assert abs(datetime.utcnow() - product.created_at) < timedelta(minutes=1)
