from datetime import datetime
from decimal import Decimal

import structlog
from sqlalchemy import delete
from sqlmodel import Session, select

from agrimarket.core.exceptions import NotFoundError, ValidationError
from agrimarket.core.money import to_money
from agrimarket.models.cart import CartItem
from agrimarket.models.product import Product

logger = structlog.get_logger(__name__)

MAX_LINE_QUANTITY = 100


class CartService:
    def __init__(self, session: Session):
        self.session = session

    def get_cart(self, buyer_id: int) -> dict:
        rows = self.session.exec(
            select(CartItem, Product)
            .join(Product, Product.id == CartItem.product_id)
            .where(CartItem.buyer_id == buyer_id)
            .order_by(CartItem.created_at, CartItem.id)
        ).all()

        items = []
        subtotal = Decimal("0")
        total_quantity = 0
        for item, product in rows:
            available = product.is_active and product.stock >= item.quantity
            line_total = to_money(product.price * item.quantity)
            if available:
                subtotal += line_total
                total_quantity += item.quantity
            items.append({
                "id": item.id,
                "productId": product.id,
                "quantity": item.quantity,
                "available": available,
                "lineTotal": line_total,
                "product": {
                    "id": product.id,
                    "title": product.title,
                    "price": product.price,
                    "unit": product.unit,
                    "stock": product.stock,
                    "isActive": product.is_active,
                    "farmerId": product.farmer_id,
                    "photos": product.photos or [],
                },
            })

        return {
            "items": items,
            "summary": {
                "itemCount": len(items),
                "totalQuantity": total_quantity,
                "subtotal": to_money(subtotal),
            },
        }

    def _get_line(self, buyer_id: int, product_id: int):
        return self.session.exec(
            select(CartItem).where(CartItem.buyer_id == buyer_id, CartItem.product_id == product_id)
        ).first()

    def _active_product(self, product_id: int) -> Product:
        product = self.session.get(Product, product_id)
        if not product or not product.is_active:
            raise NotFoundError("Product not found or unavailable")
        return product

    def add_item(self, buyer_id: int, product_id: int, quantity: int) -> CartItem:
        product = self._active_product(product_id)
        item = self._get_line(buyer_id, product_id)
        new_quantity = quantity + (item.quantity if item else 0)

        if new_quantity > MAX_LINE_QUANTITY:
            raise ValidationError(f"Cannot hold more than {MAX_LINE_QUANTITY} of one product", field="quantity")
        if new_quantity > product.stock:
            raise ValidationError(f"Only {product.stock} {product.unit} available", field="quantity")

        if item:
            item.quantity = new_quantity
            item.updated_at = datetime.utcnow()
        else:
            item = CartItem(buyer_id=buyer_id, product_id=product_id, quantity=quantity)
        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        return item

    def update_item(self, buyer_id: int, product_id: int, quantity: int):
        item = self._get_line(buyer_id, product_id)
        if not item:
            raise NotFoundError("Item not found in cart")

        if quantity == 0:
            self.session.delete(item)
            self.session.commit()
            return None

        product = self._active_product(product_id)
        if quantity > product.stock:
            raise ValidationError(f"Only {product.stock} {product.unit} available", field="quantity")

        item.quantity = quantity
        item.updated_at = datetime.utcnow()
        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        return item

    def remove_item(self, buyer_id: int, product_id: int) -> None:
        item = self._get_line(buyer_id, product_id)
        if not item:
            raise NotFoundError("Item not found in cart")
        self.session.delete(item)
        self.session.commit()

    def clear(self, buyer_id: int) -> int:
        result = self.session.exec(delete(CartItem).where(CartItem.buyer_id == buyer_id))
        self.session.commit()
        logger.debug("cart_cleared", buyer_id=buyer_id, removed=result.rowcount)
        return result.rowcount
