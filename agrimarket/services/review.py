from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select, func

from agrimarket.core.exceptions import ConflictError, NotFoundError
from agrimarket.core.money import CENT
from agrimarket.db.session import paginate
from agrimarket.models.order import Order, OrderItem, OrderStatus
from agrimarket.models.product import Product
from agrimarket.models.review import Review
from agrimarket.models.user import User

logger = structlog.get_logger(__name__)


def average_rating(ratings_sum: int, count: int) -> Decimal:
    """Arithmetic mean rounded half up to two places; 0 for no reviews."""
    if not count:
        return Decimal("0.00")
    return (Decimal(ratings_sum) / Decimal(count)).quantize(CENT, rounding=ROUND_HALF_UP)


def serialize_review(review: Review, buyer: Optional[User] = None) -> dict:
    data = {
        "id": review.id,
        "productId": review.product_id,
        "buyerId": review.buyer_id,
        "orderId": review.order_id,
        "rating": review.rating,
        "comment": review.comment,
        "isVerified": review.is_verified,
        "createdAt": review.created_at,
        "updatedAt": review.updated_at,
    }
    if buyer is not None:
        data["buyer"] = {"id": buyer.id, "name": buyer.name}
    return data


class ReviewService:
    def __init__(self, session: Session):
        self.session = session

    def aggregate(self, product_id: int) -> Tuple[Decimal, int]:
        count, total = self.session.exec(
            select(func.count(Review.id), func.coalesce(func.sum(Review.rating), 0))
            .where(Review.product_id == product_id)
        ).one()
        return average_rating(total, count), count

    def list_for_product(self, product_id: int):
        return self.session.exec(
            select(Review, User)
            .join(User, User.id == Review.buyer_id)
            .where(Review.product_id == product_id)
            .order_by(Review.created_at.desc(), Review.id.desc())
        ).all()

    def list_for_buyer(self, buyer_id: int, page: int = 1, limit: int = 10):
        statement = (
            select(Review)
            .where(Review.buyer_id == buyer_id)
            .order_by(Review.created_at.desc(), Review.id.desc())
        )
        return paginate(self.session, statement, page, limit)

    def _is_verified_purchase(self, buyer_id: int, product_id: int, order_id: Optional[int]) -> bool:
        if order_id is None:
            return False
        match = self.session.exec(
            select(OrderItem.id)
            .join(Order, Order.id == OrderItem.order_id)
            .where(
                Order.id == order_id,
                Order.buyer_id == buyer_id,
                Order.status == OrderStatus.DELIVERED,
                OrderItem.product_id == product_id,
            )
        ).first()
        return match is not None

    def create(self, buyer_id: int, product_id: int, rating: int,
               comment: Optional[str] = None, order_id: Optional[int] = None) -> Review:
        if not self.session.get(Product, product_id):
            raise NotFoundError("Product not found")

        review = Review(
            product_id=product_id,
            buyer_id=buyer_id,
            order_id=order_id,
            rating=rating,
            comment=comment,
            is_verified=self._is_verified_purchase(buyer_id, product_id, order_id),
        )
        self.session.add(review)
        try:
            self.session.commit()
        except IntegrityError:
            # (product_id, buyer_id) is unique in the table
            self.session.rollback()
            raise ConflictError("You have already reviewed this product")
        self.session.refresh(review)
        logger.info("review_created", review_id=review.id, product_id=product_id, verified=review.is_verified)
        return review

    def _get_own(self, buyer_id: int, review_id: int) -> Review:
        review = self.session.get(Review, review_id)
        if not review or review.buyer_id != buyer_id:
            raise NotFoundError("Review not found")
        return review

    def update(self, buyer_id: int, review_id: int, rating: Optional[int] = None,
               comment: Optional[str] = None) -> Review:
        review = self._get_own(buyer_id, review_id)
        if rating is not None:
            review.rating = rating
        if comment is not None:
            review.comment = comment
        review.updated_at = datetime.utcnow()
        self.session.add(review)
        self.session.commit()
        self.session.refresh(review)
        return review

    def delete(self, buyer_id: int, review_id: int) -> None:
        review = self._get_own(buyer_id, review_id)
        self.session.delete(review)
        self.session.commit()
