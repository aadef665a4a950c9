from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import or_
from sqlmodel import Session, select, func

from agrimarket.core.config import settings
from agrimarket.core.exceptions import NotFoundError, ValidationError
from agrimarket.db.session import paginate
from agrimarket.models.product import Product
from agrimarket.models.user import User, FarmerProfile
from agrimarket.services.review import ReviewService, serialize_review

logger = structlog.get_logger(__name__)

SORT_COLUMNS = {
    "price": Product.price,
    "created_at": Product.created_at,
    "createdAt": Product.created_at,
    "title": Product.title,
}


def serialize_product(product: Product, farmer: Optional[User] = None) -> dict:
    data = {
        "id": product.id,
        "farmerId": product.farmer_id,
        "title": product.title,
        "description": product.description,
        "price": product.price,
        "stock": product.stock,
        "category": product.category,
        "unit": product.unit,
        "isOrganic": product.is_organic,
        "harvestDate": product.harvest_date,
        "expiryDate": product.expiry_date,
        "photos": product.photos or [],
        "isActive": product.is_active,
        "createdAt": product.created_at,
        "updatedAt": product.updated_at,
    }
    if farmer is not None:
        data["farmer"] = {"id": farmer.id, "name": farmer.name, "phone": farmer.phone}
    return data


class CatalogService:
    def __init__(self, session: Session):
        self.session = session

    # Public catalog

    def search(self, page: int = 1, limit: int = 12, search: Optional[str] = None,
               category: Optional[str] = None, min_price: Optional[Decimal] = None,
               max_price: Optional[Decimal] = None, is_organic: Optional[bool] = None,
               in_stock: Optional[bool] = None, sort_by: str = "created_at", sort_order: str = "desc"):
        if sort_by not in SORT_COLUMNS:
            raise ValidationError(f"Cannot sort by '{sort_by}'", field="sortBy")
        if sort_order not in ("asc", "desc"):
            raise ValidationError("sortOrder must be 'asc' or 'desc'", field="sortOrder")
        if min_price is not None and max_price is not None and min_price > max_price:
            raise ValidationError("minPrice cannot exceed maxPrice", field="minPrice")

        statement = (
            select(Product, User)
            .join(User, User.id == Product.farmer_id)
            .where(Product.is_active == True)  # noqa: E712
        )
        if search:
            pattern = f"%{search}%"
            statement = statement.where(or_(Product.title.ilike(pattern), Product.description.ilike(pattern)))
        if category:
            statement = statement.where(Product.category == category)
        if min_price is not None:
            statement = statement.where(Product.price >= min_price)
        if max_price is not None:
            statement = statement.where(Product.price <= max_price)
        if is_organic is not None:
            statement = statement.where(Product.is_organic == is_organic)
        if in_stock:
            statement = statement.where(Product.stock > 0)

        column = SORT_COLUMNS[sort_by]
        statement = statement.order_by(column.asc() if sort_order == "asc" else column.desc(), Product.id)
        return paginate(self.session, statement, page, limit)

    def get_public(self, product_id: int) -> dict:
        row = self.session.exec(
            select(Product, User).join(User, User.id == Product.farmer_id).where(Product.id == product_id)
        ).first()
        if not row or not row[0].is_active:
            raise NotFoundError("Product not found")
        product, farmer = row

        reviews = ReviewService(self.session)
        average, count = reviews.aggregate(product.id)
        profile = self.session.exec(select(FarmerProfile).where(FarmerProfile.farmer_id == farmer.id)).first()

        data = serialize_product(product, farmer)
        if profile:
            data["farmer"]["farmName"] = profile.farm_name
        data["averageRating"] = average
        data["reviewCount"] = count
        data["reviews"] = [serialize_review(r, buyer) for r, buyer in reviews.list_for_product(product.id)]
        return data

    # Farmer inventory

    def list_for_farmer(self, farmer_id: int, page: int = 1, limit: int = 10,
                        is_active: Optional[bool] = None, category: Optional[str] = None,
                        low_stock: bool = False):
        statement = select(Product).where(Product.farmer_id == farmer_id)
        if is_active is not None:
            statement = statement.where(Product.is_active == is_active)
        if category:
            statement = statement.where(Product.category == category)
        if low_stock:
            statement = statement.where(Product.stock <= settings.LOW_STOCK_THRESHOLD)
        statement = statement.order_by(Product.created_at.desc(), Product.id.desc())
        return paginate(self.session, statement, page, limit)

    def get_for_farmer(self, farmer_id: int, product_id: int) -> Product:
        product = self.session.get(Product, product_id)
        if not product or product.farmer_id != farmer_id:
            raise NotFoundError("Product not found")
        return product

    def _check_dates(self, harvest_date: Optional[date], expiry_date: Optional[date]):
        if harvest_date and expiry_date and expiry_date < harvest_date:
            raise ValidationError("Expiry date cannot be before harvest date", field="expiryDate")

    def create(self, farmer_id: int, **fields) -> Product:
        self._check_dates(fields.get("harvest_date"), fields.get("expiry_date"))
        product = Product(farmer_id=farmer_id, **fields)
        self.session.add(product)
        self.session.commit()
        self.session.refresh(product)
        logger.info("product_created", product_id=product.id, farmer_id=farmer_id)
        return product

    def update(self, farmer_id: int, product_id: int, **fields) -> Product:
        product = self.get_for_farmer(farmer_id, product_id)
        for key, value in fields.items():
            setattr(product, key, value)
        self._check_dates(product.harvest_date, product.expiry_date)
        product.updated_at = datetime.utcnow()
        self.session.add(product)
        self.session.commit()
        self.session.refresh(product)
        return product

    def deactivate(self, farmer_id: int, product_id: int) -> Product:
        # Products are never hard-deleted; carts and orders still reference them
        return self.update(farmer_id, product_id, is_active=False)

    def low_stock(self, farmer_id: int, threshold: Optional[int] = None) -> List[Product]:
        limit = settings.LOW_STOCK_THRESHOLD if threshold is None else threshold
        return self.session.exec(
            select(Product)
            .where(Product.farmer_id == farmer_id, Product.is_active == True, Product.stock <= limit)  # noqa: E712
            .order_by(Product.stock.asc(), Product.id)
        ).all()

    def set_stock(self, farmer_id: int, product_id: int, stock: int) -> Product:
        if stock < 0:
            raise ValidationError("Stock cannot be negative", field="stock")
        return self.update(farmer_id, product_id, stock=stock)

    # Admin moderation

    def list_all(self, page: int = 1, limit: int = 20, is_active: Optional[bool] = None,
                 category: Optional[str] = None, search: Optional[str] = None):
        statement = select(Product, User).join(User, User.id == Product.farmer_id)
        if is_active is not None:
            statement = statement.where(Product.is_active == is_active)
        if category:
            statement = statement.where(Product.category == category)
        if search:
            statement = statement.where(Product.title.ilike(f"%{search}%"))
        statement = statement.order_by(Product.created_at.desc(), Product.id.desc())
        return paginate(self.session, statement, page, limit)

    def get_any(self, product_id: int) -> Product:
        product = self.session.get(Product, product_id)
        if not product:
            raise NotFoundError("Product not found")
        return product

    def set_active(self, product_id: int, is_active: bool) -> Product:
        product = self.get_any(product_id)
        product.is_active = is_active
        product.updated_at = datetime.utcnow()
        self.session.add(product)
        self.session.commit()
        self.session.refresh(product)
        return product

    def categories(self) -> List[str]:
        return self.session.exec(
            select(Product.category).where(Product.is_active == True).distinct().order_by(Product.category)  # noqa: E712
        ).all()

    def count_for_farmer(self, farmer_id: int) -> int:
        return self.session.exec(select(func.count(Product.id)).where(Product.farmer_id == farmer_id)).one()
