from datetime import datetime
from typing import Optional
from sqlalchemy import or_
from sqlmodel import Session, select, func

from agrimarket.core.exceptions import ForbiddenError, NotFoundError
from agrimarket.core.money import to_money
from agrimarket.db.session import paginate
from agrimarket.models.order import Order, OrderStatus
from agrimarket.models.product import Product
from agrimarket.models.review import Review
from agrimarket.models.user import User, UserRole, FarmerProfile
from agrimarket.services.review import average_rating

def serialize_profile(profile: FarmerProfile, farmer: User) -> dict:
    return {
        "farmerId": farmer.id,
        "name": farmer.name,
        "email": farmer.email,
        "phone": farmer.phone,
        "address": farmer.address,
        "farmName": profile.farm_name,
        "farmSize": profile.farm_size,
        "farmingExperience": profile.farming_experience,
        "certifications": profile.certifications or [],
        "farmingMethods": profile.farming_methods or [],
        "bio": profile.bio,
    }

class UserService:
    def __init__(self, session: Session):
        self.session = session

    def get_user_by_id(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def list_users(self, page: int = 1, limit: int = 20, role: Optional[UserRole] = None,
                   is_active: Optional[bool] = None, search: Optional[str] = None):
        statement = select(User)
        if role is not None:
            statement = statement.where(User.role == role)
        if is_active is not None:
            statement = statement.where(User.is_active == is_active)
        if search:
            pattern = f"%{search}%"
            statement = statement.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
        statement = statement.order_by(User.created_at.desc(), User.id.desc())
        return paginate(self.session, statement, page, limit)

    def statistics(self, user: User) -> dict:
        """Order and product counters shown on the admin user page."""
        owner = Order.farmer_id if user.role == UserRole.FARMER else Order.buyer_id
        order_count = self.session.exec(select(func.count(Order.id)).where(owner == user.id)).one()
        delivered_total = self.session.exec(
            select(func.coalesce(func.sum(Order.total_price), 0))
            .where(owner == user.id, Order.status == OrderStatus.DELIVERED)
        ).one()
        stats = {"orderCount": order_count, "deliveredValue": to_money(delivered_total)}
        if user.role == UserRole.FARMER:
            stats["productCount"] = self.session.exec(select(func.count(Product.id)).where(Product.farmer_id == user.id)).one()
        return stats

    def list_farmers(self, page: int = 1, limit: int = 20):
        """Active farmers, newest first, with their profile and storefront numbers."""
        statement = (
            select(User, FarmerProfile)
            .join(FarmerProfile, FarmerProfile.farmer_id == User.id, isouter=True)
            .where(User.role == UserRole.FARMER, User.is_active == True)  # noqa: E712
            .order_by(User.created_at.desc(), User.id.desc())
        )
        rows, total = paginate(self.session, statement, page, limit)
        ids = [farmer.id for farmer, _ in rows]

        products = dict(self.session.exec(
            select(Product.farmer_id, func.count(Product.id))
            .where(Product.farmer_id.in_(ids), Product.is_active == True)  # noqa: E712
            .group_by(Product.farmer_id)
        ).all())
        orders = {
            fid: (count, revenue)
            for fid, count, revenue in self.session.exec(
                select(Order.farmer_id, func.count(Order.id), func.sum(Order.total_price))
                .where(Order.farmer_id.in_(ids), Order.status != OrderStatus.CANCELLED)
                .group_by(Order.farmer_id)
            ).all()
        }
        reviews = {
            fid: (count, ratings)
            for fid, count, ratings in self.session.exec(
                select(Product.farmer_id, func.count(Review.id), func.sum(Review.rating))
                .join(Review, Review.product_id == Product.id)
                .where(Product.farmer_id.in_(ids))
                .group_by(Product.farmer_id)
            ).all()
        }

        farmers = []
        for farmer, profile in rows:
            order_count, revenue = orders.get(farmer.id, (0, 0))
            review_count, ratings = reviews.get(farmer.id, (0, 0))
            farmers.append({
                **serialize_profile(profile or FarmerProfile(farmer_id=farmer.id), farmer),
                "createdAt": farmer.created_at,
                "statistics": {
                    "productCount": products.get(farmer.id, 0),
                    "totalOrders": order_count,
                    "totalRevenue": to_money(revenue or 0),
                    "reviewCount": review_count,
                    "averageRating": average_rating(ratings or 0, review_count),
                },
            })
        return farmers, total

    def update_user_status(self, user_id: int, is_active: bool) -> User:
        user = self.get_user_by_id(user_id)
        if user.role == UserRole.ADMIN:
            raise ForbiddenError("Admin accounts cannot be suspended")
        user.is_active = is_active
        user.updated_at = datetime.utcnow()
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    # Farmer profile

    def get_farmer_profile(self, farmer: User) -> FarmerProfile:
        profile = self.session.exec(select(FarmerProfile).where(FarmerProfile.farmer_id == farmer.id)).first()
        if not profile:
            profile = FarmerProfile(farmer_id=farmer.id)
            self.session.add(profile)
            self.session.commit()
            self.session.refresh(profile)
        return profile

    def update_farmer_profile(self, farmer: User, user_fields: dict, profile_fields: dict) -> FarmerProfile:
        profile = self.get_farmer_profile(farmer)
        for key, value in user_fields.items():
            setattr(farmer, key, value)
        for key, value in profile_fields.items():
            setattr(profile, key, value)
        farmer.updated_at = profile.updated_at = datetime.utcnow()
        self.session.add(farmer)
        self.session.add(profile)
        self.session.commit()
        self.session.refresh(profile)
        return profile
