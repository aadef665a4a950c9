"""Time-bucketed aggregates for the admin and farmer dashboards.

Rows are fetched for the window and grouped in Python; the windows are small
(at most a year of orders) and bucket keys are plain strings so every SQL
dialect behaves the same.
"""

from collections import OrderedDict, defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional

import structlog
from sqlmodel import Session, select, func

from agrimarket.core.exceptions import ValidationError
from agrimarket.core.money import to_money
from agrimarket.models.dispute import Dispute, DisputeStatus
from agrimarket.models.order import Order, OrderItem, OrderStatus
from agrimarket.models.product import Product
from agrimarket.models.review import Review
from agrimarket.models.user import User, UserRole
from agrimarket.services.review import average_rating

logger = structlog.get_logger(__name__)

PERIOD_DAYS = {"week": 7, "month": 30, "year": 365}
ANALYTICS_TYPES = ("overview", "sales", "products")
MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
ZERO = Decimal("0.00")


def window_start(period: str, now: Optional[datetime] = None) -> datetime:
    if period not in PERIOD_DAYS:
        raise ValidationError(f"Unknown period '{period}'", field="period")
    return (now or datetime.utcnow()) - timedelta(days=PERIOD_DAYS[period])


def bucket_key(moment: datetime, period: str) -> str:
    """Daily buckets for week and month, monthly buckets for year."""
    return moment.strftime("%Y-%m") if period == "year" else moment.strftime("%Y-%m-%d")


def _money_map(values: Dict[str, Decimal]) -> Dict[str, Decimal]:
    return OrderedDict((key, to_money(value)) for key, value in sorted(values.items()))


class AnalyticsService:
    def __init__(self, session: Session):
        self.session = session

    def platform_analytics(self, period: str = "month", type: str = "overview",
                           now: Optional[datetime] = None) -> dict:
        if type not in ANALYTICS_TYPES:
            raise ValidationError(f"Unknown analytics type '{type}'", field="type")
        start = window_start(period, now)

        if type == "overview":
            data = self._overview(start, period)
        elif type == "sales":
            data = self._sales(start, period)
        else:
            data = self._products()
        return {"period": period, "type": type, "startDate": start, **data}

    def _overview(self, start: datetime, period: str) -> dict:
        users = self.session.exec(
            select(User.role, User.created_at).where(User.created_at >= start, User.role != UserRole.ADMIN)
        ).all()
        user_growth: Dict[str, Dict[str, int]] = defaultdict(lambda: {"farmers": 0, "buyers": 0})
        for role, created_at in users:
            user_growth[bucket_key(created_at, period)]["farmers" if role == UserRole.FARMER else "buyers"] += 1

        orders = self.session.exec(
            select(Order.created_at, Order.total_price).where(Order.created_at >= start)
        ).all()
        order_trends: Dict[str, dict] = defaultdict(lambda: {"count": 0, "revenue": ZERO})
        for created_at, total in orders:
            bucket = order_trends[bucket_key(created_at, period)]
            bucket["count"] += 1
            bucket["revenue"] += total

        return {
            "userGrowth": OrderedDict(sorted(user_growth.items())),
            "orderTrends": OrderedDict(
                (key, {"count": v["count"], "revenue": to_money(v["revenue"])})
                for key, v in sorted(order_trends.items())
            ),
        }

    def _sales(self, start: datetime, period: str) -> dict:
        rows = self.session.exec(
            select(Order.created_at, Order.total_price, Order.commission_amount, Order.farmer_id, User.name)
            .join(User, User.id == Order.farmer_id)
            .where(Order.status == OrderStatus.DELIVERED, Order.created_at >= start)
        ).all()

        revenue: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        commission: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        farmers: Dict[int, dict] = {}
        for created_at, total, fee, farmer_id, farmer_name in rows:
            key = bucket_key(created_at, period)
            revenue[key] += total
            commission[key] += fee
            farmer = farmers.setdefault(farmer_id, {"farmerId": farmer_id, "name": farmer_name, "revenue": ZERO, "orders": 0})
            farmer["revenue"] += total
            farmer["orders"] += 1

        top_farmers = sorted(farmers.values(), key=lambda f: (-f["revenue"], f["farmerId"]))[:10]
        for farmer in top_farmers:
            farmer["revenue"] = to_money(farmer["revenue"])

        return {
            "revenueByPeriod": _money_map(revenue),
            "commissionByPeriod": _money_map(commission),
            "topFarmers": top_farmers,
            "totalRevenue": to_money(sum(revenue.values(), ZERO)),
            "totalCommission": to_money(sum(commission.values(), ZERO)),
        }

    def _products(self) -> dict:
        products = self.session.exec(
            select(Product.category, Product.is_organic).where(Product.is_active == True)  # noqa: E712
        ).all()
        categories: Dict[str, int] = defaultdict(int)
        organic = conventional = 0
        for category, is_organic in products:
            categories[category] += 1
            if is_organic:
                organic += 1
            else:
                conventional += 1

        reviewed = self.session.exec(
            select(Product.id, Product.title, func.count(Review.id), func.sum(Review.rating))
            .join(Review, Review.product_id == Product.id)
            .group_by(Product.id, Product.title)
            .order_by(func.count(Review.id).desc(), Product.id)
            .limit(10)
        ).all()

        return {
            "categoryDistribution": OrderedDict(sorted(categories.items())),
            "organicVsConventional": {"organic": organic, "conventional": conventional},
            "topRatedProducts": [
                {
                    "productId": product_id,
                    "title": title,
                    "reviewCount": count,
                    "averageRating": average_rating(total, count),
                }
                for product_id, title, count, total in reviewed
            ],
        }

    def seasonal(self, category: Optional[str] = None, now: Optional[datetime] = None) -> dict:
        start = (now or datetime.utcnow()) - timedelta(days=365)
        statement = (
            select(Order.created_at, OrderItem.quantity, Product.category)
            .join(OrderItem, OrderItem.order_id == Order.id)
            .join(Product, Product.id == OrderItem.product_id)
            .where(Order.status == OrderStatus.DELIVERED, Order.created_at >= start)
        )
        if category:
            statement = statement.where(Product.category == category)

        monthly: Dict[str, Dict[str, dict]] = defaultdict(
            lambda: {m: {"quantity": 0, "orders": 0} for m in MONTH_NAMES}
        )
        for created_at, quantity, item_category in self.session.exec(statement).all():
            bucket = monthly[item_category][MONTH_NAMES[created_at.month - 1]]
            bucket["quantity"] += quantity
            bucket["orders"] += 1

        trends = OrderedDict()
        for item_category, months in sorted(monthly.items()):
            total = sum(m["quantity"] for m in months.values())
            average = Decimal(total) / 12
            peak = [name for name, m in months.items() if m["quantity"] > average * Decimal("1.2")]
            low = [name for name, m in months.items() if m["quantity"] < average * Decimal("0.8")]
            trends[item_category] = {
                "monthlyData": [{"month": name, **m} for name, m in months.items()],
                "averageMonthlyQuantity": to_money(average),
                "peakMonths": peak,
                "lowMonths": low,
                "seasonality": "High" if peak else "Low" if low else "Stable",
            }
        return {"trends": trends, "category": category}

    def commission_report(self, period: str = "month", farmer_id: Optional[int] = None,
                          now: Optional[datetime] = None) -> dict:
        start = window_start(period, now)
        statement = (
            select(Order.total_price, Order.commission_amount, User.id, User.name, User.email)
            .join(User, User.id == Order.farmer_id)
            .where(Order.status == OrderStatus.DELIVERED, Order.created_at >= start)
        )
        if farmer_id is not None:
            statement = statement.where(Order.farmer_id == farmer_id)

        by_farmer: Dict[int, dict] = {}
        total_revenue = total_commission = ZERO
        for revenue, commission, fid, name, email in self.session.exec(statement).all():
            entry = by_farmer.setdefault(fid, {
                "farmer": {"id": fid, "name": name, "email": email},
                "totalRevenue": ZERO,
                "totalCommission": ZERO,
                "orderCount": 0,
            })
            entry["totalRevenue"] += revenue
            entry["totalCommission"] += commission
            entry["orderCount"] += 1
            total_revenue += revenue
            total_commission += commission

        commission_data = sorted(by_farmer.values(), key=lambda e: (-e["totalCommission"], e["farmer"]["id"]))
        for entry in commission_data:
            entry["totalRevenue"] = to_money(entry["totalRevenue"])
            entry["totalCommission"] = to_money(entry["totalCommission"])

        rate = to_money(total_commission / total_revenue * 100) if total_revenue else ZERO
        return {
            "commissionData": commission_data,
            "summary": {
                "totalRevenue": to_money(total_revenue),
                "totalCommission": to_money(total_commission),
                "commissionRate": rate,
                "period": period,
            },
        }

    def dashboard(self, now: Optional[datetime] = None) -> dict:
        since = (now or datetime.utcnow()) - timedelta(days=30)

        users = self.session.exec(
            select(User.role, User.is_active, User.created_at).where(User.role != UserRole.ADMIN)
        ).all()
        products = self.session.exec(select(Product.is_active, Product.created_at)).all()
        orders = self.session.exec(
            select(Order.status, Order.total_price, Order.commission_amount, Order.created_at)
        ).all()
        pending_disputes = self.session.exec(
            select(func.count(Dispute.id)).where(Dispute.status.in_([DisputeStatus.OPEN, DisputeStatus.IN_PROGRESS]))
        ).one()

        status_counts = {s.value: 0 for s in OrderStatus}
        for status, *_ in orders:
            status_counts[status.value] += 1

        return {
            "userStats": {
                "total": len(users),
                "active": sum(1 for _, active, _ in users if active),
                "farmers": sum(1 for role, _, _ in users if role == UserRole.FARMER),
                "buyers": sum(1 for role, _, _ in users if role == UserRole.BUYER),
                "newThisMonth": sum(1 for _, _, created in users if created >= since),
            },
            "productStats": {
                "total": len(products),
                "active": sum(1 for active, _ in products if active),
                "newThisMonth": sum(1 for _, created in products if created >= since),
            },
            "orderStats": {
                "total": len(orders),
                "thisMonth": sum(1 for *_, created in orders if created >= since),
                "byStatus": status_counts,
                "totalRevenue": to_money(sum((o[1] for o in orders), ZERO)),
                "totalCommission": to_money(sum((o[2] for o in orders), ZERO)),
            },
            "pendingDisputes": pending_disputes,
        }

    def farmer_sales(self, farmer_id: int, period: str = "month", now: Optional[datetime] = None) -> dict:
        start = window_start(period, now)
        orders = self.session.exec(
            select(Order.status, Order.total_price, Order.commission_amount, Order.created_at)
            .where(Order.farmer_id == farmer_id, Order.created_at >= start)
        ).all()

        sales: Dict[str, dict] = defaultdict(lambda: {"revenue": ZERO, "commission": ZERO, "orders": 0})
        status_counts = {s.value: 0 for s in OrderStatus}
        for status, total, commission, created_at in orders:
            status_counts[status.value] += 1
            if status == OrderStatus.CANCELLED:
                continue
            bucket = sales[bucket_key(created_at, period)]
            bucket["revenue"] += total
            bucket["commission"] += commission
            bucket["orders"] += 1

        top_products = self.session.exec(
            select(Product.id, Product.title, func.sum(OrderItem.quantity), func.sum(OrderItem.total_price))
            .join(OrderItem, OrderItem.product_id == Product.id)
            .join(Order, Order.id == OrderItem.order_id)
            .where(
                Order.farmer_id == farmer_id,
                Order.created_at >= start,
                Order.status != OrderStatus.CANCELLED,
            )
            .group_by(Product.id, Product.title)
            .order_by(func.sum(OrderItem.quantity).desc(), Product.id)
            .limit(10)
        ).all()

        revenue = sum((b["revenue"] for b in sales.values()), ZERO)
        commission = sum((b["commission"] for b in sales.values()), ZERO)
        return {
            "period": period,
            "salesData": OrderedDict(
                (key, {"revenue": to_money(v["revenue"]), "commission": to_money(v["commission"]), "orders": v["orders"]})
                for key, v in sorted(sales.items())
            ),
            "orderStats": {"total": len(orders), "byStatus": status_counts},
            "totalRevenue": to_money(revenue),
            "totalCommission": to_money(commission),
            "netEarnings": to_money(revenue - commission),
            "topProducts": [
                {"productId": pid, "title": title, "quantitySold": qty or 0, "revenue": to_money(rev or 0)}
                for pid, title, qty, rev in top_products
            ],
        }
