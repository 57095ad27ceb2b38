"""
Dashboard statistics and chart series.

Read-only views over the product register and the stock ledger. Figures
are a point-in-time snapshot and are not coordinated with in-flight stock
mutations.
"""

from datetime import datetime, time, timedelta

from sqlalchemy import and_, func, select

from models import STOCK_IN, STOCK_OUT, Category, LedgerEntry, Product, Supplier, active

# Trailing window of the stock movement chart, today included
CHART_DAYS = 30
TOP_PRODUCTS = 10


def _low_stock():
    return and_(Product.min_stock > 0, Product.current_stock <= Product.min_stock)


class Dashboard:

    def __init__(self, session, clock=datetime.now):
        self.session = session
        self.clock = clock

    def stats(self):
        """Headline counts, stock valuation and today's movement."""
        s = self.session
        today_start = datetime.combine(self.clock().date(), time.min)
        today_end = today_start + timedelta(days=1)
        today = and_(LedgerEntry.created_at >= today_start, LedgerEntry.created_at < today_end)

        moved = dict(s.execute(
            select(LedgerEntry.kind, func.sum(LedgerEntry.quantity))
            .where(today, LedgerEntry.kind.in_((STOCK_IN, STOCK_OUT)))
            .group_by(LedgerEntry.kind)
        ).all())

        return {
            'total_products': s.scalar(select(func.count(Product.id)).where(active(Product))),
            'total_categories': s.scalar(select(func.count(Category.id)).where(active(Category))),
            'total_suppliers': s.scalar(select(func.count(Supplier.id)).where(active(Supplier))),
            'total_stock_value': float(s.scalar(
                select(func.coalesce(func.sum(Product.current_stock * Product.cost_price), 0.0))
                .where(active(Product))
            )),
            'low_stock_count': s.scalar(
                select(func.count(Product.id)).where(active(Product), _low_stock())
            ),
            'today_stock_in': int(moved.get(STOCK_IN) or 0),
            'today_stock_out': int(moved.get(STOCK_OUT) or 0),
            'today_records': s.scalar(select(func.count(LedgerEntry.id)).where(today)),
        }

    def chart_data(self):
        """
        Series for the dashboard charts.

        ``stock_movement`` always holds CHART_DAYS rows, oldest first, with
        zeroes on days without movement.
        """
        return {
            'stock_movement': self.stock_movement(),
            'top_products': self.top_products(),
            'category_stats': self.category_stats(),
        }

    def stock_movement(self, days=CHART_DAYS):
        today = self.clock().date()
        window = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
        start = datetime.combine(window[0], time.min)
        end = datetime.combine(today + timedelta(days=1), time.min)

        day = func.date(LedgerEntry.created_at)
        rows = self.session.execute(
            select(day, LedgerEntry.kind, func.sum(LedgerEntry.quantity))
            .where(LedgerEntry.created_at >= start, LedgerEntry.created_at < end,
                   LedgerEntry.kind.in_((STOCK_IN, STOCK_OUT)))
            .group_by(day, LedgerEntry.kind)
        ).all()
        # SQLite hands back 'YYYY-MM-DD' strings, other backends date objects
        totals = {(str(d), kind): int(qty or 0) for d, kind, qty in rows}

        return [
            {
                'date': d.isoformat(),
                'stock_in': totals.get((d.isoformat(), STOCK_IN), 0),
                'stock_out': totals.get((d.isoformat(), STOCK_OUT), 0),
            }
            for d in window
        ]

    def top_products(self, limit=TOP_PRODUCTS):
        products = self.session.scalars(
            select(Product)
            .where(active(Product))
            .order_by((Product.current_stock * Product.cost_price).desc(), Product.id)
            .limit(limit)
        ).all()
        return [{'name': p.name, 'value': p.stock_value} for p in products]

    def category_stats(self):
        rows = self.session.execute(
            select(Category.name, func.count(Product.id))
            .outerjoin(Product, and_(Product.category_id == Category.id, active(Product)))
            .where(active(Category))
            .group_by(Category.id, Category.name, Category.sort_order)
            .order_by(Category.sort_order, Category.id)
        ).all()
        return [{'name': name, 'count': count} for name, count in rows]

    def low_stock_products(self, limit):
        """Active products at or under their minimum, emptiest first."""
        return self.session.scalars(
            select(Product)
            .where(active(Product), _low_stock())
            .order_by(Product.current_stock, Product.id)
            .limit(limit)
        ).all()
