"""
Stock mutation engine and ledger queries.

All writes to ``Product.current_stock`` go through ``StockLedger``. Each
mutation is one transaction: lock the product row, read the current
quantity, check the guard, write the new quantity, append the ledger entry,
commit. The lock is taken before the read so the insufficient-stock guard
always sees the latest committed quantity.
"""

import logging
import math
from collections import namedtuple
from datetime import datetime, time, timedelta

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from errors import InsufficientStock, InvalidRequest, InventoryError, NotFound, StorageFailure
from models import ADJUST, MAX_INTEGER, STOCK_IN, STOCK_OUT, LedgerEntry, Product

log = logging.getLogger(__name__)

# Identity of whoever performs a mutation, supplied by the auth layer
Operator = namedtuple('Operator', ['id', 'name'])


def _require_quantity(value, minimum, label):
    if isinstance(value, bool) or not isinstance(value, int) or not minimum <= value <= MAX_INTEGER:
        comparison = 'positive' if minimum > 0 else 'non-negative'
        raise InvalidRequest(f'{label} must be a {comparison} integer')
    return value


class StockLedger:
    """
    Applies stock-in, stock-out and adjustment requests.

    Args:
        session: SQLAlchemy session bound to the transactional store.
        clock: callable returning the local "now" stamped on entries.
    """

    def __init__(self, session, clock=datetime.now):
        self.session = session
        self.clock = clock

    # ==================== MUTATIONS ====================

    def stock_in(self, product_id, quantity, operator, unit_cost=0.0, reference_no='', notes=''):
        """Receive ``quantity`` units at ``unit_cost`` each."""
        _require_quantity(quantity, 1, 'quantity')
        try:
            unit_cost = float(unit_cost or 0)
        except (TypeError, ValueError):
            raise InvalidRequest('unit_cost must be a number')
        if not math.isfinite(unit_cost) or unit_cost < 0:
            raise InvalidRequest('unit_cost must be a non-negative number')

        def compute(before):
            if before + quantity > MAX_INTEGER:
                raise InvalidRequest(f'quantity would raise stock past {MAX_INTEGER}')
            if not math.isfinite(quantity * unit_cost):
                raise InvalidRequest('total cost is out of range')
            return quantity, before + quantity

        return self._apply(product_id, STOCK_IN, operator, compute,
                           unit_cost=unit_cost, reference_no=reference_no, notes=notes)

    def stock_out(self, product_id, quantity, operator, reference_no='', notes=''):
        """Issue ``quantity`` units; refused when stock on hand is short."""
        _require_quantity(quantity, 1, 'quantity')

        def compute(before):
            if before < quantity:
                raise InsufficientStock(available=before, requested=quantity)
            return quantity, before - quantity

        return self._apply(product_id, STOCK_OUT, operator, compute,
                           reference_no=reference_no, notes=notes)

    def adjust(self, product_id, new_quantity, operator, notes=''):
        """
        Set stock to ``new_quantity`` after a physical count.
        Recorded even when the count matches, with a zero quantity.
        """
        _require_quantity(new_quantity, 0, 'new_quantity')

        def compute(before):
            return abs(new_quantity - before), new_quantity

        return self._apply(product_id, ADJUST, operator, compute, notes=notes)

    def _lock_product(self, product_id):
        # A no-op UPDATE takes the row (or, on SQLite, database) write lock
        # before the quantity is read.
        result = self.session.execute(
            update(Product)
            .where(Product.id == product_id, Product.deleted_at.is_(None))
            .values(current_stock=Product.current_stock)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFound(f'Product {product_id} not found')
        return self.session.execute(
            select(Product)
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        ).scalar_one()

    def _apply(self, product_id, kind, operator, compute, unit_cost=0.0, reference_no='', notes=''):
        try:
            product = self._lock_product(product_id)
            before = product.current_stock
            quantity, after = compute(before)

            product.current_stock = after
            entry = LedgerEntry(
                product_id=product.id,
                kind=kind,
                quantity=quantity,
                before_qty=before,
                after_qty=after,
                unit_cost=unit_cost if kind == STOCK_IN else 0.0,
                total_cost=quantity * unit_cost if kind == STOCK_IN else 0.0,
                reference_no=reference_no or '',
                notes=notes or '',
                operator_id=operator.id,
                operator_name=operator.name or '',
                created_at=self.clock(),
            )
            self.session.add(entry)
            self.session.commit()
        except InventoryError:
            self.session.rollback()
            raise
        except (SQLAlchemyError, OverflowError, ValueError) as exc:
            # OverflowError/ValueError: values the driver cannot bind
            self.session.rollback()
            log.exception('%s on product %s aborted', kind, product_id)
            raise StorageFailure('Stock change could not be saved') from exc

        log.info('%s product=%s qty=%s %s->%s by %s',
                 kind, product_id, quantity, before, after, operator.name)
        return entry

    # ==================== LEDGER QUERIES ====================

    def list_entries(self, product_id=None, kind=None, date_from=None, date_to=None,
                     keyword=None, page=1, page_size=20):
        """
        Filtered page of ledger entries, newest first.

        ``date_from``/``date_to`` are ``date`` objects and both ends are
        inclusive. ``keyword`` matches reference number or notes.

        Returns:
            tuple: (entries, total matching count)
        """
        criteria = []
        if product_id:
            criteria.append(LedgerEntry.product_id == product_id)
        if kind:
            criteria.append(LedgerEntry.kind == kind)
        if date_from is not None:
            criteria.append(LedgerEntry.created_at >= datetime.combine(date_from, time.min))
        if date_to is not None:
            day_after = datetime.combine(date_to + timedelta(days=1), time.min)
            criteria.append(LedgerEntry.created_at < day_after)
        if keyword:
            pattern = f'%{keyword}%'
            criteria.append(or_(LedgerEntry.reference_no.like(pattern),
                                LedgerEntry.notes.like(pattern)))

        total = self.session.scalar(select(func.count(LedgerEntry.id)).where(*criteria))
        entries = self.session.scalars(
            select(LedgerEntry)
            .where(*criteria)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return entries, total

    def history(self, product_id):
        """Every entry for one product in the order it was written."""
        return self.session.scalars(
            select(LedgerEntry)
            .where(LedgerEntry.product_id == product_id)
            .order_by(LedgerEntry.created_at, LedgerEntry.id)
        ).all()
