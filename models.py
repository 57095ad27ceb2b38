# Database models for the inventory backend
# Products, reference data, users and the append-only stock ledger

from datetime import datetime

from flask_sqlalchemy import SQLAlchemy  # ORM for database operations
from sqlalchemy import and_, event
from sqlalchemy.orm import object_session
from werkzeug.security import generate_password_hash, check_password_hash  # Password security

from errors import LedgerImmutable

# Initialize SQLAlchemy database instance
# This will be configured and bound to the Flask app later
db = SQLAlchemy()

# Status flags shared by users, categories, suppliers and products
ACTIVE = 1
INACTIVE = 0

# Ledger entry kinds
STOCK_IN = 'stock_in'
STOCK_OUT = 'stock_out'
ADJUST = 'adjust'
ENTRY_KINDS = (STOCK_IN, STOCK_OUT, ADJUST)

# Largest value an INTEGER column can hold
MAX_INTEGER = 2 ** 63 - 1

ROLE_ADMIN = 'admin'
ROLE_OPERATOR = 'operator'


def _iso(value):
    return value.isoformat() if value is not None else None


def not_deleted(model):
    """Criterion that hides soft-deleted rows of ``model``."""
    return model.deleted_at.is_(None)


def active(model):
    """Criterion for rows that are neither soft-deleted nor disabled."""
    return and_(model.deleted_at.is_(None), model.status == ACTIVE)


# ==================== DATABASE MODELS ====================

class User(db.Model):
    """
    User model for authentication.
    Stores credentials with secure password hashing plus the role used to
    gate master data changes.
    """
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)  # Soft-delete tombstone

    username = db.Column(db.String(50), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)  # Never serialized
    email = db.Column(db.String(100), nullable=False, default='')
    real_name = db.Column(db.String(50), nullable=False, default='')
    phone = db.Column(db.String(20), nullable=False, default='')
    avatar = db.Column(db.String(255), nullable=False, default='')
    role = db.Column(db.String(20), nullable=False, default=ROLE_OPERATOR)  # admin, operator
    status = db.Column(db.Integer, nullable=False, default=ACTIVE)  # 1=enabled, 0=disabled

    def set_password(self, password):
        """
        Hash and store the user's password securely.
        Uses Werkzeug's generate_password_hash for security.
        """
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """
        Verify if provided password matches the stored hash.
        Returns True if password is correct, False otherwise.
        """
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == ROLE_ADMIN

    @property
    def display_name(self):
        """Name written into ledger entries at mutation time."""
        return self.real_name or self.username

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'real_name': self.real_name,
            'phone': self.phone,
            'avatar': self.avatar,
            'role': self.role,
            'status': self.status,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Category(db.Model):
    """
    Master data model for product categories.
    Deletion is refused while live products still point at the category.
    """
    __tablename__ = 'categories'

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=False, default='')
    sort_order = db.Column(db.Integer, nullable=False, default=0)  # Display order on dashboards
    status = db.Column(db.Integer, nullable=False, default=ACTIVE)

    def to_dict(self, product_count=None):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'sort_order': self.sort_order,
            'status': self.status,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
        if product_count is not None:
            data['product_count'] = product_count
        return data


class Supplier(db.Model):
    """
    Master data model for suppliers.
    The supplier code is unique; deletion follows the same dependent
    product guard as categories.
    """
    __tablename__ = 'suppliers'

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    contact_person = db.Column(db.String(50), nullable=False, default='')
    phone = db.Column(db.String(20), nullable=False, default='')
    email = db.Column(db.String(100), nullable=False, default='')
    address = db.Column(db.String(500), nullable=False, default='')
    remark = db.Column(db.String(500), nullable=False, default='')
    status = db.Column(db.Integer, nullable=False, default=ACTIVE)

    def to_dict(self, product_count=None):
        data = {
            'id': self.id,
            'code': self.code,
            'name': self.name,
            'contact_person': self.contact_person,
            'phone': self.phone,
            'email': self.email,
            'address': self.address,
            'remark': self.remark,
            'status': self.status,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
        if product_count is not None:
            data['product_count'] = product_count
        return data


class Product(db.Model):
    """
    Product model holding master data and the current stock register.

    ``current_stock`` is only ever written by ``stock.StockLedger``; the
    product routes create and edit everything else.
    """
    __tablename__ = 'products'

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    sku = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False, index=True)
    description = db.Column(db.String(1000), nullable=False, default='')
    category_id = db.Column(db.Integer, db.ForeignKey('categories.id'), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey('suppliers.id'), nullable=True, index=True)
    unit = db.Column(db.String(20), nullable=False, default='pcs')  # Unit of measurement
    cost_price = db.Column(db.Float, nullable=False, default=0.0)
    selling_price = db.Column(db.Float, nullable=False, default=0.0)
    current_stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)  # Low-stock threshold, 0 disables
    max_stock = db.Column(db.Integer, nullable=False, default=0)  # Advisory only
    barcode = db.Column(db.String(100), nullable=False, default='', index=True)
    location = db.Column(db.String(100), nullable=False, default='')  # Shelf / bin
    image_url = db.Column(db.String(500), nullable=False, default='')
    status = db.Column(db.Integer, nullable=False, default=ACTIVE)

    category = db.relationship('Category', lazy='joined')
    supplier = db.relationship('Supplier', lazy='joined')

    @property
    def is_low_stock(self):
        return self.min_stock > 0 and self.current_stock <= self.min_stock

    @property
    def stock_value(self):
        return self.current_stock * self.cost_price

    def to_dict(self):
        return {
            'id': self.id,
            'sku': self.sku,
            'name': self.name,
            'description': self.description,
            'category_id': self.category_id,
            'supplier_id': self.supplier_id,
            'category': self.category.to_dict() if self.category is not None else None,
            'supplier': self.supplier.to_dict() if self.supplier is not None else None,
            'unit': self.unit,
            'cost_price': self.cost_price,
            'selling_price': self.selling_price,
            'current_stock': self.current_stock,
            'min_stock': self.min_stock,
            'max_stock': self.max_stock,
            'barcode': self.barcode,
            'location': self.location,
            'image_url': self.image_url,
            'status': self.status,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class LedgerEntry(db.Model):
    """
    Immutable record of one stock quantity change.

    ``quantity`` is always the magnitude of the change; the direction of an
    adjustment is read from ``before_qty``/``after_qty``. Operator id and name
    are copied at write time rather than referenced.
    """
    __tablename__ = 'ledger_entries'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False, index=True)
    kind = db.Column(db.String(20), nullable=False, index=True)  # stock_in, stock_out, adjust
    quantity = db.Column(db.Integer, nullable=False)
    before_qty = db.Column(db.Integer, nullable=False)
    after_qty = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Float, nullable=False, default=0.0)  # stock_in only
    total_cost = db.Column(db.Float, nullable=False, default=0.0)  # stock_in only
    reference_no = db.Column(db.String(100), nullable=False, default='', index=True)
    notes = db.Column(db.String(500), nullable=False, default='')
    operator_id = db.Column(db.Integer, nullable=True, index=True)
    operator_name = db.Column(db.String(50), nullable=False, default='')
    created_at = db.Column(db.DateTime, nullable=False, index=True)

    product = db.relationship('Product', lazy='joined')

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'product': {
                'id': self.product.id,
                'sku': self.product.sku,
                'name': self.product.name,
            } if self.product is not None else None,
            'type': self.kind,
            'quantity': self.quantity,
            'before_qty': self.before_qty,
            'after_qty': self.after_qty,
            'unit_cost': self.unit_cost,
            'total_cost': self.total_cost,
            'reference_no': self.reference_no,
            'notes': self.notes,
            'operator_id': self.operator_id,
            'operator_name': self.operator_name,
            'created_at': _iso(self.created_at),
        }


# ==================== LEDGER IMMUTABILITY ====================

@event.listens_for(LedgerEntry, 'before_update')
def _reject_ledger_update(mapper, connection, target):
    session = object_session(target)
    if session is None or session.is_modified(target, include_collections=False):
        raise LedgerImmutable(f'Ledger entry {target.id} cannot be modified')


@event.listens_for(LedgerEntry, 'before_delete')
def _reject_ledger_delete(mapper, connection, target):
    raise LedgerImmutable(f'Ledger entry {target.id} cannot be deleted')
