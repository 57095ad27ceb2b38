# Flask Inventory Management API
# Application factory, configuration, error handling and the JSON REST routes

import logging
import math
import os
from datetime import datetime

from flask import Flask, g, jsonify, request
from flask.logging import default_handler
from sqlalchemy import event, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from auth import admin_required, current_operator, issue_token, login_required
from dashboard import Dashboard
from errors import AuthenticationError, Conflict, InvalidRequest, InventoryError, NotFound
from models import (
    ACTIVE, MAX_INTEGER, ROLE_OPERATOR, Category, Product, Supplier, User,
    active, db, not_deleted,
)
from seed import seed_admin, seed_demo
from stock import StockLedger

API_PREFIX = '/api/v1'
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


# ==================== RESPONSE HELPERS ====================

def ok(data=None, message='success', status=200):
    """Uniform JSON envelope used by every route."""
    body = {'code': status, 'message': message}
    if data is not None:
        body['data'] = data
    return jsonify(body), status


def created(data):
    return ok(data, message='created', status=201)


def error_response(status, message):
    return jsonify({'code': status, 'message': message}), status


def paginated(items, total, page, page_size):
    return ok({
        'items': items,
        'total': total,
        'page': page,
        'page_size': page_size,
        'total_pages': math.ceil(total / page_size) if page_size else 0,
    })


# ==================== REQUEST PARSING ====================

def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidRequest('Request body must be a JSON object')
    return data


def _int_field(data, key, default=None, required=False):
    value = data.get(key)
    if value is None or value == '':
        if required:
            raise InvalidRequest(f'{key} is required')
        return default
    if isinstance(value, bool):
        raise InvalidRequest(f'{key} must be an integer')
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        raise InvalidRequest(f'{key} must be an integer')
    if isinstance(value, float) and number != value:
        raise InvalidRequest(f'{key} must be an integer')
    if abs(number) > MAX_INTEGER:
        raise InvalidRequest(f'{key} is out of range')
    return number


def _float_field(data, key, default=0.0):
    value = data.get(key)
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        raise InvalidRequest(f'{key} must be a number')
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidRequest(f'{key} must be a number')
    if not math.isfinite(number):
        raise InvalidRequest(f'{key} must be a finite number')
    return number


def _str_field(data, key, default=''):
    value = data.get(key)
    if value is None:
        return default
    return str(value).strip()


def _pagination_args():
    """Page number and size from the query string, clamped to sane bounds."""
    try:
        page = int(request.args.get('page', 1))
    except ValueError:
        page = 1
    try:
        page_size = int(request.args.get('page_size', DEFAULT_PAGE_SIZE))
    except ValueError:
        page_size = DEFAULT_PAGE_SIZE
    if page <= 0:
        page = 1
    if page_size <= 0:
        page_size = DEFAULT_PAGE_SIZE
    page_size = min(page_size, MAX_PAGE_SIZE)
    return min(page, MAX_INTEGER // page_size), page_size


def _date_arg(name):
    value = request.args.get(name, '').strip()
    if not value:
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        raise InvalidRequest(f'{name} must be a date in YYYY-MM-DD format')


def _id_arg(name):
    value = request.args.get(name, '').strip()
    if not value:
        return None
    try:
        number = int(value)
    except ValueError:
        raise InvalidRequest(f'{name} must be an integer')
    if abs(number) > MAX_INTEGER:
        raise InvalidRequest(f'{name} is out of range')
    return number


def _current_status(record):
    return ACTIVE if record.status is None else record.status


def _env_int(key, default):
    try:
        return int(os.environ.get(key, default))
    except ValueError:
        return default


def _sqlite_pragmas(dbapi_connection, connection_record):
    # WAL lets dashboard reads proceed while a stock mutation holds the write lock
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA journal_mode=WAL')
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()


# ==================== APPLICATION FACTORY ====================

def create_app(test_config=None):
    """
    Application factory function that creates and configures the Flask application.

    Args:
        test_config (dict, optional): Configuration dictionary for testing.
                                    If provided, overrides default config settings.

    Returns:
        Flask: Configured Flask application instance ready to run.
    """
    app = Flask(__name__)

    # ==================== APPLICATION CONFIGURATION ====================
    # SQLite database is stored in the project root unless DATABASE_URL/DB_PATH say otherwise
    project_root = os.path.abspath(os.path.dirname(__file__))
    db_path = os.environ.get('DB_PATH', os.path.join(project_root, 'inventory.db'))
    app.config.from_mapping(
        SECRET_KEY=os.environ.get('FLASK_SECRET', 'dev-secret'),  # Signs bearer tokens (use env var in production)
        SQLALCHEMY_DATABASE_URI=os.environ.get('DATABASE_URL', f"sqlite:///{db_path}"),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        TOKEN_MAX_AGE=_env_int('TOKEN_EXPIRE_HOURS', 72) * 3600,  # Seconds
        ADMIN_USERNAME=os.environ.get('ADMIN_USERNAME', 'admin'),
        ADMIN_PASSWORD=os.environ.get('ADMIN_PASSWORD', 'admin123'),
        LOW_STOCK_LIMIT=_env_int('LOW_STOCK_LIMIT', 20),
        LOG_LEVEL=os.environ.get('LOG_LEVEL', 'INFO'),
    )

    # Override config with test settings if provided (useful for unit tests)
    if test_config:
        app.config.update(test_config)

    # ==================== LOGGING ====================
    app.logger.setLevel(app.config['LOG_LEVEL'])
    stock_logger = logging.getLogger('stock')
    stock_logger.setLevel(app.config['LOG_LEVEL'])
    if default_handler not in stock_logger.handlers:
        stock_logger.addHandler(default_handler)

    db.init_app(app)

    # ==================== DATABASE INITIALIZATION ====================
    with app.app_context():
        if db.engine.dialect.name == 'sqlite':
            event.listen(db.engine, 'connect', _sqlite_pragmas)
        db.create_all()
        seed_admin(app.config['ADMIN_USERNAME'], app.config['ADMIN_PASSWORD'], app.logger)

    @app.cli.command('seed-demo')
    def seed_demo_command():
        """Load sample categories, suppliers and products."""
        if seed_demo(db.session):
            app.logger.info('Demo data created')
        else:
            app.logger.info('Demo data skipped: products already exist')

    # ==================== ERROR HANDLING ====================

    @app.errorhandler(InventoryError)
    def handle_inventory_error(exc):
        return error_response(exc.status_code, exc.message)

    @app.errorhandler(SQLAlchemyError)
    def handle_storage_error(exc):
        db.session.rollback()
        app.logger.exception('Database error on %s %s', request.method, request.path)
        return error_response(500, 'Database operation failed')

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        if exc.code is None or exc.code < 400:
            return exc
        return error_response(exc.code, exc.description)

    @app.after_request
    def log_request(response):
        if request.path != '/health':
            app.logger.info('%s %s %s', request.method, request.path, response.status_code)
        return response

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    # ==================== AUTHENTICATION ROUTES ====================

    @app.route(f'{API_PREFIX}/auth/login', methods=['POST'])
    def login():
        """Exchange username and password for a bearer token."""
        data = _json_body()
        username = _str_field(data, 'username')
        password = data.get('password') or ''
        if not username or not password:
            raise InvalidRequest('Username and password are required')

        user = User.query.filter(User.username == username, not_deleted(User)).first()
        if user is None or not user.check_password(password):
            raise AuthenticationError('Invalid username or password')
        if user.status != ACTIVE:
            raise AuthenticationError('Account is disabled')

        return ok({'token': issue_token(user), 'user': user.to_dict()})

    @app.route(f'{API_PREFIX}/auth/register', methods=['POST'])
    def register():
        """Create an operator account."""
        data = _json_body()
        username = _str_field(data, 'username')
        password = data.get('password') or ''
        if not 3 <= len(username) <= 50:
            raise InvalidRequest('Username must be 3-50 characters')
        if not 6 <= len(password) <= 100:
            raise InvalidRequest('Password must be 6-100 characters')
        if User.query.filter_by(username=username).first():
            raise Conflict('Username already exists')

        user = User(
            username=username,
            email=_str_field(data, 'email'),
            real_name=_str_field(data, 'real_name'),
            role=ROLE_OPERATOR,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return created(user.to_dict())

    @app.route(f'{API_PREFIX}/auth/profile', methods=['GET'])
    @login_required
    def get_profile():
        return ok(g.current_user.to_dict())

    @app.route(f'{API_PREFIX}/auth/profile', methods=['PUT'])
    @login_required
    def update_profile():
        data = _json_body()
        user = g.current_user
        user.email = _str_field(data, 'email')
        user.real_name = _str_field(data, 'real_name')
        user.phone = _str_field(data, 'phone')
        avatar = _str_field(data, 'avatar')
        if avatar:
            user.avatar = avatar
        db.session.commit()
        return ok(user.to_dict())

    @app.route(f'{API_PREFIX}/auth/change-password', methods=['PUT'])
    @login_required
    def change_password():
        data = _json_body()
        old_password = data.get('old_password') or ''
        new_password = data.get('new_password') or ''
        if not old_password or not new_password:
            raise InvalidRequest('Old and new password are required')
        if not 6 <= len(new_password) <= 100:
            raise InvalidRequest('New password must be 6-100 characters')
        user = g.current_user
        if not user.check_password(old_password):
            raise InvalidRequest('Old password is incorrect')
        user.set_password(new_password)
        db.session.commit()
        return ok()

    # ==================== DASHBOARD ROUTES ====================

    @app.route(f'{API_PREFIX}/dashboard/stats')
    @login_required
    def dashboard_stats():
        return ok(Dashboard(db.session).stats())

    @app.route(f'{API_PREFIX}/dashboard/charts')
    @login_required
    def dashboard_charts():
        return ok(Dashboard(db.session).chart_data())

    @app.route(f'{API_PREFIX}/dashboard/low-stock')
    @login_required
    def dashboard_low_stock():
        limit = _id_arg('limit')
        if limit is None or limit <= 0:
            limit = app.config['LOW_STOCK_LIMIT']
        limit = min(limit, MAX_PAGE_SIZE)
        products = Dashboard(db.session).low_stock_products(limit)
        return ok([p.to_dict() for p in products])

    # ==================== MASTER DATA HELPERS ====================

    def _product_counts(column, ids):
        """Live product count per category or supplier id."""
        if not ids:
            return {}
        rows = db.session.execute(
            select(column, func.count(Product.id))
            .where(column.in_(ids), not_deleted(Product))
            .group_by(column)
        ).all()
        return dict(rows)

    def _live_or_404(model, record_id, label):
        record = db.session.get(model, record_id)
        if record is None or record.deleted_at is not None:
            raise NotFound(f'{label} not found')
        return record

    def _status_arg():
        return _id_arg('status')

    # ==================== CATEGORY ROUTES ====================

    @app.route(f'{API_PREFIX}/categories')
    @login_required
    def list_categories():
        """Paginated categories with their live product counts."""
        page, page_size = _pagination_args()
        query = Category.query.filter(not_deleted(Category))
        keyword = request.args.get('keyword', '').strip()
        if keyword:
            query = query.filter(Category.name.like(f'%{keyword}%'))
        status = _status_arg()
        if status is not None:
            query = query.filter(Category.status == status)

        total = query.count()
        items = (query.order_by(Category.sort_order, Category.id)
                 .offset((page - 1) * page_size).limit(page_size).all())
        counts = _product_counts(Product.category_id, [c.id for c in items])
        return paginated([c.to_dict(counts.get(c.id, 0)) for c in items], total, page, page_size)

    @app.route(f'{API_PREFIX}/categories/all')
    @login_required
    def all_categories():
        """Active categories for dropdowns."""
        items = Category.query.filter(active(Category)).order_by(Category.sort_order, Category.id).all()
        return ok([c.to_dict() for c in items])

    def _apply_category(category, data):
        name = _str_field(data, 'name')
        if not name:
            raise InvalidRequest('Category name is required')
        exists = Category.query.filter(Category.name == name, Category.id != category.id,
                                       not_deleted(Category)).first()
        if exists:
            raise Conflict('Category name already exists')
        category.name = name
        category.description = _str_field(data, 'description')
        category.sort_order = _int_field(data, 'sort_order', default=0)
        category.status = _int_field(data, 'status', default=_current_status(category))

    @app.route(f'{API_PREFIX}/categories', methods=['POST'])
    @admin_required
    def create_category():
        category = Category()
        _apply_category(category, _json_body())
        db.session.add(category)
        db.session.commit()
        return created(category.to_dict())

    @app.route(f'{API_PREFIX}/categories/<int:category_id>', methods=['PUT'])
    @admin_required
    def update_category(category_id):
        category = _live_or_404(Category, category_id, 'Category')
        _apply_category(category, _json_body())
        db.session.commit()
        return ok(category.to_dict())

    @app.route(f'{API_PREFIX}/categories/<int:category_id>', methods=['DELETE'])
    @admin_required
    def delete_category(category_id):
        """
        Soft-delete a category.
        Refused while any live product is assigned to it.
        """
        category = _live_or_404(Category, category_id, 'Category')
        in_use = _product_counts(Product.category_id, [category.id]).get(category.id, 0)
        if in_use:
            raise Conflict(f'Cannot delete category: {in_use} products are assigned to it')
        category.deleted_at = datetime.now()
        db.session.commit()
        return ok()

    # ==================== SUPPLIER ROUTES ====================

    @app.route(f'{API_PREFIX}/suppliers')
    @login_required
    def list_suppliers():
        page, page_size = _pagination_args()
        query = Supplier.query.filter(not_deleted(Supplier))
        keyword = request.args.get('keyword', '').strip()
        if keyword:
            pattern = f'%{keyword}%'
            query = query.filter(or_(Supplier.name.like(pattern), Supplier.code.like(pattern),
                                     Supplier.contact_person.like(pattern)))
        status = _status_arg()
        if status is not None:
            query = query.filter(Supplier.status == status)

        total = query.count()
        items = query.order_by(Supplier.id.desc()).offset((page - 1) * page_size).limit(page_size).all()
        counts = _product_counts(Product.supplier_id, [s.id for s in items])
        return paginated([s.to_dict(counts.get(s.id, 0)) for s in items], total, page, page_size)

    @app.route(f'{API_PREFIX}/suppliers/all')
    @login_required
    def all_suppliers():
        items = Supplier.query.filter(active(Supplier)).order_by(Supplier.name).all()
        return ok([s.to_dict() for s in items])

    def _apply_supplier(supplier, data):
        code = _str_field(data, 'code')
        name = _str_field(data, 'name')
        if not code or not name:
            raise InvalidRequest('Supplier code and name are required')
        # Soft-deleted suppliers keep their code
        exists = Supplier.query.filter(Supplier.code == code, Supplier.id != supplier.id).first()
        if exists:
            raise Conflict(f"Supplier code '{code}' already exists")
        supplier.code = code
        supplier.name = name
        supplier.contact_person = _str_field(data, 'contact_person')
        supplier.phone = _str_field(data, 'phone')
        supplier.email = _str_field(data, 'email')
        supplier.address = _str_field(data, 'address')
        supplier.remark = _str_field(data, 'remark')
        supplier.status = _int_field(data, 'status', default=_current_status(supplier))

    @app.route(f'{API_PREFIX}/suppliers', methods=['POST'])
    @admin_required
    def create_supplier():
        supplier = Supplier()
        _apply_supplier(supplier, _json_body())
        db.session.add(supplier)
        db.session.commit()
        return created(supplier.to_dict())

    @app.route(f'{API_PREFIX}/suppliers/<int:supplier_id>', methods=['PUT'])
    @admin_required
    def update_supplier(supplier_id):
        supplier = _live_or_404(Supplier, supplier_id, 'Supplier')
        _apply_supplier(supplier, _json_body())
        db.session.commit()
        return ok(supplier.to_dict())

    @app.route(f'{API_PREFIX}/suppliers/<int:supplier_id>', methods=['DELETE'])
    @admin_required
    def delete_supplier(supplier_id):
        supplier = _live_or_404(Supplier, supplier_id, 'Supplier')
        in_use = _product_counts(Product.supplier_id, [supplier.id]).get(supplier.id, 0)
        if in_use:
            raise Conflict(f'Cannot delete supplier: {in_use} products are assigned to it')
        supplier.deleted_at = datetime.now()
        db.session.commit()
        return ok()

    # ==================== PRODUCT ROUTES ====================

    @app.route(f'{API_PREFIX}/products')
    @login_required
    def list_products():
        """Paginated products filtered by keyword, status, category or supplier."""
        page, page_size = _pagination_args()
        query = Product.query.filter(not_deleted(Product))
        keyword = request.args.get('keyword', '').strip()
        if keyword:
            pattern = f'%{keyword}%'
            query = query.filter(or_(Product.name.like(pattern), Product.sku.like(pattern),
                                     Product.barcode.like(pattern)))
        status = _status_arg()
        if status is not None:
            query = query.filter(Product.status == status)
        category_id = _id_arg('category_id')
        if category_id:
            query = query.filter(Product.category_id == category_id)
        supplier_id = _id_arg('supplier_id')
        if supplier_id:
            query = query.filter(Product.supplier_id == supplier_id)

        total = query.count()
        items = query.order_by(Product.id.desc()).offset((page - 1) * page_size).limit(page_size).all()
        return paginated([p.to_dict() for p in items], total, page, page_size)

    @app.route(f'{API_PREFIX}/products/<int:product_id>')
    @login_required
    def get_product(product_id):
        return ok(_live_or_404(Product, product_id, 'Product').to_dict())

    def _apply_product(product, data):
        """
        Copy master data fields onto ``product``.
        Missing fields keep their current value; current_stock is never touched here.
        """
        sku = _str_field(data, 'sku', product.sku or '')
        name = _str_field(data, 'name', product.name or '')
        if not sku or not name:
            raise InvalidRequest('SKU and product name are required')
        if sku != product.sku:
            exists = Product.query.filter(Product.sku == sku, Product.id != product.id).first()
            if exists:
                raise Conflict(f"SKU '{sku}' already exists")

        category_id = _int_field(data, 'category_id') if 'category_id' in data else product.category_id
        supplier_id = _int_field(data, 'supplier_id') if 'supplier_id' in data else product.supplier_id
        if category_id is not None:
            _live_or_404(Category, category_id, 'Category')
        if supplier_id is not None:
            _live_or_404(Supplier, supplier_id, 'Supplier')

        cost_price = _float_field(data, 'cost_price', product.cost_price or 0.0)
        selling_price = _float_field(data, 'selling_price', product.selling_price or 0.0)
        min_stock = _int_field(data, 'min_stock', default=product.min_stock or 0)
        max_stock = _int_field(data, 'max_stock', default=product.max_stock or 0)
        if cost_price < 0 or selling_price < 0:
            raise InvalidRequest('Prices must not be negative')
        if min_stock < 0 or max_stock < 0:
            raise InvalidRequest('Stock thresholds must not be negative')

        product.sku = sku
        product.name = name
        product.description = _str_field(data, 'description', product.description or '')
        product.category_id = category_id
        product.supplier_id = supplier_id
        product.unit = _str_field(data, 'unit', product.unit or '') or 'pcs'
        product.cost_price = cost_price
        product.selling_price = selling_price
        product.min_stock = min_stock
        product.max_stock = max_stock
        product.barcode = _str_field(data, 'barcode', product.barcode or '')
        product.location = _str_field(data, 'location', product.location or '')
        product.image_url = _str_field(data, 'image_url', product.image_url or '')
        product.status = _int_field(data, 'status', default=_current_status(product))

    @app.route(f'{API_PREFIX}/products', methods=['POST'])
    @admin_required
    def create_product():
        """Create a product; stock starts at zero and is changed through the inventory routes."""
        product = Product(current_stock=0)
        _apply_product(product, _json_body())
        db.session.add(product)
        db.session.commit()
        return created(product.to_dict())

    @app.route(f'{API_PREFIX}/products/<int:product_id>', methods=['PUT'])
    @admin_required
    def update_product(product_id):
        product = _live_or_404(Product, product_id, 'Product')
        _apply_product(product, _json_body())
        db.session.commit()
        return ok(product.to_dict())

    @app.route(f'{API_PREFIX}/products/<int:product_id>', methods=['DELETE'])
    @admin_required
    def delete_product(product_id):
        """Soft-delete a product. Its ledger history is kept."""
        product = _live_or_404(Product, product_id, 'Product')
        product.deleted_at = datetime.now()
        db.session.commit()
        return ok()

    @app.route(f'{API_PREFIX}/products/<int:product_id>/history')
    @login_required
    def product_history(product_id):
        """Full ledger of one product, oldest first."""
        _live_or_404(Product, product_id, 'Product')
        entries = StockLedger(db.session).history(product_id)
        return ok([e.to_dict() for e in entries])

    # ==================== INVENTORY ROUTES ====================

    @app.route(f'{API_PREFIX}/inventory/stock-in', methods=['POST'])
    @login_required
    def stock_in():
        """Receive goods into stock."""
        data = _json_body()
        entry = StockLedger(db.session).stock_in(
            _int_field(data, 'product_id', required=True),
            _int_field(data, 'quantity', required=True),
            current_operator(),
            unit_cost=_float_field(data, 'unit_cost'),
            reference_no=_str_field(data, 'reference_no'),
            notes=_str_field(data, 'notes'),
        )
        return ok(entry.to_dict(), message='Stock in recorded')

    @app.route(f'{API_PREFIX}/inventory/stock-out', methods=['POST'])
    @login_required
    def stock_out():
        """Issue goods from stock; rejected when stock on hand is short."""
        data = _json_body()
        entry = StockLedger(db.session).stock_out(
            _int_field(data, 'product_id', required=True),
            _int_field(data, 'quantity', required=True),
            current_operator(),
            reference_no=_str_field(data, 'reference_no'),
            notes=_str_field(data, 'notes'),
        )
        return ok(entry.to_dict(), message='Stock out recorded')

    @app.route(f'{API_PREFIX}/inventory/adjust', methods=['POST'])
    @login_required
    def stock_adjust():
        """Set stock to a counted quantity."""
        data = _json_body()
        entry = StockLedger(db.session).adjust(
            _int_field(data, 'product_id', required=True),
            _int_field(data, 'new_quantity', required=True),
            current_operator(),
            notes=_str_field(data, 'notes'),
        )
        return ok(entry.to_dict(), message='Stock adjusted')

    @app.route(f'{API_PREFIX}/inventory/records')
    @login_required
    def inventory_records():
        """Ledger entries, newest first, filtered by product, type, date range and keyword."""
        page, page_size = _pagination_args()
        entries, total = StockLedger(db.session).list_entries(
            product_id=_id_arg('product_id'),
            kind=request.args.get('type', '').strip() or None,
            date_from=_date_arg('start_date'),
            date_to=_date_arg('end_date'),
            keyword=request.args.get('keyword', '').strip() or None,
            page=page,
            page_size=page_size,
        )
        return paginated([e.to_dict() for e in entries], total, page, page_size)

    # Return the configured Flask application
    return app


# ==================== APPLICATION ENTRY POINT ====================

if __name__ == '__main__':
    create_app().run(debug=True, host='127.0.0.1', port=_env_int('APP_PORT', 8080))
