# Seed data: the default administrator and an optional demo catalogue

from models import ROLE_ADMIN, Category, Product, Supplier, User, db
from stock import Operator, StockLedger

DEMO_CATEGORIES = [
    {'name': 'Electronics', 'description': 'Phones, computers and accessories', 'sort_order': 1},
    {'name': 'Office Supplies', 'description': 'Stationery, paper and printer consumables', 'sort_order': 2},
    {'name': 'Food & Drink', 'description': 'Snacks, drinks and fresh goods', 'sort_order': 3},
    {'name': 'Apparel', 'description': 'Clothing and footwear', 'sort_order': 4},
    {'name': 'Household', 'description': 'Furniture, textiles and cleaning products', 'sort_order': 5},
]

DEMO_SUPPLIERS = [
    {'code': 'SUP001', 'name': 'Northwind Technology Ltd', 'contact_person': 'J. Carter',
     'phone': '555-0101', 'email': 'carter@example.com', 'address': '12 Harbour Rd'},
    {'code': 'SUP002', 'name': 'Eastgate Trading Group', 'contact_person': 'L. Moreno',
     'phone': '555-0102', 'email': 'moreno@example.com', 'address': '88 Market St'},
    {'code': 'SUP003', 'name': 'Penfold Stationery Works', 'contact_person': 'R. Okafor',
     'phone': '555-0103', 'email': 'okafor@example.com', 'address': '3 Mill Lane'},
]

# (sku, name, category index, supplier index, unit, cost, price, opening stock, min stock, location)
DEMO_PRODUCTS = [
    ('P001', 'Laptop 14"', 0, 0, 'unit', 1200.0, 1599.0, 25, 5, 'A-01-01'),
    ('P002', 'Smartphone Pro', 0, 0, 'unit', 600.0, 899.0, 50, 10, 'A-01-02'),
    ('P003', 'Mechanical Keyboard', 0, 1, 'pcs', 35.0, 59.9, 120, 20, 'A-02-01'),
    ('P004', 'A4 Copy Paper (500 sheets)', 1, 2, 'pack', 1.8, 2.8, 200, 50, 'B-01-01'),
    ('P005', 'Gel Pen 0.5mm Black', 1, 2, 'pcs', 0.15, 0.3, 500, 100, 'B-01-02'),
    ('P006', 'Wireless Mouse', 0, 1, 'pcs', 18.0, 29.9, 80, 15, 'A-02-02'),
    ('P007', 'Monitor Arm', 0, 1, 'pcs', 12.0, 19.9, 3, 5, 'A-03-01'),
    ('P008', 'USB-C Dock', 0, 0, 'pcs', 20.0, 35.9, 2, 10, 'A-03-02'),
]


def seed_admin(username, password, logger):
    """
    Create the default administrator when the user table is empty.
    Must run inside an application context.
    """
    if db.session.query(User.id).first() is not None:
        return None
    admin = User(username=username, real_name='Administrator', role=ROLE_ADMIN)
    admin.set_password(password)
    db.session.add(admin)
    db.session.commit()
    logger.info('Default administrator created: %s', username)
    return admin


def seed_demo(session):
    """
    Load the demo catalogue unless products already exist.
    Opening stock is booked through the ledger as adjustments.

    Returns:
        bool: True when data was created.
    """
    if session.query(Product.id).first() is not None:
        return False

    categories = [Category(**fields) for fields in DEMO_CATEGORIES]
    suppliers = [Supplier(**fields) for fields in DEMO_SUPPLIERS]
    session.add_all(categories + suppliers)
    session.flush()

    opening = []
    for sku, name, cat, sup, unit, cost, price, qty, min_stock, location in DEMO_PRODUCTS:
        product = Product(
            sku=sku, name=name, category_id=categories[cat].id, supplier_id=suppliers[sup].id,
            unit=unit, cost_price=cost, selling_price=price, min_stock=min_stock, location=location,
        )
        session.add(product)
        opening.append((product, qty))
    session.commit()

    ledger = StockLedger(session)
    system = Operator(id=None, name='system')
    for product, qty in opening:
        ledger.adjust(product.id, qty, system, notes='Opening stock')
    return True
