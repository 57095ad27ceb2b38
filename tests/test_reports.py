from datetime import datetime, timedelta

import pytest

from app import create_app, db
from dashboard import CHART_DAYS, Dashboard
from models import Category, Product, Supplier
from stock import Operator, StockLedger

NOW = datetime(2024, 5, 20, 14, 30)
OPERATOR = Operator(id=1, name='Administrator')


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SECRET_KEY': 'test-secret',
        'ADMIN_USERNAME': 'admin',
        'ADMIN_PASSWORD': 'admin-pass',
    })
    with app.app_context():
        db.create_all()
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


def ledger_at(moment):
    return StockLedger(db.session, clock=lambda: moment)


def dashboard():
    return Dashboard(db.session, clock=lambda: NOW)


def add_product(sku, cost=1.0, min_stock=0, category=None, status=1):
    prod = Product(sku=sku, name=f'Product {sku}', cost_price=cost, min_stock=min_stock,
                   category=category, status=status)
    db.session.add(prod)
    db.session.commit()
    return prod.id


def test_reports_require_login(client):
    resp = client.get('/api/v1/dashboard/stats')
    assert resp.status_code == 401


def test_stats_counts_value_and_today(app):
    tools = Category(name='Tools')
    db.session.add_all([tools, Category(name='Retired', status=0), Supplier(code='S1', name='Acme')])
    db.session.commit()
    hammer = add_product('HAM', cost=2.5, min_stock=5, category=tools)
    saw = add_product('SAW', cost=10.0)
    add_product('OLD', cost=99.0, status=0)

    ledger_at(NOW - timedelta(days=1)).stock_in(hammer, 100, OPERATOR)
    today = ledger_at(NOW.replace(hour=8))
    today.stock_in(saw, 3, OPERATOR)
    today.stock_out(hammer, 97, OPERATOR)
    today.adjust(saw, 4, OPERATOR)

    stats = dashboard().stats()

    assert stats['total_products'] == 2
    assert stats['total_categories'] == 1
    assert stats['total_suppliers'] == 1
    assert stats['total_stock_value'] == pytest.approx(3 * 2.5 + 4 * 10.0)
    assert stats['low_stock_count'] == 1
    assert stats['today_stock_in'] == 3
    assert stats['today_stock_out'] == 97
    assert stats['today_records'] == 3


def test_stats_on_empty_database(app):
    stats = dashboard().stats()

    assert stats['total_products'] == 0
    assert stats['total_stock_value'] == 0.0
    assert stats['today_records'] == 0


def test_stock_movement_is_zero_filled_window(app):
    pid = add_product('P1')
    ledger_at(NOW - timedelta(days=CHART_DAYS)).stock_in(pid, 1000, OPERATOR)  # outside the window
    ledger_at(NOW - timedelta(days=CHART_DAYS - 1)).stock_in(pid, 7, OPERATOR)
    ledger_at(NOW - timedelta(days=3)).stock_out(pid, 2, OPERATOR)
    ledger_at(NOW - timedelta(days=3)).stock_out(pid, 1, OPERATOR)
    ledger_at(NOW).adjust(pid, 50, OPERATOR)

    series = dashboard().stock_movement()

    assert len(series) == CHART_DAYS
    assert series[0]['date'] == (NOW - timedelta(days=CHART_DAYS - 1)).date().isoformat()
    assert series[-1]['date'] == NOW.date().isoformat()
    assert series[0]['stock_in'] == 7
    assert series[-4] == {
        'date': (NOW - timedelta(days=3)).date().isoformat(), 'stock_in': 0, 'stock_out': 3,
    }
    # Adjustments are not stock movement
    assert series[-1]['stock_in'] == series[-1]['stock_out'] == 0
    assert sum(day['stock_in'] for day in series) == 7


def test_top_products_by_stock_value(app):
    ledger = ledger_at(NOW)
    for index in range(12):
        pid = add_product(f'P{index:02d}', cost=float(index + 1))
        ledger.stock_in(pid, 10, OPERATOR)

    top = dashboard().top_products()

    assert len(top) == 10
    assert top[0] == {'name': 'Product P11', 'value': 120.0}
    values = [row['value'] for row in top]
    assert values == sorted(values, reverse=True)


def test_category_stats_count_active_products(app):
    second = Category(name='Second', sort_order=2)
    first = Category(name='First', sort_order=1)
    empty = Category(name='Empty', sort_order=3)
    db.session.add_all([second, first, empty])
    db.session.commit()
    add_product('A', category=first)
    add_product('B', category=first)
    add_product('C', category=second, status=0)

    stats = dashboard().category_stats()

    assert stats == [
        {'name': 'First', 'count': 2},
        {'name': 'Second', 'count': 0},
        {'name': 'Empty', 'count': 0},
    ]


def test_low_stock_list_tracks_replenishment(app):
    pid = add_product('LOW', min_stock=10)
    add_product('NOMIN', min_stock=0)  # zero minimum is never low
    ledger = ledger_at(NOW)
    ledger.adjust(pid, 5, OPERATOR)

    assert [p.sku for p in dashboard().low_stock_products(20)] == ['LOW']

    ledger.stock_in(pid, 10, OPERATOR)

    assert dashboard().low_stock_products(20) == []


def test_low_stock_is_ordered_and_limited(app):
    ledger = ledger_at(NOW)
    for sku, qty in [('B', 4), ('A', 1), ('C', 9)]:
        ledger.adjust(add_product(sku, min_stock=10), qty, OPERATOR)

    products = dashboard().low_stock_products(2)

    assert [p.sku for p in products] == ['A', 'B']


def test_dashboard_routes(client):
    token = client.post('/api/v1/auth/login', json={
        'username': 'admin', 'password': 'admin-pass',
    }).get_json()['data']['token']
    headers = {'Authorization': f'Bearer {token}'}
    pid = add_product('R1', cost=2.0, min_stock=10)
    StockLedger(db.session).stock_in(pid, 3, OPERATOR)

    stats = client.get('/api/v1/dashboard/stats', headers=headers).get_json()['data']
    assert stats['total_stock_value'] == 6.0
    assert stats['today_stock_in'] == 3

    charts = client.get('/api/v1/dashboard/charts', headers=headers).get_json()['data']
    assert len(charts['stock_movement']) == CHART_DAYS
    assert charts['stock_movement'][-1]['stock_in'] == 3
    assert charts['top_products'] == [{'name': 'Product R1', 'value': 6.0}]
    assert charts['category_stats'] == []

    low = client.get('/api/v1/dashboard/low-stock?limit=5', headers=headers).get_json()['data']
    assert [p['sku'] for p in low] == ['R1']


def test_low_stock_route_ignores_non_positive_limit(client, app):
    app.config['LOW_STOCK_LIMIT'] = 1
    token = client.post('/api/v1/auth/login', json={
        'username': 'admin', 'password': 'admin-pass',
    }).get_json()['data']['token']
    headers = {'Authorization': f'Bearer {token}'}
    ledger = ledger_at(NOW)
    for sku, qty in [('L1', 1), ('L2', 2)]:
        ledger.adjust(add_product(sku, min_stock=10), qty, OPERATOR)

    for limit in ('-1', '0'):
        low = client.get(f'/api/v1/dashboard/low-stock?limit={limit}', headers=headers).get_json()['data']
        assert [p['sku'] for p in low] == ['L1']

    low = client.get('/api/v1/dashboard/low-stock?limit=5', headers=headers).get_json()['data']
    assert [p['sku'] for p in low] == ['L1', 'L2']
