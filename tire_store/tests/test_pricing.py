import pytest

from tire_store.repositories.base import BackendError
from tire_store.services.audit_service import AuditService
from tire_store.services.bulk_price_service import BulkPriceService, PriceRule, apply_operation
from tire_store.services.catalog_service import compare_sizes, parse_tire_size, tire_dimensions
from tire_store.services.totals import checkout_totals, invoice_totals
from tire_store.tests.helpers import make_product


def test_checkout_totals_levy_then_gst():
    totals = checkout_totals(100.0, 4)
    assert totals['levy'] == pytest.approx(20.0)
    assert totals['gst'] == pytest.approx(6.0)
    assert totals['total'] == pytest.approx(126.0)


def test_checkout_totals_discount_before_gst():
    totals = checkout_totals(400.0, 4, discount=50.0)
    # (400 - 50 + 20) * 5%
    assert totals['gst'] == pytest.approx(18.5)
    assert totals['total'] == pytest.approx(388.5)


def test_invoice_totals_optional_ab_levy():
    lines = [{'description': 'Tire', 'quantity': 4, 'unit_price': 100.0}]
    without = invoice_totals(lines)
    assert without['ab_levy'] == 0.0
    assert without['total'] == pytest.approx(420.0)

    with_levy = invoice_totals(lines, apply_ab_levy=True)
    assert with_levy['ab_levy'] == pytest.approx(16.0)
    assert with_levy['gst'] == pytest.approx(20.8)
    assert with_levy['total'] == pytest.approx(436.8)


def test_apply_operation_variants():
    assert apply_operation(100, 'set', 80) == 80
    assert apply_operation(100, 'increase_pct', 10) == pytest.approx(110.0)
    assert apply_operation(100, 'increase_pct', 7) == pytest.approx(107.0)
    assert apply_operation(100, 'decrease_pct', 15) == pytest.approx(85.0)
    assert apply_operation(100, 'increase_fixed', 7.5) == pytest.approx(107.5)
    assert apply_operation(5, 'decrease_fixed', 10) == 0.0
    with pytest.raises(ValueError):
        apply_operation(100, 'double', 2)


def test_price_rule_from_form_validation():
    rule = PriceRule.from_form({'retail_operation': 'increase_pct', 'retail_value': '5',
                                'update_wholesale': 'on', 'wholesale_value': '3'})
    assert rule.retail_value == 5.0
    assert rule.applies_wholesale

    with pytest.raises(ValueError, match='Please enter a retail price value'):
        PriceRule.from_form({'retail_operation': 'set'})
    with pytest.raises(ValueError, match='Unknown price operation'):
        PriceRule.from_form({'retail_operation': 'x', 'retail_value': '1'})
    with pytest.raises(ValueError, match='cannot be negative'):
        PriceRule.from_form({'retail_operation': 'set', 'retail_value': '-1'})


def test_bulk_apply_and_rollback(container):
    service = container.bulk_price_service
    first = make_product(container, size='205/55R16', price=100.0, vendor='Michelin')
    second = make_product(container, size='225/65R17', price=200.0, vendor='Michelin')
    other = make_product(container, size='225/65R17', price=50.0, vendor='Toyo')

    rule = PriceRule.from_form({'retail_operation': 'increase_pct', 'retail_value': '10'})
    rows = service.build_preview({'vendor': 'Michelin'}, rule)
    assert len(rows) == 2

    refused = service.apply_batch(rows, rule, 'confirm', 'admin-1')
    assert not refused['ok']
    assert 'CONFIRM' in refused['error']

    result = service.apply_batch(rows, rule, 'CONFIRM', 'admin-1')
    assert result['ok']
    assert result['updated'] == 2
    assert container.table('products').get(first['id'])['price'] == pytest.approx(110.0)
    assert container.table('products').get(second['id'])['price'] == pytest.approx(220.0)
    assert container.table('products').get(other['id'])['price'] == pytest.approx(50.0)

    undone = service.rollback(result['batch_id'], 'admin-1')
    assert undone == {'ok': True, 'rolled_back': 2, 'skipped': 0}
    assert container.table('products').get(first['id'])['price'] == pytest.approx(100.0)
    assert container.table('products').get(second['id'])['price'] == pytest.approx(200.0)

    assert not service.rollback('missing-batch')['ok']


def test_bulk_apply_with_no_rows(container):
    rule = PriceRule.from_form({'retail_operation': 'set', 'retail_value': '10'})
    result = container.bulk_price_service.apply_batch([], rule, 'CONFIRM', 'admin-1')
    assert result == {'ok': False, 'error': 'No products match the selected filters'}


def test_bulk_apply_stops_at_first_write_failure(container, monkeypatch):
    service = container.bulk_price_service
    products = [make_product(container, size=f'2{n}5/60R18', price=100.0) for n in range(3)]
    rule = PriceRule.from_form({'retail_operation': 'increase_pct', 'retail_value': '10'})
    rows = service.build_preview({}, rule)

    repo = container.table('products')
    original_update = repo.update_row
    written = []

    def flaky_update(record_id, changes):
        if written:
            raise BackendError('products write failed', table='products')
        written.append(record_id)
        return original_update(record_id, changes)

    monkeypatch.setattr(repo, 'update_row', flaky_update)
    result = service.apply_batch(rows, rule, 'CONFIRM', 'admin-1')
    assert not result['ok']
    assert result['updated'] == 1
    assert result['error'].startswith('Failed to apply price changes')

    # The first write is kept, nothing is audited
    prices = {p['id']: repo.get(p['id'])['price'] for p in products}
    assert prices.pop(written[0]) == pytest.approx(110.0)
    assert list(prices.values()) == [pytest.approx(100.0)] * 2
    assert container.audit_service.search(action=AuditService.BULK_PRICE_UPDATE) == []


def test_bulk_rollback_skips_deleted_products(container):
    service = container.bulk_price_service
    first, middle, last = [make_product(container, size=f'2{n}5/60R18', price=100.0) for n in range(3)]
    rule = PriceRule.from_form({'retail_operation': 'increase_pct', 'retail_value': '10'})
    applied = service.apply_batch(service.build_preview({}, rule), rule, 'CONFIRM', 'admin-1')
    assert applied['updated'] == 3

    assert container.catalog_service.delete_product(middle['id'])['ok']
    undone = service.rollback(applied['batch_id'], 'admin-1')
    assert undone == {'ok': True, 'rolled_back': 2, 'skipped': 1}
    assert container.table('products').get(first['id'])['price'] == pytest.approx(100.0)
    assert container.table('products').get(last['id'])['price'] == pytest.approx(100.0)

    logged = container.audit_service.search(action=AuditService.BULK_PRICE_ROLLBACK)
    assert len(logged) == 1
    assert logged[0]['new_values'] == {'rolled_back_count': 2}
    assert service.list_batches()[0]['rolled_back']


def test_bulk_filter_options_and_public_listing(container):
    make_product(container, size='205/55R16', vendor='Toyo', wholesale_price=60.0)
    make_product(container, size='225/65R17', vendor='Michelin')
    make_product(container, size='195/65R15', vendor='Nokian', is_active=False)

    options = container.bulk_price_service.filter_options()
    assert options['vendors'] == ['Michelin', 'Nokian', 'Toyo']
    assert 'decrease_fixed' in options['operations']

    public = container.backend.call('get_products_public')
    assert [p['size'] for p in public] == ['205/55R16', '225/65R17']
    assert all('wholesale_price' not in p for p in public)


# ═══════════════════════════════════════════════════════════════════════════
# BULK PRICE PREVIEW
# ═══════════════════════════════════════════════════════════════════════════

def _wholesale_rule(value=10, operation='increase_pct', if_blank=False):
    return PriceRule(retail_operation='increase_pct', retail_value=10, update_wholesale=True,
                     wholesale_operation=operation, wholesale_value=value, set_wholesale_if_blank=if_blank)


def test_preview_blank_wholesale_starts_from_retail_share():
    product = {'id': 'p1', 'price': 100.0, 'wholesale_price': None}

    skipped = BulkPriceService.preview_row(product, _wholesale_rule())
    assert skipped['new_retail'] == pytest.approx(110.0)
    assert skipped['new_wholesale'] is None
    assert skipped['wholesale_delta'] is None
    assert skipped['wholesale_pct_change'] is None

    filled = BulkPriceService.preview_row(product, _wholesale_rule(if_blank=True))
    assert filled['new_wholesale'] == pytest.approx(77.0)  # 70% of retail, +10%
    assert filled['wholesale_delta'] == pytest.approx(77.0)
    assert filled['wholesale_pct_change'] == pytest.approx(100.0)


def test_preview_existing_wholesale_and_zero_retail():
    row = BulkPriceService.preview_row({'id': 'p1', 'price': 120.0, 'wholesale_price': 80.0},
                                       _wholesale_rule(value=5, operation='decrease_fixed'))
    assert row['new_wholesale'] == pytest.approx(75.0)
    assert row['wholesale_delta'] == pytest.approx(-5.0)
    assert row['wholesale_pct_change'] == pytest.approx(-6.25)
    assert row['retail_pct_change'] == pytest.approx(10.0)

    free = BulkPriceService.preview_row({'id': 'p2', 'price': 0}, PriceRule('set', 50))
    assert free['new_retail'] == pytest.approx(50.0)
    assert free['retail_delta'] == pytest.approx(50.0)
    assert free['retail_pct_change'] == 0.0

    retail_only = BulkPriceService.preview_row({'id': 'p3', 'price': 100.0, 'wholesale_price': 80.0},
                                               PriceRule('increase_pct', 10, wholesale_value=10))
    assert retail_only['new_wholesale'] is None


def test_preview_summary_and_pages():
    rule = _wholesale_rule(if_blank=True)
    rows = [
        BulkPriceService.preview_row({'id': 'a', 'price': 100.0, 'wholesale_price': 80.0}, rule),
        BulkPriceService.preview_row({'id': 'b', 'price': 200.0}, rule),
        BulkPriceService.preview_row({'id': 'c', 'price': 0}, PriceRule('increase_fixed', 5)),
    ]
    assert BulkPriceService.summary(rows) == {
        'count': 3,
        'total_retail_delta': pytest.approx(35.0),
        'avg_retail_pct_change': pytest.approx(6.67),
        'total_wholesale_delta': pytest.approx(162.0),  # +8 on 80, 154 from blank
    }
    assert BulkPriceService.summary([])['avg_retail_pct_change'] == 0.0

    first = BulkPriceService.paginate(rows, 0, page_size=2)
    assert [r['product']['id'] for r in first['rows']] == ['a', 'b']
    assert first['total_pages'] == 2
    clamped = BulkPriceService.paginate(rows, 9, page_size=2)
    assert clamped['page'] == 1
    assert [r['product']['id'] for r in clamped['rows']] == ['c']
    assert BulkPriceService.paginate([], 3) == {'rows': [], 'page': 0, 'total_pages': 0, 'page_size': 50}


def test_parse_tire_size():
    size = parse_tire_size('235/60R18')
    assert (size.width, size.aspect, size.rim) == (235, 60, 18)
    light_truck = parse_tire_size('LT275/70R18')
    assert (light_truck.width, light_truck.aspect, light_truck.rim) == (275, 70, 18)
    assert parse_tire_size('').rim is None


def test_tire_dimensions_and_compare():
    dims = tire_dimensions('235/60R18')
    assert dims['sidewall_height'] == pytest.approx(141.0, abs=0.1)
    assert dims['overall_diameter'] > dims['rim_diameter']
    assert tire_dimensions('not a size') is None

    diff = compare_sizes('245/60R18', '235/60R18')
    assert diff['width'] == 10
    assert diff['diameter'] > 0
    assert diff['speedometer_pct'] < 0
