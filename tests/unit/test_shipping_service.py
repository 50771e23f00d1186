"""
Unit tests for parcel building and concurrent shipping resolution.
"""

import threading
import pytest
from decimal import Decimal

from checkout.exceptions import ValidationError
from checkout.services.cart_service import CartLine, PackDimensions, SellerGroup
from checkout.services.shipping_service import (
    NOT_SERVICEABLE, TRANSIENT, CourierOption, NotServiceable, QuoteOk, TransientError,
    build_parcel, parse_selections, rank_couriers, resolve_shipping, select_courier
)


def group(seller_id, *lines, name=None):
    return SellerGroup(seller_id=seller_id, lines=list(lines), seller_name=name)


def line(product_id, seller_id, quantity, moq=1, pack=None, unit_price='100'):
    return CartLine(
        product_id=product_id,
        seller_id=seller_id,
        unit_price=Decimal(unit_price),
        base_cost=Decimal(unit_price),
        quantity=quantity,
        moq=moq,
        pack=pack or PackDimensions(),
    )


def option(cid, name, rate):
    return CourierOption(courier_id=str(cid), courier_name=name, rate=Decimal(str(rate)))


class TestBuildParcel:
    """Synthetic parcel per seller group."""

    def test_weight_and_volume_scale_with_packs(self):
        pack = PackDimensions(weight=Decimal('2'), length=Decimal('20'), breadth=Decimal('10'), height=Decimal('5'))
        parcel = build_parcel(group(1, line('p1', 1, 30, moq=10, pack=pack)))

        assert parcel.weight == Decimal('6.000')
        assert parcel.volume == Decimal('3000')
        assert parcel.length == Decimal('20')
        assert parcel.breadth == Decimal('10')
        assert parcel.height == Decimal('15')

    def test_height_rounds_up_on_largest_footprint(self):
        small = PackDimensions(weight=Decimal('1'), length=Decimal('10'), breadth=Decimal('10'), height=Decimal('10'))
        large = PackDimensions(weight=Decimal('1'), length=Decimal('30'), breadth=Decimal('20'), height=Decimal('7'))
        parcel = build_parcel(group(1, line('p1', 1, 1, pack=small), line('p2', 1, 1, pack=large)))

        # (1000 + 4200) / (30 * 20) = 8.67 -> 9
        assert parcel.length == Decimal('30')
        assert parcel.breadth == Decimal('20')
        assert parcel.height == Decimal('9')

    def test_declared_value_is_group_subtotal(self):
        parcel = build_parcel(group(1, line('p1', 1, 3, unit_price='250'), line('p2', 1, 1, unit_price='50')))

        assert parcel.declared_value == Decimal('800')


class TestRankCouriers:
    """Preferred couriers and option limit."""

    def test_preferred_only_when_available(self):
        couriers = [option(1, 'Cheap Local', 40), option(2, 'Delhivery Surface', 80), option(3, 'Blue Dart Air', 120)]
        ranked = rank_couriers(couriers, ['Delhivery', 'Blue Dart'], limit=3)

        assert [c.courier_id for c in ranked] == ['2', '3']

    def test_falls_back_to_all_when_no_preferred(self):
        couriers = [option(1, 'B', 90), option(2, 'A', 40), option(3, 'C', 70), option(4, 'D', 100)]
        ranked = rank_couriers(couriers, ['Delhivery'], limit=3)

        assert [c.courier_id for c in ranked] == ['2', '3', '1']


class TestResolveShipping:
    """Concurrent per-seller quoting with failure isolation."""

    def test_one_failure_does_not_block_others(self):
        groups = {1: group(1, line('p1', 1, 1)), 2: group(2, line('p2', 2, 1)), 3: group(3, line('p3', 3, 1))}

        def quote_fn(request):
            if request.seller_id == 2:
                return NotServiceable('No courier for this route')
            if request.seller_id == 3:
                return TransientError('timeout')
            return QuoteOk([option(9, 'Delhivery', 120), option(8, 'DTDC', 90)])

        state = resolve_shipping(groups, '560001', quote_fn, {1: '110001', 2: '400001', 3: '600001'})

        assert state.sellers[1].selected.courier_id == '8'
        assert state.sellers[2].error_kind == NOT_SERVICEABLE
        assert state.sellers[3].error_kind == TRANSIENT
        assert state.can_checkout is False
        assert state.shipping_total == Decimal('90')
        assert {b['seller_id'] for b in state.blockers()} == {2, 3}

    def test_quote_exception_becomes_transient_error(self):
        def quote_fn(request):
            raise RuntimeError('boom')

        state = resolve_shipping({1: group(1, line('p1', 1, 1))}, '560001', quote_fn, {1: '110001'})

        assert state.sellers[1].error_kind == TRANSIENT

    def test_missing_pickup_pincode_is_not_serviceable(self):
        calls = []

        def quote_fn(request):
            calls.append(request.seller_id)
            return QuoteOk([option(1, 'Delhivery', 50)])

        state = resolve_shipping({1: group(1, line('p1', 1, 1))}, '560001', quote_fn, {1: None})

        assert calls == []
        assert state.sellers[1].error_kind == NOT_SERVICEABLE

    def test_quotes_run_concurrently(self):
        groups = {sid: group(sid, line(f'p{sid}', sid, 1)) for sid in range(1, 5)}
        started = []
        barrier = threading.Barrier(4, timeout=5)

        def quote_fn(request):
            started.append(request.seller_id)
            barrier.wait()
            return QuoteOk([option(1, 'Delhivery', 50)])

        state = resolve_shipping(groups, '560001', quote_fn, {sid: '110001' for sid in groups}, max_workers=4)

        assert sorted(started) == [1, 2, 3, 4]
        assert state.can_checkout is True
        assert state.shipping_total == Decimal('200')

    def test_missing_destination_is_rejected(self):
        with pytest.raises(ValidationError):
            resolve_shipping({1: group(1, line('p1', 1, 1))}, '', lambda r: None, {1: '110001'})

    def test_request_carries_parcel(self):
        seen = {}

        def quote_fn(request):
            seen['request'] = request
            return QuoteOk([option(1, 'Delhivery', 50)])

        resolve_shipping({1: group(1, line('p1', 1, 2))}, '560001', quote_fn, {1: '110001'}, cash_on_delivery=True)

        request = seen['request']
        assert request.pickup_postcode == '110001'
        assert request.destination_postcode == '560001'
        assert request.weight == Decimal('1.000')
        assert request.cash_on_delivery is True


class TestSelectCourier:
    """Overriding the default cheapest selection."""

    def _state(self):
        return resolve_shipping(
            {1: group(1, line('p1', 1, 1))}, '560001',
            lambda r: QuoteOk([option(1, 'Delhivery', 50), option(2, 'Blue Dart', 80)]),
            {1: '110001'},
        )

    def test_select_offered_courier(self):
        state = self._state()
        chosen = select_courier(state, 1, '2')

        assert chosen.rate == Decimal('80')
        assert state.shipping_total == Decimal('80')

    def test_select_unknown_courier_fails(self):
        with pytest.raises(ValidationError):
            select_courier(self._state(), 1, '99')

    def test_select_unknown_seller_fails(self):
        with pytest.raises(ValidationError):
            select_courier(self._state(), 42, '1')


def test_parse_selections():
    selections = parse_selections({'3': {'courier_company_id': 12, 'courier_name': 'DTDC', 'rate': '75.5'}})

    assert selections[3].courier_id == '12'
    assert selections[3].rate == Decimal('75.5')


def test_parse_selections_rejects_bad_rate():
    with pytest.raises(ValidationError):
        parse_selections({'3': {'courier_id': 1, 'rate': 'abc'}})
