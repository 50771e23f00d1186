"""
Shipping rate resolution per seller group.

Each seller group becomes one synthetic parcel. Quotes for all groups are
requested concurrently; a failed or unserviceable group is marked blocked
without affecting the others. The cheapest option is selected by default and
the caller may override the selection per seller.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_CEILING
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from checkout.exceptions import ValidationError
from checkout.services.cart_service import SellerGroup
from checkout.utils.number_format import parse_decimal, money

logger = logging.getLogger(__name__)

# Height used when the packed volume rounds to nothing
MIN_PARCEL_HEIGHT = Decimal('10')

NOT_SERVICEABLE = 'not_serviceable'
TRANSIENT = 'transient'


@dataclass(frozen=True)
class Parcel:
    """Synthetic parcel for one seller group."""
    weight: Decimal
    length: Decimal
    breadth: Decimal
    height: Decimal
    volume: Decimal
    declared_value: Decimal

    def to_dict(self) -> Dict[str, str]:
        return {
            'weight': str(self.weight),
            'length': str(self.length),
            'breadth': str(self.breadth),
            'height': str(self.height),
            'declared_value': str(money(self.declared_value)),
        }


@dataclass(frozen=True)
class QuoteRequest:
    """Rate request sent to the courier aggregator for one seller."""
    seller_id: int
    pickup_postcode: str
    destination_postcode: str
    weight: Decimal
    length: Decimal
    breadth: Decimal
    height: Decimal
    declared_value: Decimal
    cash_on_delivery: bool = False


@dataclass(frozen=True)
class CourierOption:
    """One selectable courier quote."""
    courier_id: str
    courier_name: str
    rate: Decimal
    etd: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CourierOption':
        courier_id = data.get('courier_id') or data.get('courier_company_id') or data.get('id')
        if courier_id in (None, ''):
            raise ValueError('courier_id is required')
        return cls(
            courier_id=str(courier_id),
            courier_name=str(data.get('courier_name') or data.get('courier') or ''),
            rate=parse_decimal(data.get('rate'), 'rate'),
            etd=data.get('etd') or data.get('estimated_delivery') or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'courier_id': self.courier_id,
            'courier_name': self.courier_name,
            'rate': str(money(self.rate)),
            'etd': self.etd,
        }


@dataclass(frozen=True)
class QuoteOk:
    couriers: List[CourierOption]


@dataclass(frozen=True)
class NotServiceable:
    reason: str


@dataclass(frozen=True)
class TransientError:
    reason: str


QuoteResult = Union[QuoteOk, NotServiceable, TransientError]
QuoteFn = Callable[[QuoteRequest], QuoteResult]


@dataclass
class SellerShipping:
    """Shipping slot of one seller group: options, selection or error."""
    seller_id: int
    seller_name: Optional[str] = None
    parcel: Optional[Parcel] = None
    options: List[CourierOption] = field(default_factory=list)
    selected: Optional[CourierOption] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def is_blocked(self) -> bool:
        return self.error is not None or self.selected is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'seller_id': self.seller_id,
            'seller_name': self.seller_name,
            'parcel': self.parcel.to_dict() if self.parcel else None,
            'options': [o.to_dict() for o in self.options],
            'selected': self.selected.to_dict() if self.selected else None,
            'error': self.error,
            'error_kind': self.error_kind,
        }


@dataclass
class ShippingState:
    """Per-seller shipping slots for a whole cart."""
    sellers: Dict[int, SellerShipping] = field(default_factory=dict)

    @property
    def shipping_total(self) -> Decimal:
        return sum(
            (s.selected.rate for s in self.sellers.values() if s.selected and not s.error),
            Decimal('0'),
        )

    @property
    def can_checkout(self) -> bool:
        return bool(self.sellers) and not any(s.is_blocked for s in self.sellers.values())

    def blockers(self) -> List[Dict[str, Any]]:
        """Describe every seller that stops checkout and why."""
        out = []
        for s in self.sellers.values():
            if s.error:
                out.append({'seller_id': s.seller_id, 'seller_name': s.seller_name,
                            'reason': s.error, 'kind': s.error_kind})
            elif s.selected is None:
                out.append({'seller_id': s.seller_id, 'seller_name': s.seller_name,
                            'reason': 'No courier selected', 'kind': 'unselected'})
        return out

    def selections(self) -> Dict[int, CourierOption]:
        return {sid: s.selected for sid, s in self.sellers.items() if s.selected and not s.error}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sellers': [s.to_dict() for s in self.sellers.values()],
            'shipping_total': str(money(self.shipping_total)),
            'can_checkout': self.can_checkout,
            'blockers': self.blockers(),
        }


def build_parcel(group: SellerGroup) -> Parcel:
    """
    Pack a seller group into one parcel.

    Units ship in MOQ-sized packs stacked on a fixed base: the footprint is the
    largest length and breadth in the group and the height is whatever the
    stacked volume needs on that base.
    """
    if not group.lines:
        raise ValidationError(f'{group.label} has no items to ship')

    weight = Decimal('0')
    volume = Decimal('0')
    declared_value = Decimal('0')
    max_length = Decimal('0')
    max_breadth = Decimal('0')

    for line in group.lines:
        packs = line.packs
        pack = line.pack
        weight += pack.weight * packs
        volume += pack.length * pack.breadth * pack.height * packs
        declared_value += line.line_total
        max_length = max(max_length, pack.length)
        max_breadth = max(max_breadth, pack.breadth)

    if volume.to_integral_value() == 0:
        height = MIN_PARCEL_HEIGHT
    else:
        height = (volume / (max_length * max_breadth)).to_integral_value(rounding=ROUND_CEILING)

    return Parcel(
        weight=weight.quantize(Decimal('0.001')),
        length=max_length,
        breadth=max_breadth,
        height=height,
        volume=volume,
        declared_value=declared_value,
    )


def rank_couriers(couriers: Iterable[CourierOption], preferred: Optional[List[str]] = None,
                  limit: int = 3) -> List[CourierOption]:
    """
    Keep the cheapest ``limit`` couriers.

    When any preferred courier is available only preferred ones are offered;
    otherwise every courier competes.
    """
    couriers = list(couriers)
    if preferred:
        names = [p.lower() for p in preferred]
        premium = [c for c in couriers if any(n in c.courier_name.lower() for n in names)]
        if premium:
            couriers = premium
    return sorted(couriers, key=lambda c: c.rate)[:limit]


def _quote_seller(quote_fn: QuoteFn, request: QuoteRequest) -> QuoteResult:
    try:
        return quote_fn(request)
    except Exception as e:
        logger.exception(f"Shipping quote failed for seller {request.seller_id}")
        return TransientError(f'Rate service error: {e}')


def resolve_shipping(
    groups: Dict[int, SellerGroup],
    destination_pincode: str,
    quote_fn: QuoteFn,
    pickup_pincodes: Dict[int, Optional[str]],
    max_workers: int = 8,
    max_options: int = 3,
    preferred: Optional[List[str]] = None,
    cash_on_delivery: bool = False,
) -> ShippingState:
    """
    Quote every seller group concurrently and wait for all of them to settle.

    Args:
        groups: seller_id -> SellerGroup from the cart aggregator
        destination_pincode: buyer's delivery postal code
        quote_fn: collaborator returning QuoteOk / NotServiceable / TransientError
        pickup_pincodes: seller_id -> seller pickup postal code
        max_workers: thread pool size
        max_options: options kept per seller, cheapest first
        preferred: courier names preferred when available

    Returns:
        ShippingState with the cheapest option pre-selected for each seller.
    """
    destination_pincode = (destination_pincode or '').strip()
    if not destination_pincode:
        raise ValidationError('Delivery pincode is required')

    state = ShippingState()
    requests_by_seller: Dict[int, QuoteRequest] = {}

    for seller_id, group in groups.items():
        parcel = build_parcel(group)
        slot = SellerShipping(seller_id=seller_id, seller_name=group.seller_name, parcel=parcel)
        state.sellers[seller_id] = slot

        pickup = pickup_pincodes.get(seller_id)
        if not pickup:
            slot.error = 'Seller pickup pincode not found'
            slot.error_kind = NOT_SERVICEABLE
            continue

        requests_by_seller[seller_id] = QuoteRequest(
            seller_id=seller_id,
            pickup_postcode=str(pickup),
            destination_postcode=destination_pincode,
            weight=parcel.weight,
            length=parcel.length,
            breadth=parcel.breadth,
            height=parcel.height,
            declared_value=money(parcel.declared_value),
            cash_on_delivery=cash_on_delivery,
        )

    if requests_by_seller:
        workers = max(1, min(max_workers, len(requests_by_seller)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='quote') as pool:
            futures = {
                seller_id: pool.submit(_quote_seller, quote_fn, request)
                for seller_id, request in requests_by_seller.items()
            }
            results = {seller_id: future.result() for seller_id, future in futures.items()}

        for seller_id, result in results.items():
            _apply_result(state.sellers[seller_id], result, preferred, max_options)

    logger.info(
        f"Resolved shipping for {len(state.sellers)} sellers to {destination_pincode}: "
        f"total={state.shipping_total} can_checkout={state.can_checkout}"
    )
    return state


def _apply_result(slot: SellerShipping, result: QuoteResult, preferred, max_options) -> None:
    if isinstance(result, QuoteOk):
        options = rank_couriers(result.couriers, preferred, max_options)
        if options:
            slot.options = options
            slot.selected = options[0]
            return
        slot.error = 'No courier available for this route'
        slot.error_kind = NOT_SERVICEABLE
    elif isinstance(result, NotServiceable):
        slot.error = result.reason or 'Not serviceable'
        slot.error_kind = NOT_SERVICEABLE
    else:
        slot.error = result.reason or 'Rate service unavailable'
        slot.error_kind = TRANSIENT
    logger.warning(f"Seller {slot.seller_id} shipping blocked: {slot.error}")


def select_courier(state: ShippingState, seller_id: int, courier_id: str) -> CourierOption:
    """Override the selection of one seller with one of its offered options."""
    slot = state.sellers.get(seller_id)
    if slot is None:
        raise ValidationError(f'Seller {seller_id} is not part of this cart')
    if slot.error:
        raise ValidationError(f'Shipping for {slot.seller_name or seller_id} is unavailable: {slot.error}')

    for option in slot.options:
        if option.courier_id == str(courier_id):
            slot.selected = option
            return option
    raise ValidationError(
        f'Courier {courier_id} is not offered for {slot.seller_name or seller_id}',
        payload={'seller_id': seller_id, 'courier_id': str(courier_id)},
    )


def parse_selections(payload: Optional[Dict[str, Any]]) -> Dict[int, CourierOption]:
    """Parse ``{seller_id: {courier_id, courier_name, rate, etd}}`` from a request."""
    selections: Dict[int, CourierOption] = {}
    for raw_seller, raw_option in (payload or {}).items():
        try:
            selections[int(raw_seller)] = CourierOption.from_dict(raw_option or {})
        except (TypeError, ValueError) as e:
            raise ValidationError(f'Invalid courier selection for seller {raw_seller}: {e}')
    return selections
