"""
Cart aggregation - pure logic, no database and no HTTP.

Groups cart lines by seller, computes subtotals and enforces the per-seller
minimum order value. Everything here is recomputed from the current cart on
every mutation; nothing is persisted.
"""
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict, List, Optional

from checkout.exceptions import MinimumOrderError, ValidationError
from checkout.utils.number_format import parse_decimal, money

# Fallback pack dimensions when the catalogue has none (kg / cm)
DEFAULT_PACK_WEIGHT = Decimal('0.5')
DEFAULT_PACK_SIDE = Decimal('10')


def _whole_number(value, field: str) -> int:
    """Integer count from a payload value; fractional counts are rejected."""
    number = parse_decimal(value, field, allow_negative=True)
    if number != number.to_integral_value():
        raise ValueError(f'{field} must be a whole number')
    return int(number)


@dataclass(frozen=True)
class PackDimensions:
    """Weight and size of one MOQ pack."""
    weight: Decimal = DEFAULT_PACK_WEIGHT
    length: Decimal = DEFAULT_PACK_SIDE
    breadth: Decimal = DEFAULT_PACK_SIDE
    height: Decimal = DEFAULT_PACK_SIDE

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'PackDimensions':
        data = data or {}
        values = {}
        for name, default in (('weight', DEFAULT_PACK_WEIGHT), ('length', DEFAULT_PACK_SIDE),
                              ('breadth', DEFAULT_PACK_SIDE), ('height', DEFAULT_PACK_SIDE)):
            raw = data.get(name)
            value = parse_decimal(raw, name) if raw not in (None, '') else default
            values[name] = value if value > 0 else default
        return cls(**values)

    def to_dict(self) -> Dict[str, str]:
        return {
            'weight': str(self.weight),
            'length': str(self.length),
            'breadth': str(self.breadth),
            'height': str(self.height),
        }


@dataclass(frozen=True)
class CartLine:
    """One product line from one seller."""
    product_id: str
    seller_id: int
    unit_price: Decimal
    base_cost: Decimal
    quantity: int
    moq: int = 1
    pack: PackDimensions = field(default_factory=PackDimensions)
    tax_rate: Decimal = Decimal('0')
    seller_name: Optional[str] = None
    product_name: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def packs(self) -> Decimal:
        """Number of MOQ packs the quantity ships in."""
        return Decimal(self.quantity) / Decimal(self.moq)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CartLine':
        """
        Build a line from a JSON payload.

        Raises:
            ValidationError: if a required field is missing or malformed.
        """
        try:
            product_id = str(data.get('product_id') or '').strip()
            if not product_id:
                raise ValueError('product_id is required')

            seller_raw = data.get('seller_id')
            if seller_raw in (None, ''):
                raise ValueError('seller_id is required')
            seller_id = int(seller_raw)

            quantity = _whole_number(data.get('quantity'), 'quantity')
            if quantity <= 0:
                raise ValueError('quantity must be greater than 0')

            moq_raw = data.get('moq')
            moq = _whole_number(moq_raw, 'moq') if moq_raw not in (None, '') else 1
            if moq <= 0:
                raise ValueError('moq must be greater than 0')

            unit_price = parse_decimal(data.get('unit_price'), 'unit_price')
            base_raw = data.get('base_cost')
            base_cost = parse_decimal(base_raw, 'base_cost') if base_raw not in (None, '') else unit_price
            tax_raw = data.get('tax_rate')
            tax_rate = parse_decimal(tax_raw, 'tax_rate') if tax_raw not in (None, '') else Decimal('0')

            return cls(
                product_id=product_id,
                seller_id=seller_id,
                unit_price=unit_price,
                base_cost=base_cost,
                quantity=quantity,
                moq=moq,
                pack=PackDimensions.from_dict(data.get('pack_dimensions')),
                tax_rate=tax_rate,
                seller_name=data.get('seller_name') or None,
                product_name=data.get('product_name') or None,
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f'Invalid cart line: {e}', payload={'line': data})

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'seller_id': self.seller_id,
            'seller_name': self.seller_name,
            'product_name': self.product_name,
            'unit_price': str(self.unit_price),
            'base_cost': str(self.base_cost),
            'quantity': self.quantity,
            'moq': self.moq,
            'pack_dimensions': self.pack.to_dict(),
            'tax_rate': str(self.tax_rate),
        }


@dataclass
class SellerGroup:
    """All lines of one seller. Derived, never persisted."""
    seller_id: int
    lines: List[CartLine] = field(default_factory=list)
    seller_name: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal('0'))

    @property
    def label(self) -> str:
        return self.seller_name or f'Seller {self.seller_id}'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'seller_id': self.seller_id,
            'seller_name': self.seller_name,
            'subtotal': str(money(self.subtotal)),
            'lines': [line.to_dict() for line in self.lines],
        }


@dataclass(frozen=True)
class MinimumOrderViolation:
    """A seller group below the minimum order value."""
    seller_id: int
    seller_name: Optional[str]
    subtotal: Decimal
    threshold: Decimal

    @property
    def shortfall(self) -> Decimal:
        return self.threshold - self.subtotal

    @property
    def seller_label(self) -> str:
        return self.seller_name or f'Seller {self.seller_id}'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'seller_id': self.seller_id,
            'seller_name': self.seller_name,
            'subtotal': str(money(self.subtotal)),
            'threshold': str(money(self.threshold)),
            'shortfall': str(money(self.shortfall)),
        }


@dataclass
class CartSummary:
    """Result of aggregating a cart."""
    groups: Dict[int, SellerGroup]
    min_order: Decimal
    violations: List[MinimumOrderViolation] = field(default_factory=list)

    @property
    def grand_total(self) -> Decimal:
        return sum((g.subtotal for g in self.groups.values()), Decimal('0'))

    @property
    def lines(self) -> List[CartLine]:
        return [line for group in self.groups.values() for line in group.lines]

    @property
    def can_checkout(self) -> bool:
        return bool(self.groups) and not self.violations

    def to_dict(self) -> Dict[str, Any]:
        return {
            'groups': [g.to_dict() for g in self.groups.values()],
            'grand_total': str(money(self.grand_total)),
            'min_order_per_seller': str(money(self.min_order)),
            'violations': [v.to_dict() for v in self.violations],
            'can_checkout': self.can_checkout,
        }


def parse_cart_lines(items: Optional[List[Dict[str, Any]]]) -> List[CartLine]:
    """Parse a raw JSON cart. Raises ValidationError on an empty cart."""
    if not items:
        raise ValidationError('Your cart is empty')
    if not isinstance(items, list):
        raise ValidationError('items must be a list')
    return [CartLine.from_dict(item) for item in items]


def group_by_seller(lines: List[CartLine]) -> Dict[int, SellerGroup]:
    """Group lines by seller, keeping first-seen seller order and line order."""
    groups: Dict[int, SellerGroup] = {}
    for line in lines:
        group = groups.get(line.seller_id)
        if group is None:
            group = SellerGroup(seller_id=line.seller_id, seller_name=line.seller_name)
            groups[line.seller_id] = group
        elif not group.seller_name and line.seller_name:
            group.seller_name = line.seller_name
        group.lines.append(line)
    return groups


def aggregate_cart(lines: List[CartLine], min_order: Decimal) -> CartSummary:
    """
    Group a cart by seller and evaluate the minimum order rule.

    The threshold is the same for every seller regardless of item count.
    """
    min_order = Decimal(str(min_order))
    groups = group_by_seller(lines)
    violations = [
        MinimumOrderViolation(
            seller_id=group.seller_id,
            seller_name=group.seller_name,
            subtotal=group.subtotal,
            threshold=min_order,
        )
        for group in groups.values()
        if group.subtotal < min_order
    ]
    return CartSummary(groups=groups, min_order=min_order, violations=violations)


def ensure_minimum_order(summary: CartSummary) -> None:
    """Raise MinimumOrderError when any seller group is below the threshold."""
    if summary.violations:
        raise MinimumOrderError(summary.violations)


class CartState:
    """
    Explicit cart value for one shopping session.

    Lines are keyed by product id; adding an existing product merges the
    quantity. Mutations return nothing and callers re-run ``summary()``.
    """

    def __init__(self, lines: Optional[List[CartLine]] = None):
        self._lines: Dict[str, CartLine] = {}
        for line in lines or []:
            self.add_item(line)

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    def __len__(self):
        return len(self._lines)

    def add_item(self, line: CartLine) -> None:
        existing = self._lines.get(line.product_id)
        if existing:
            self._lines[line.product_id] = replace(existing, quantity=existing.quantity + line.quantity)
        else:
            self._lines[line.product_id] = line

    def remove_item(self, product_id: str) -> None:
        self._lines.pop(product_id, None)

    def update_quantity(self, product_id: str, quantity: int) -> None:
        """Set a line's quantity; zero or less removes the line."""
        line = self._lines.get(product_id)
        if line is None:
            raise ValidationError(f'Product {product_id} is not in the cart')
        if quantity <= 0:
            self.remove_item(product_id)
            return
        self._lines[product_id] = replace(line, quantity=quantity)

    def clear(self) -> None:
        self._lines.clear()

    def total(self) -> Decimal:
        return sum((line.line_total for line in self._lines.values()), Decimal('0'))

    def summary(self, min_order: Decimal) -> CartSummary:
        return aggregate_cart(self.lines, min_order)
