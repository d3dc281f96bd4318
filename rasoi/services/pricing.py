import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, ROUND_CEILING
from typing import Iterable

from rasoi.config import settings

EARTH_RADIUS_KM = 6371.0


def _d(x) -> Decimal:
    # go through str to avoid float binary artifacts
    return x if isinstance(x, Decimal) else Decimal(str(x))

def _money(x: Decimal) -> Decimal:
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceLine:
    unit_price: Decimal
    qty: int


@dataclass(frozen=True)
class FeePolicy:
    mode: str = "FLAT"  # FLAT | DISTANCE
    flat_fee: Decimal = Decimal("0")
    rate_per_km: Decimal = Decimal("0")

    @classmethod
    def from_settings(cls) -> "FeePolicy":
        return cls(
            mode=settings.DELIVERY_FEE_MODE.upper(),
            flat_fee=_d(settings.DELIVERY_FLAT_FEE),
            rate_per_km=_d(settings.DELIVERY_RATE_PER_KM),
        )


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    discount_amount: Decimal
    delivery_fee: Decimal
    tax_amount: Decimal
    grand_total: Decimal

    def as_dict(self) -> dict:
        return {
            "subtotal": float(self.subtotal),
            "discount_amount": float(self.discount_amount),
            "delivery_fee": float(self.delivery_fee),
            "tax_amount": float(self.tax_amount),
            "grand_total": float(self.grand_total),
        }


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in km."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_from_origin(lat: float, lng: float) -> float:
    return haversine_km(settings.ORIGIN_LAT, settings.ORIGIN_LON, lat, lng)


def delivery_fee(policy: FeePolicy, distance_km: float | None) -> Decimal:
    if policy.mode == "DISTANCE":
        if distance_km is None:
            raise ValueError("distance-based delivery pricing needs a distance")
        return (_d(distance_km) * policy.rate_per_km).to_integral_value(rounding=ROUND_CEILING)
    return policy.flat_fee


def price_order(
    lines: Iterable[PriceLine],
    *,
    coupon_percent: int | None,
    fee_policy: FeePolicy,
    distance_km: float | None = None,
    tax_rate,
) -> PriceBreakdown:
    """
    Compute the price snapshot for an order. Pure; the same inputs always
    produce the same breakdown.

    Tax is charged on the pre-discount subtotal. The discount is rounded to a
    whole currency unit; the grand total is rounded to paise once, at the end.
    """
    subtotal = sum((_d(l.unit_price) * l.qty for l in lines), Decimal("0"))

    discount = Decimal("0")
    if coupon_percent:
        discount = (subtotal * coupon_percent / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    fee = delivery_fee(fee_policy, distance_km)
    tax = subtotal * _d(tax_rate)
    total = subtotal - discount + fee + tax

    return PriceBreakdown(
        subtotal=_money(subtotal),
        discount_amount=_money(discount),
        delivery_fee=_money(fee),
        tax_amount=_money(tax),
        grand_total=_money(total),
    )
