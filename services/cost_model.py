from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Union

DEFAULT_SIZE_CLASS = "default"

# Fraction of the monthly server price charged per GB over the allowance.
BANDWIDTH_OVERAGE_RATE = Decimal("0.005")

# Dollars per GB per hour, margin included.
VOLUME_HOURLY_RATE_PER_GB = Decimal("0.00014071")
MAX_VOLUME_SIZE_GB = 10000

BYTES_PER_GB = 1024 ** 3


@dataclass(frozen=True)
class SizeClass:
    slug: str
    hourly_price_cents: int
    monthly_price: Decimal
    included_bandwidth_gb: int

    @property
    def overage_price_per_gb(self) -> Decimal:
        return self.monthly_price * BANDWIDTH_OVERAGE_RATE


_SIZE_TABLE = [
    # slug, cents/hour, $/month, included GB/month
    ("s-1vcpu-512mb-10gb", 3, "2", 500),
    ("s-1vcpu-1gb", 7, "5", 1000),
    ("s-1vcpu-1gb-25gb", 7, "5", 1000),
    ("s-1vcpu-2gb", 14, "10", 2000),
    ("s-1vcpu-2gb-50gb", 14, "10", 2000),
    ("s-2vcpu-2gb", 18, "15", 3000),
    ("s-2vcpu-4gb", 28, "20", 4000),
    ("s-2vcpu-4gb-80gb", 28, "20", 4000),
    ("s-4vcpu-8gb", 56, "40", 5000),
    ("s-4vcpu-8gb-intel", 63, "48", 5000),
    ("s-8vcpu-16gb", 112, "80", 6000),
    ("c-2", 35, "40", 4000),
    ("c-4", 70, "80", 5000),
    ("c-8", 140, "160", 6000),
    ("g-2vcpu-8gb", 60, "60", 4000),
    ("g-4vcpu-16gb", 120, "120", 5000),
    ("g-8vcpu-32gb", 240, "240", 6000),
    (DEFAULT_SIZE_CLASS, 7, "5", 1000),
]

SIZE_CLASSES = {
    slug: SizeClass(slug, cents, Decimal(monthly), bandwidth)
    for slug, cents, monthly, bandwidth in _SIZE_TABLE
}


def to_cents(dollars: Union[int, float, str, Decimal]) -> int:
    if not isinstance(dollars, Decimal):
        dollars = Decimal(str(dollars))
    return int((dollars * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def get_size_class(size: str) -> SizeClass:
    return SIZE_CLASSES.get(size) or SIZE_CLASSES[DEFAULT_SIZE_CLASS]


def list_size_classes() -> List[SizeClass]:
    return [s for slug, s in SIZE_CLASSES.items() if slug != DEFAULT_SIZE_CLASS]


def hourly_price(size: str) -> int:
    return get_size_class(size).hourly_price_cents


def monthly_price(size: str) -> Decimal:
    return get_size_class(size).monthly_price


def included_bandwidth_gb(size: str) -> int:
    return get_size_class(size).included_bandwidth_gb


def overage_price_per_gb(size: str) -> Decimal:
    return get_size_class(size).overage_price_per_gb


def bandwidth_overage_cents(size: str, overage_gb: Union[float, Decimal]) -> int:
    if overage_gb <= 0:
        return 0
    return to_cents(Decimal(str(overage_gb)) * overage_price_per_gb(size))


def volume_hourly_cost_cents(total_gb: Union[int, float, Decimal]) -> int:
    if total_gb <= 0:
        return 0
    return to_cents(Decimal(str(total_gb)) * VOLUME_HOURLY_RATE_PER_GB)
