"""
Vendor catalog: static, read-only lookup from vendor id to Vendor.

The default catalog ships as data/vendors.json and is loaded lazily on first
use, then cached for the life of the process. Real vendor discovery would
replace load_default_catalog() with something that queries vendor APIs; the
rest of the system only sees the VendorCatalog interface.
"""
import hashlib
import json
from pathlib import Path
from threading import RLock

from autoprocure.models import Vendor

DEFAULT_CATALOG_PATH = Path(__file__).parent / "data" / "vendors.json"

_cache: dict[str, "VendorCatalog"] = {}
_cache_lock = RLock()


class VendorCatalog:
    """Vendors in a stable order. Lookups never raise; a miss is None."""

    def __init__(self, vendors: list[Vendor]):
        self._vendors = tuple(vendors)
        self._by_id = {v.id: v for v in self._vendors}
        if len(self._by_id) != len(self._vendors):
            raise ValueError("Vendor ids in a catalog must be unique")

    @classmethod
    def from_file(cls, path: str | Path) -> "VendorCatalog":
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return cls([Vendor.model_validate(entry) for entry in raw])

    def get_all(self) -> list[Vendor]:
        return list(self._vendors)

    def get_by_id(self, vendor_id: str) -> Vendor | None:
        return self._by_id.get(vendor_id)

    def get_by_price_range(self, min_price: float, max_price: float) -> list[Vendor]:
        return [v for v in self._vendors if min_price <= v.price_per_month <= max_price]

    def get_by_min_sla(self, min_sla: float) -> list[Vendor]:
        return [v for v in self._vendors if v.sla >= min_sla]

    def index_of(self, vendor_id: str) -> int:
        """Catalog position, used to break score ties deterministically."""
        for i, vendor in enumerate(self._vendors):
            if vendor.id == vendor_id:
                return i
        return len(self._vendors)

    @property
    def version(self) -> str:
        """Short content hash; changes whenever any vendor attribute changes."""
        canonical = json.dumps(
            [v.to_wire() for v in self._vendors], sort_keys=True, separators=(",", ":")
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:12]

    def __len__(self) -> int:
        return len(self._vendors)


def load_default_catalog() -> VendorCatalog:
    """Load the bundled catalog once; later calls return the cached instance."""
    with _cache_lock:
        if "default" not in _cache:
            _cache["default"] = VendorCatalog.from_file(DEFAULT_CATALOG_PATH)
        return _cache["default"]
