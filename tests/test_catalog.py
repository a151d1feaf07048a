import json

import pytest

from autoprocure.catalog import DEFAULT_CATALOG_PATH, VendorCatalog, load_default_catalog
from autoprocure.models import Vendor


def _vendor(vendor_id, price=100.0, sla=99.0, reputation=8.0):
    return Vendor(
        id=vendor_id,
        name=f"Vendor {vendor_id}",
        description="test vendor",
        service_type="analytics",
        price_per_month=price,
        sla=sla,
        reputation_score=reputation,
        features=("a", "b"),
        contact_email=f"{vendor_id}@example.com",
    )


class TestDefaultCatalog:
    def test_loads_five_vendors_in_file_order(self, catalog):
        assert len(catalog) == 5
        assert [v.id for v in catalog.get_all()] == [
            "vendor_1", "vendor_2", "vendor_3", "vendor_4", "vendor_5",
        ]

    def test_reads_camel_case_attributes(self, catalog):
        vendor = catalog.get_by_id("vendor_2")
        assert vendor.name == "BlockInsight API"
        assert vendor.price_per_month == 380
        assert vendor.sla == 99.5
        assert vendor.reputation_score == 8.8

    def test_is_cached(self):
        assert load_default_catalog() is load_default_catalog()

    def test_bundled_file_is_present(self):
        with open(DEFAULT_CATALOG_PATH, encoding="utf-8") as f:
            assert len(json.load(f)) == 5


class TestLookups:
    def test_get_by_id_miss_returns_none(self, catalog):
        assert catalog.get_by_id("vendor_99") is None

    def test_price_range_is_inclusive(self, catalog):
        ids = [v.id for v in catalog.get_by_price_range(280, 450)]
        assert ids == ["vendor_1", "vendor_2", "vendor_3"]

    def test_min_sla(self, catalog):
        ids = [v.id for v in catalog.get_by_min_sla(99.5)]
        assert ids == ["vendor_1", "vendor_2", "vendor_4"]

    def test_get_all_returns_a_copy(self, catalog):
        vendors = catalog.get_all()
        vendors.clear()
        assert len(catalog) == 5

    def test_index_of_unknown_sorts_last(self, catalog):
        assert catalog.index_of("vendor_3") == 2
        assert catalog.index_of("nope") == 5


class TestCatalogConstruction:
    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValueError, match="unique"):
            VendorCatalog([_vendor("a"), _vendor("a")])

    def test_from_file(self, tmp_path):
        path = tmp_path / "vendors.json"
        path.write_text(json.dumps([_vendor("x").to_wire()]))
        catalog = VendorCatalog.from_file(path)
        assert catalog.get_by_id("x").contact_email == "x@example.com"

    def test_version_tracks_content(self):
        first = VendorCatalog([_vendor("a"), _vendor("b")])
        same = VendorCatalog([_vendor("a"), _vendor("b")])
        repriced = VendorCatalog([_vendor("a"), _vendor("b", price=101.0)])
        assert first.version == same.version
        assert first.version != repriced.version
        assert len(first.version) == 12
