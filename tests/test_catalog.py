"""Tests for catalog listing, facets and product lookups."""

from decimal import Decimal

import pytest

from catalog import (
    BrandIs, PriceRange, StockPresence, TextMatch, TypeIs, VolumeIs, parse_catalog_query, resolve_sort
)


@pytest.fixture
def catalog_products(make_product):
    """A small mixed catalog: two brands in stock, one product sold out."""
    return {
        "helix": make_product(
            sku="OIL-SHELL-001", name="Shell Helix Ultra 5W-40", brand="Shell", type="synthetic",
            viscosity="5W-40", volume_ml=4000, application="universal", price="3499.99", stock=50,
        ),
        "edge": make_product(
            sku="OIL-CASTROL-002", name="Castrol Edge 5W-30", brand="Castrol", type="synthetic",
            viscosity="5W-30", volume_ml=5000, application="petrol", price="4199.99", stock=30,
        ),
        "magnatec": make_product(
            sku="OIL-CASTROL-003", name="Castrol Magnatec 10W-40", brand="Castrol", type="semi-synthetic",
            viscosity="10W-40", volume_ml=1000, application="petrol", price="1899.99", stock=5,
        ),
        "rimula": make_product(
            sku="OIL-LUKOIL-004", name="Lukoil Avangard 15W-40", brand="Lukoil", type="mineral",
            viscosity="15W-40", volume_ml=20000, application="diesel", price="899.50", stock=0,
        ),
    }


class TestParseCatalogQuery:
    def test_defaults(self):
        query = parse_catalog_query({})
        assert query.filters == []
        assert query.sort_by == "createdAt"
        assert query.sort_order == "desc"
        assert query.page == 1
        assert query.limit == 12

    def test_builds_one_filter_per_dimension(self):
        query = parse_catalog_query({
            "q": "helix", "type": "synthetic", "brand": "Shell", "volume": "4000",
            "minPrice": "100", "inStock": "true",
        })
        kinds = [type(f) for f in query.filters]
        assert TextMatch in kinds
        assert TypeIs("synthetic") in query.filters
        assert BrandIs("Shell") in query.filters
        assert VolumeIs(4000) in query.filters
        assert PriceRange(Decimal("100"), None) in query.filters
        assert StockPresence(True) in query.filters

    def test_bad_numbers_are_ignored(self):
        query = parse_catalog_query({
            "volume": "lots", "minPrice": "cheap", "maxPrice": "", "page": "abc", "limit": "-5",
        })
        assert query.filters == []
        assert query.page == 1
        assert query.limit == 12

    def test_integers_beyond_column_range_are_ignored(self):
        huge = "99999999999999999999"
        query = parse_catalog_query({"volume": huge, "page": huge, "limit": huge})
        assert query.filters == []
        assert query.page == 1
        assert query.limit == 12

    def test_offset_is_capped(self):
        query = parse_catalog_query({"page": str(2 ** 62), "limit": "1000"})
        assert query.offset == 2 ** 63 - 1

    def test_in_stock_only_accepts_true_or_false(self):
        assert parse_catalog_query({"inStock": "yes"}).stock_filter() is None
        assert parse_catalog_query({"inStock": "false"}).stock_filter() == StockPresence(False)

    @pytest.mark.parametrize("sort_by,sort_order,expected", [
        ("price", "asc", ("price", "asc")),
        ("password", "asc", ("createdAt", "asc")),
        ("name", "sideways", ("name", "desc")),
        (None, None, ("createdAt", "desc")),
    ])
    def test_resolve_sort(self, sort_by, sort_order, expected):
        assert resolve_sort(sort_by, sort_order) == expected


class TestListProducts:
    def test_lists_everything_newest_first(self, client, catalog_products):
        response = client.get("/api/products")
        assert response.status_code == 200
        data = response.json()
        assert data["meta"] == {"page": 1, "limit": 12, "total": 4, "pages": 1}
        # same created_at second -> ties broken by id, newest id first
        assert [p["id"] for p in data["data"]] == sorted(catalog_products.values(), reverse=True)

    def test_text_search_matches_any_field_case_insensitive(self, client, catalog_products):
        by_name = client.get("/api/products", params={"q": "magnatec"}).json()
        assert [p["id"] for p in by_name["data"]] == [catalog_products["magnatec"]]

        by_sku = client.get("/api/products", params={"q": "lukoil-004"}).json()
        assert [p["id"] for p in by_sku["data"]] == [catalog_products["rimula"]]

        by_application = client.get("/api/products", params={"q": "DIESEL"}).json()
        assert by_application["meta"]["total"] == 1

    def test_exact_filters_are_combined(self, client, catalog_products):
        data = client.get("/api/products", params={"brand": "Castrol", "type": "synthetic"}).json()
        assert [p["id"] for p in data["data"]] == [catalog_products["edge"]]

        data = client.get("/api/products", params={"volume": "1000"}).json()
        assert [p["id"] for p in data["data"]] == [catalog_products["magnatec"]]

        data = client.get("/api/products", params={"viscosity": "5W"}).json()
        assert data["meta"]["total"] == 0

    def test_price_range_is_inclusive(self, client, catalog_products):
        data = client.get("/api/products", params={"minPrice": "1899.99", "maxPrice": "3499.99"}).json()
        assert {p["id"] for p in data["data"]} == {catalog_products["helix"], catalog_products["magnatec"]}

        data = client.get("/api/products", params={"maxPrice": "1000"}).json()
        assert [p["id"] for p in data["data"]] == [catalog_products["rimula"]]

    def test_stock_presence(self, client, catalog_products):
        in_stock = client.get("/api/products", params={"inStock": "true"}).json()
        assert catalog_products["rimula"] not in [p["id"] for p in in_stock["data"]]
        assert in_stock["meta"]["total"] == 3

        sold_out = client.get("/api/products", params={"inStock": "false"}).json()
        assert [p["id"] for p in sold_out["data"]] == [catalog_products["rimula"]]

    def test_sort_by_price(self, client, catalog_products):
        data = client.get("/api/products", params={"sortBy": "price", "sortOrder": "asc"}).json()
        prices = [p["price"] for p in data["data"]]
        assert prices == sorted(prices)
        assert prices[0] == 899.5

    def test_unknown_sort_field_falls_back(self, client, catalog_products):
        response = client.get("/api/products", params={"sortBy": "stock; DROP TABLE products"})
        assert response.status_code == 200
        assert response.json()["meta"]["total"] == 4

    def test_pagination(self, client, catalog_products):
        first = client.get("/api/products", params={"limit": "3", "sortBy": "name", "sortOrder": "asc"}).json()
        second = client.get("/api/products", params={"limit": "3", "page": "2", "sortBy": "name", "sortOrder": "asc"}).json()

        assert first["meta"] == {"page": 1, "limit": 3, "total": 4, "pages": 2}
        assert len(first["data"]) == 3
        assert len(second["data"]) == 1
        assert second["data"][0]["name"] == "Shell Helix Ultra 5W-40"

    @pytest.mark.parametrize("params", [
        {"page": "99999999999999999999"},
        {"limit": "99999999999999999999"},
        {"volume": "99999999999999999999"},
        {"volume": "-99999999999999999999"},
    ])
    def test_oversized_numbers_fall_back(self, client, catalog_products, params):
        response = client.get("/api/products", params=params)
        assert response.status_code == 200
        assert response.json()["meta"]["total"] == 4

    def test_far_page_is_empty(self, client, catalog_products):
        response = client.get("/api/products", params={"page": str(2 ** 62), "limit": "1000"})
        assert response.status_code == 200
        assert response.json()["data"] == []

    def test_empty_catalog(self, client):
        data = client.get("/api/products").json()
        assert data["data"] == []
        assert data["meta"]["pages"] == 0
        assert data["filters"]["priceRange"] == {"min": 0, "max": 0}


class TestFacets:
    def test_full_catalog_facets(self, client, catalog_products):
        filters = client.get("/api/products").json()["filters"]
        assert filters["brands"] == ["Castrol", "Lukoil", "Shell"]
        assert filters["types"] == ["mineral", "semi-synthetic", "synthetic"]
        assert filters["viscosities"] == ["10W-40", "15W-40", "5W-30", "5W-40"]
        assert filters["applications"] == ["diesel", "petrol", "universal"]
        assert filters["volumes"] == [1000, 4000, 5000, 20000]

    def test_in_stock_facets_only_show_in_stock_values(self, client, catalog_products):
        filters = client.get("/api/products", params={"inStock": "true"}).json()["filters"]
        assert "Lukoil" not in filters["brands"]
        assert "mineral" not in filters["types"]
        assert "diesel" not in filters["applications"]
        assert 20000 not in filters["volumes"]

    def test_facets_ignore_non_stock_filters(self, client, catalog_products):
        filters = client.get("/api/products", params={"brand": "Shell"}).json()["filters"]
        assert filters["brands"] == ["Castrol", "Lukoil", "Shell"]

    def test_price_range_is_catalog_wide(self, client, catalog_products):
        for params in ({}, {"inStock": "true"}, {"brand": "Shell", "maxPrice": "3500"}):
            price_range = client.get("/api/products", params=params).json()["filters"]["priceRange"]
            assert price_range == {"min": 899.5, "max": 4199.99}

    def test_empty_values_are_excluded(self, client, make_product):
        make_product(brand=None, viscosity="", volume_ml=None, application=None)
        make_product(brand="Mobil")
        filters = client.get("/api/products").json()["filters"]
        assert filters["brands"] == ["Mobil"]
        assert filters["viscosities"] == ["5W-40"]
        assert filters["volumes"] == [4000]


class TestProductLookups:
    def test_detail_with_related_products(self, client, catalog_products, make_product):
        response = client.get(f"/api/products/{catalog_products['edge']}")
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Castrol Edge 5W-30"
        related = {p["id"] for p in data["relatedProducts"]}
        # same brand or same type, in stock, not itself
        assert related == {catalog_products["helix"], catalog_products["magnatec"]}

    def test_related_products_capped_at_four(self, client, make_product):
        main_id = make_product(brand="Shell")
        for _ in range(6):
            make_product(brand="Shell")
        related = client.get(f"/api/products/{main_id}").json()["relatedProducts"]
        assert len(related) == 4

    def test_detail_not_found(self, client):
        response = client.get("/api/products/999")
        assert response.status_code == 404
        assert response.json() == {"error": "Product not found"}

    def test_detail_id_beyond_column_range(self, client):
        response = client.get("/api/products/99999999999999999999")
        assert response.status_code == 400
        assert response.json()["error"].startswith("product_id")

    def test_by_sku(self, client, catalog_products):
        response = client.get("/api/products/sku/OIL-SHELL-001")
        assert response.status_code == 200
        assert response.json()["id"] == catalog_products["helix"]
        assert client.get("/api/products/sku/NOPE").status_code == 404

    def test_featured_top_rated(self, client, catalog_products):
        data = client.get("/api/products/featured/top-rated").json()
        assert [p["price"] for p in data] == [4199.99, 3499.99, 1899.99]

    def test_featured_skips_sold_out(self, client, catalog_products):
        data = client.get("/api/products/featured/whatever").json()
        assert catalog_products["rimula"] not in [p["id"] for p in data]
        assert len(data) == 3
