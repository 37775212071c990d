import unittest

from fakes import FakeSession

from core.errors import BotDetectedError
from core.models import Store, StoreOverride, TargetProduct
from core.scrapers.websites.babylon_scraper import BabylonScraper
from core.scrapers.websites.carrefour_scraper import CarrefourScraper
from core.scrapers.websites.colruyt_scraper import ColruytScraper
from core.scrapers.websites.delhaize_scraper import DelhaizeScraper
from core.scrapers.websites.prikentik_scraper import PrikentikScraper

PRODUCTS = [
    TargetProduct(
        name="Jupiler bak 24x25cl",
        required_keywords=["jupiler"],
        must_contain=["bak"],
        store_overrides={"Prik&Tik": StoreOverride(must_contain=["24x25"])},
    ),
    TargetProduct(name="Stella Artois bak 24x25cl", required_keywords=["Stella Artois", "stella"]),
    TargetProduct(name="Maes bak 24x25cl", required_keywords=["maes"]),
    TargetProduct(name="Cristal bak 24x25cl"),
]

BLOCK_PAGE = "<html><head><title>Just a moment...</title></head><body>Checking your browser</body></html>"


def _page(body):
    return f"<html><head><title>Bier</title></head><body>{body}</body></html>"


class TestDelhaizeScraper(unittest.TestCase):
    def setUp(self) -> None:
        self.adapter = DelhaizeScraper(Store(name="Delhaize", base_url="https://www.delhaize.be"))

    def test_brand_terms_are_unioned_in_order(self) -> None:
        self.assertEqual(
            self.adapter.brand_terms(PRODUCTS),
            ["jupiler", "Stella Artois", "stella", "maes", "Cristal"],
        )

    def test_search_url_joins_brands_with_or(self) -> None:
        url = self.adapter.search_url(PRODUCTS)

        self.assertTrue(url.startswith("https://www.delhaize.be/shop/search?q=jupiler%20OR%20stella%20artois"))
        self.assertTrue(url.endswith("&sort=relevance"))

    def test_extracts_tiles_with_fallbacks(self) -> None:
        html = _page("""
            <div data-testid="product-block">
              <a data-testid="product-block-name-link" href="/shop/Bier/Jupiler-bak/p/S2019">Jupiler Pils bak 24x25cl</a>
              <div data-testid="product-block-price" aria-label="Prijs: 17 euro 49 cent"><span>€17,49</span></div>
              <div data-testid="product-block-attributes">24 x 25 cl</div>
              <img data-testid="product-block-image" src="https://static.delhaize.be/j.png">
              <span data-testid="tag-label">2+1 gratis</span>
            </div>
            <div data-testid="product-block">
              <span data-testid="product-brand">Maes</span>
              <span data-testid="product-name">Pils bak 24x25cl</span>
              <div data-testid="product-block-price"><span>€ 16,99</span></div>
            </div>
            <div data-testid="product-block">
              <a data-testid="product-block-name-link" href="/shop/cristal">Cristal bak 24x25cl</a>
            </div>
        """)

        records = self.adapter.parse_listing(html)

        self.assertEqual([r.name for r in records], ["Jupiler Pils bak 24x25cl", "Maes Pils bak 24x25cl"])
        jupiler, maes = records
        self.assertEqual(jupiler.price_text, "€17,49")
        self.assertEqual(jupiler.price_value, 17.49)
        self.assertEqual(jupiler.link, "https://www.delhaize.be/shop/Bier/Jupiler-bak/p/S2019")
        self.assertEqual(jupiler.metadata, "24 x 25 cl")
        self.assertEqual(jupiler.promo_tag, "2+1 gratis")
        self.assertEqual(maes.price_text, "€16,99")
        self.assertIsNone(maes.promo_tag)

    def test_block_page_raises(self) -> None:
        with self.assertRaises(BotDetectedError):
            self.adapter.parse_listing(BLOCK_PAGE, "search results")


def _colruyt_tile(product_id, brand, name, price):
    return (
        f'<a class="card card--article" data-tms-product-type="real" data-tms-product-id="{product_id}" '
        f'data-tms-product-brand="{brand}" data-tms-product-name="{name}" data-tms-product-price="{price}" '
        f'href="/nl/producten/{product_id}"><span class="card__quantity">24 x 25 cl</span></a>'
    )


NEXT_LINK = '<a aria-label="volgende pagina" href="#">&rsaquo;</a>'


class TestColruytScraper(unittest.TestCase):
    def setUp(self) -> None:
        self.adapter = ColruytScraper(Store(name="Colruyt", base_url="https://www.colruyt.be"))

    def test_listing_brands_expand_aliases(self) -> None:
        self.assertEqual(
            self.adapter.listing_brands(PRODUCTS),
            ["Jupiler", "Stella Artois", "Maes", "Cristal", "Cristal Alken"],
        )

    def test_listing_url_carries_brands_and_page(self) -> None:
        url = self.adapter.listing_url(["Jupiler", "Stella Artois"], page=2)

        self.assertTrue(url.startswith("https://www.colruyt.be/nl/producten?brand=Jupiler&brand=Stella+Artois"))
        self.assertIn("page=2", url)
        self.assertIn("searchTerm=pils", url)

    def test_extracts_attributes_and_label_prices(self) -> None:
        html = _page(
            '<a class="card card--article" data-tms-product-type="real" data-tms-product-id="123" '
            'data-tms-product-brand="Jupiler" data-tms-product-name="Pils bak 24x25cl" '
            'data-tms-product-price="16.29" data-tms-product-promotion="2+1 gratis | Xtra" '
            'href="/nl/producten/jupiler-123"><span class="card__image"><img src="https://cdn.example/j.jpg"></span></a>'
            '<a class="card card--article" data-tms-product-type="generic" data-tms-product-id="0" href="/nl/recept">'
            '<span class="card__text">Recept met bier</span></a>'
            '<a class="card card--article" data-tms-product-type="real" data-tms-product-id="456" '
            'longname="Maes Pils bak 24x25cl" data-has-promo="true" href="/nl/producten/maes-456">'
            '<span class="price-info__price-label"><span class="rounded-number">15</span><span class="decimal">99</span></span></a>'
        )

        records = self.adapter.parse_listing(html)

        self.assertEqual([r.name for r in records], ["Jupiler Pils bak 24x25cl", "Maes Pils bak 24x25cl"])
        jupiler, maes = records
        self.assertEqual((jupiler.price_text, jupiler.price_value), ("€16,29", 16.29))
        self.assertEqual(jupiler.promo_tag, "2+1 gratis • Xtra")
        self.assertEqual(jupiler.image_url, "https://cdn.example/j.jpg")
        self.assertEqual((maes.price_text, maes.price_value), ("€15,99", 15.99))
        self.assertEqual(maes.promo_tag, "Promo")
        self.assertEqual(maes.link, "https://www.colruyt.be/nl/producten/maes-456")

    def test_generic_tile_is_skipped(self) -> None:
        tile = self.adapter.helper.soup(
            '<a class="card card--article" data-tms-product-type="generic" data-tms-product-id="0" '
            'data-tms-product-brand="Jupiler" data-tms-product-name="Recept" data-tms-product-price="1"></a>'
        ).select_one("a")

        self.assertIsNone(self.adapter.extract_record(tile))


class TestColruytPagination(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.adapter = ColruytScraper(Store(name="Colruyt", base_url="https://www.colruyt.be"))
        self.brands = self.adapter.listing_brands(PRODUCTS)

    def _url(self, page):
        return self.adapter.listing_url(self.brands, page)

    async def test_pages_are_merged_without_duplicates(self) -> None:
        session = FakeSession(pages={
            self._url(1): _page(_colruyt_tile(1, "Jupiler", "Pils bak 24x25cl", "16.29")
                                + _colruyt_tile(2, "Maes", "Pils bak 24x25cl", "15.99") + NEXT_LINK),
            self._url(2): _page(_colruyt_tile(1, "Jupiler", "Pils bak 24x25cl", "16.29")
                                + _colruyt_tile(3, "Cristal", "Pils bak 24x25cl", "15.49")),
        })

        records = await self.adapter.load_catalog(session, PRODUCTS)

        self.assertEqual([r.name for r in records], [
            "Jupiler Pils bak 24x25cl", "Maes Pils bak 24x25cl", "Cristal Pils bak 24x25cl",
        ])
        # no next link on page 2
        self.assertEqual(session.visited, [self._url(1), self._url(2)])

    async def test_block_on_later_page_keeps_earlier_records(self) -> None:
        session = FakeSession(pages={
            self._url(1): _page(_colruyt_tile(1, "Jupiler", "Pils bak 24x25cl", "16.29") + NEXT_LINK),
            self._url(2): BLOCK_PAGE,
        })

        records = await self.adapter.load_catalog(session, PRODUCTS)

        self.assertEqual(len(records), 1)

    async def test_pagination_stops_at_page_cap(self) -> None:
        session = FakeSession(pages={
            self._url(page): _page(_colruyt_tile(page, "Jupiler", f"Pils bak 24x25cl editie {page}", "16.29") + NEXT_LINK)
            for page in range(1, 5)
        })

        records = await self.adapter.load_catalog(session, PRODUCTS)

        self.assertEqual(len(records), 3)
        self.assertEqual(session.visited, [self._url(1), self._url(2), self._url(3)])

    async def test_block_on_first_page_raises(self) -> None:
        session = FakeSession(pages={self._url(1): BLOCK_PAGE})

        with self.assertRaises(BotDetectedError):
            await self.adapter.load_catalog(session, PRODUCTS)


def _carrefour_tile(pid, name, price):
    return f"""
        <div class="product js-product" data-pid="{pid}">
          <div class="product-tile">
            <div class="name-wrapper"><a class="link" href="/nl/{pid}.html"><span class="desktop-name">{name}</span></a></div>
            <div class="pricing-wrapper"><div class="price"><span class="sales"><span class="value"><span>{price}</span></span></span></div></div>
          </div>
        </div>
    """


class TestCarrefourScraper(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.adapter = CarrefourScraper(Store(name="Carrefour", base_url="https://www.carrefour.be"))
        self.brands = self.adapter.listing_brands(PRODUCTS)

    def test_brands_map_to_facet_values(self) -> None:
        self.assertEqual(self.brands, ["Jupiler", "Stella Artois", "Maes", "Cristal"])

    def test_search_url_adds_page_after_first(self) -> None:
        first = self.adapter.search_url(["Jupiler", "Maes"])
        second = self.adapter.search_url(["Jupiler", "Maes"], page=2)

        self.assertIn("prefv1=Jupiler%7CMaes", first)
        self.assertNotIn("&p=", first)
        self.assertTrue(second.endswith("&p=2"))

    def test_grid_url_targets_ajax_endpoint(self) -> None:
        url = self.adapter.grid_url(["Jupiler"], start=36)

        self.assertIn("Search-UpdateGrid", url)
        self.assertIn("start=36", url)
        self.assertIn("sz=36", url)

    def test_extracts_tiles(self) -> None:
        html = _page("""
            <div class="product js-product" data-pid="1">
              <div class="product-tile" data-select-promotion-event-object='{"ecommerce": {"items": [{"promotion_name": "2+1 gratis"}]}}'>
                <div class="brand-wrapper"><a>Jupiler</a></div>
                <div class="name-wrapper"><a class="link" href="/nl/jupiler-bak.html"><span class="desktop-name">Pils bak 24x25cl</span></a></div>
                <div class="pricing-wrapper"><div class="price"><span class="sales"><span class="value" content="17.49"><span>€ 17,49</span></span></span></div></div>
                <div class="package-info-wrapper"><span class="package-info">24 x 25 cl</span></div>
                <div class="price-per-unit-wrapper">€2,92/l</div>
              </div>
            </div>
            <div class="product js-product" data-pid="2">
              <div class="product-tile">
                <img class="tile-image" data-src="https://cdn.example/m.jpg" alt="Maes Pils bak 24x25cl">
                <div class="price"><span class="sales"><span class="value" content="15.99"></span></span></div>
              </div>
            </div>
        """)

        records = self.adapter.parse_listing(html)

        self.assertEqual([r.name for r in records], ["Jupiler Pils bak 24x25cl", "Maes Pils bak 24x25cl"])
        jupiler, maes = records
        self.assertEqual(jupiler.price_value, 17.49)
        self.assertEqual(jupiler.link, "https://www.carrefour.be/nl/jupiler-bak.html")
        self.assertEqual(jupiler.metadata, "24 x 25 cl (€2,92/l)")
        self.assertEqual(jupiler.promo_tag, "2+1 gratis")
        self.assertEqual((maes.price_text, maes.price_value), ("€15,99", 15.99))
        self.assertEqual(maes.image_url, "https://cdn.example/m.jpg")
        self.assertEqual(maes.link, "")

    async def test_empty_page_falls_back_to_grid_fragment(self) -> None:
        session = FakeSession(
            pages={self.adapter.search_url(self.brands): _page(_carrefour_tile(1, "Jupiler bak 24x25cl", "€ 17,49"))},
            fragments={self.adapter.grid_url(self.brands, start=36): _carrefour_tile(2, "Maes bak 24x25cl", "€ 15,99")},
        )

        records = await self.adapter.load_catalog(session, PRODUCTS)

        self.assertEqual([r.name for r in records], ["Jupiler bak 24x25cl", "Maes bak 24x25cl"])
        # page 3 renders nothing and its fragment is empty, so pagination stops
        self.assertEqual(session.resets, 2)
        self.assertIn(self.adapter.grid_url(self.brands, start=72), session.visited)

    async def test_pagination_stops_at_page_cap(self) -> None:
        session = FakeSession(pages={
            self.adapter.search_url(self.brands, page): _page(
                _carrefour_tile(page, f"Jupiler bak 24x25cl editie {page}", "€ 17,49")
            )
            for page in range(1, 7)
        })

        records = await self.adapter.load_catalog(session, PRODUCTS)

        self.assertEqual(len(records), 5)
        self.assertEqual(session.visited, [self.adapter.search_url(self.brands, page) for page in range(1, 6)])
        self.assertEqual(session.resets, 4)


class TestBabylonScraper(unittest.TestCase):
    def setUp(self) -> None:
        self.adapter = BabylonScraper(Store(name="Babylon Drinks", base_url="https://babylondrinks.be"))

    def test_category_url(self) -> None:
        self.assertEqual(self.adapter.category_url(), "https://babylondrinks.be/product-category/bieren/")

    def test_extracts_woocommerce_tiles(self) -> None:
        html = _page("""
            <ul class="products">
              <li class="product">
                <a class="woocommerce-LoopProduct-link" href="https://babylondrinks.be/product/jupiler-bak/">
                  <img src="https://babylondrinks.be/j.jpg"><h2 class="woocommerce-loop-product__title">Jupiler bak 24x25cl</h2>
                </a>
                <span class="onsale">Promo!</span>
                <span class="price"><del><span class="woocommerce-Price-amount"><bdi>€19,99</bdi></span></del>
                  <ins><span class="woocommerce-Price-amount"><bdi>€16,79</bdi></span></ins></span>
              </li>
              <li class="product">
                <a href="/product/maes-bak/"><h2 class="woocommerce-loop-product__title">Maes bak 24x25cl</h2></a>
                <span class="price"><del><span class="woocommerce-Price-amount"><bdi>€19,49</bdi></span></del>
                  <ins><span class="woocommerce-Price-amount"><bdi>€17,99</bdi></span></ins></span>
              </li>
              <li class="product">
                <a href="/product/cristal-bak/"><h2 class="woocommerce-loop-product__title">Cristal bak 24x25cl</h2></a>
                <span class="price">Prijs onbekend</span>
              </li>
            </ul>
        """)

        records = self.adapter.parse_listing(html)

        self.assertEqual(len(records), 3)
        jupiler, maes, cristal = records
        self.assertEqual((jupiler.price_text, jupiler.price_value), ("€16,79", 16.79))
        self.assertEqual(jupiler.promo_tag, "Promo!")
        self.assertEqual(jupiler.link, "https://babylondrinks.be/product/jupiler-bak/")
        self.assertEqual(maes.promo_tag, "Promo: €19,49 → €17,99")
        self.assertEqual(maes.link, "https://babylondrinks.be/product/maes-bak/")
        # unparsable price text is kept without a numeric value
        self.assertEqual(cristal.price_text, "Prijs onbekend")
        self.assertIsNone(cristal.price_value)


class TestPrikentikScraper(unittest.TestCase):
    def setUp(self) -> None:
        self.adapter = PrikentikScraper(Store(name="Prik&Tik", base_url="https://www.prikentik.be"))

    def test_category_url_filters_brands(self) -> None:
        self.assertEqual(
            self.adapter.category_url(),
            "https://www.prikentik.be/bier?brand=316%2C317%2C584%2C574&product_list_limit=36",
        )

    def test_extracts_magento_tiles(self) -> None:
        html = _page("""
            <form class="product-item">
              <a class="product-item-link" href="https://www.prikentik.be/jupiler-pils-bak">Jupiler Pils 24x25cl</a>
              <span class="text-forrest-800">Jupiler</span>
              <div class="stock"><span>Status:</span><span>Op voorraad</span></div>
              <div class="price-box">
                <span class="old-price"><span class="price">€ 19,99</span></span>
                <span class="special-price"><span class="price">€ 16,49</span></span>
              </div>
              <picture><img src="https://www.prikentik.be/j.jpg"></picture>
            </form>
        """)

        records = self.adapter.parse_listing(html)

        self.assertEqual(len(records), 1)
        record = records[0]
        self.assertEqual(record.name, "Jupiler Pils 24x25cl")
        self.assertEqual(record.price_value, 16.49)
        self.assertEqual(record.metadata, "Jupiler Op voorraad")
        self.assertEqual(record.promo_tag, "Promo: € 19,99 → € 16,49")
        self.assertEqual(record.image_url, "https://www.prikentik.be/j.jpg")


if __name__ == "__main__":
    unittest.main()
