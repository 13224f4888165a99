import itertools
from types import SimpleNamespace
from urllib.parse import quote

import pytest

from affiliate_system.utils.url_templates import (
    resolveRedirectUrl,
    cleanProductUrl,
    isUsableRedirect,
    buildSubId,
)


def _program(**fields):
    values = {
        "redirectTemplate": "{BASE_URL}?tag={AFFILIATE_TAG}&subid={SUB_ID}",
        "baseUrl": "https://www.amazon.fr",
        "subIdParam": "subid",
        "subIdFormat": "buyla_{REF}",
        "publisherID": "buyla-tag-20",
        "merchantID": None,
    }
    values.update(fields)
    return SimpleNamespace(**values)


def test_amazon_template_resolves_tag_and_subid():
    result = resolveRedirectUrl(_program(), "ABC123")

    assert result.url == "https://www.amazon.fr?tag=buyla-tag-20&subid=buyla_ABC123"
    assert result.subIdSent == "buyla_ABC123"


def test_missing_values_resolve_to_empty_strings():
    program = _program(
        redirectTemplate="https://net.example/c?mid={MID}&aff={AFF_ID}&s={SUB_ID}",
        publisherID=None,
        subIdParam=None
    )
    result = resolveRedirectUrl(program, "ABC123")

    assert result.url == "https://net.example/c?mid=&aff=&s="
    assert result.subIdSent is None


def test_no_subid_without_ref():
    assert buildSubId(_program(), None) is None
    assert buildSubId(_program(), "") is None
    assert resolveRedirectUrl(_program(), None).url == "https://www.amazon.fr?tag=buyla-tag-20&subid="


def test_subid_format_defaults_to_ref():
    assert buildSubId(_program(subIdFormat=None), "XYZ") == "XYZ"


def test_product_url_is_encoded_when_embedded():
    program = _program(redirectTemplate="https://www.awin1.com/cread.php?awinmid={MID}&clickref={SUB_ID}&ued={PRODUCT_URL}",
                       merchantID="4242")
    product = "https://shop.example/p?id=1&color=red"

    result = resolveRedirectUrl(program, "ABC123", product)

    assert result.url == (
        "https://www.awin1.com/cread.php?awinmid=4242&clickref=buyla_ABC123&ued="
        + quote(product, safe="-_.!~*'()")
    )
    assert "&color=red" not in result.url


def test_product_url_is_raw_when_it_starts_the_template():
    program = _program(redirectTemplate="{PRODUCT_URL}&tag={AFF_ID}")
    product = "https://www.amazon.fr/dp/B09ABC1234?th=1"

    result = resolveRedirectUrl(program, "ABC123", product)

    assert result.url == "https://www.amazon.fr/dp/B09ABC1234?th=1&tag=buyla-tag-20"


def test_product_url_falls_back_to_base_url():
    program = _program(redirectTemplate="{PRODUCT_URL}?tag={AFF_ID}")
    assert resolveRedirectUrl(program, "ABC123").url == "https://www.amazon.fr?tag=buyla-tag-20"


def test_repeated_placeholders_are_all_substituted_not_just_the_first():
    program = _program(redirectTemplate="{BASE_URL}?a={SUB_ID}&b={SUB_ID}", subIdFormat="{REF}-{REF}")

    result = resolveRedirectUrl(program, "R1")

    assert result.url == "https://www.amazon.fr?a=R1-R1&b=R1-R1"
    assert result.subIdSent == "R1-R1"


def test_placeholder_values_are_not_rescanned():
    program = _program(redirectTemplate="{BASE_URL}?subid={SUB_ID}&tag={AFF_ID}")

    result = resolveRedirectUrl(program, "{AFF_ID}{BASE_URL}")

    assert result.url == "https://www.amazon.fr?subid=buyla_{AFF_ID}{BASE_URL}&tag=buyla-tag-20"


def test_product_url_containing_placeholders_stays_literal():
    program = _program(redirectTemplate="{PRODUCT_URL}&s={SUB_ID}")

    result = resolveRedirectUrl(program, "ABC123", "https://evil.example/{SUB_ID}")

    assert result.url == "https://evil.example/{SUB_ID}&s=buyla_ABC123"


@pytest.mark.parametrize("order", list(itertools.permutations(["BASE_URL", "AFF_ID", "MID", "SUB_ID"])))
def test_substitution_is_order_independent(order):
    expected = {
        "BASE_URL": "https://www.amazon.fr",
        "AFF_ID": "buyla-tag-20",
        "MID": "M-9",
        "SUB_ID": "buyla_ABC123",
    }
    template = "|".join("{" + name + "}" for name in order)

    result = resolveRedirectUrl(_program(redirectTemplate=template, merchantID="M-9"), "ABC123")

    assert result.url == "|".join(expected[name] for name in order)


@pytest.mark.parametrize("url,usable", [
    ("https://www.amazon.fr?tag=x", True),
    ("http://shop.example/p", True),
    ("?tag=x&subid=y", False),
    ("javascript:alert(1)", False),
    ("", False),
    (None, False),
])
def test_is_usable_redirect(url, usable):
    assert isUsableRedirect(url) is usable


def test_clean_amazon_url_keeps_only_asin():
    url = "https://www.amazon.fr/Produit-Super/dp/B09ABC1234/ref=sr_1_1?keywords=test"
    assert cleanProductUrl(url, "amazon") == "https://www.amazon.fr/dp/B09ABC1234"


def test_clean_amazon_gp_product_keeps_matched_segment():
    url = "https://www.amazon.fr/gp/product/B09ABC1234?psc=1"
    assert cleanProductUrl(url, "amazon") == "https://www.amazon.fr/gp/product/B09ABC1234"


def test_clean_amazon_without_asin_is_unchanged():
    url = "https://www.amazon.fr/s?k=chaussures"
    assert cleanProductUrl(url, "amazon") == url


def test_clean_generic_strips_tracking_params():
    url = "https://shop.com/product?id=123&utm_source=google&gclid=abc"
    assert cleanProductUrl(url, "direct") == "https://shop.com/product?id=123"


def test_clean_generic_without_tracking_params_is_unchanged():
    url = "https://shop.com/product?id=123&size=42#reviews"
    assert cleanProductUrl(url, "awin") == url


def test_clean_generic_keeps_fragment():
    url = "https://shop.com/product?ref=abc&id=9#top"
    assert cleanProductUrl(url, "affilae") == "https://shop.com/product?id=9#top"


@pytest.mark.parametrize("url", ["not a url", "http://[::1", ""])
def test_clean_generic_returns_malformed_input(url):
    assert cleanProductUrl(url, "direct") == url
