import json
from html import escape
from urllib.parse import quote

import pytest
from bs4 import BeautifulSoup

from rankscout.contexts.scraping.ad_params import (
    AdParams,
    ImpressionParams,
    decode_json_attribute,
    extract_ad_params,
    extract_impression_params,
    extract_recommendation_ad_data,
)
from rankscout.contexts.scraping.selectors import clean_item_id, item_id_from_url


def element(markup):
    return BeautifulSoup(f"<div>{markup}</div>", "html.parser").div


def preload_trigger(raw_attribute):
    return (
        '<div class="a-popover-preload">'
        f'<span class="a-declarative" data-s-safe-ajax-modal-trigger="{escape(raw_attribute, quote=True)}"></span>'
        "</div>"
    )


def test_extract_ad_params():
    payload = {"adCreativeMetaData": {"adCreativeDetails": [{"campaignId": 123, "adId": "456", "sku": "SKU-1"}]}}
    raw = json.dumps({"ajaxUrl": "/af/sp-feedback?pl=" + quote(json.dumps(payload)) + "&ref=x"})

    assert extract_ad_params(element(preload_trigger(raw))) == AdParams("123", "456", "SKU-1")


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        json.dumps({"ajaxUrl": ""}),
        json.dumps({"ajaxUrl": "/af/sp-feedback?pl=nothing-embedded"}),
        json.dumps({"ajaxUrl": "/af?pl=" + quote("{broken json}")}),
        json.dumps({"ajaxUrl": "/af?pl=" + quote(json.dumps({"adCreativeMetaData": {}}))}),
        json.dumps(["not", "an", "object"]),
        json.dumps({"ajaxUrl": 42}),
        json.dumps({"ajaxUrl": "/af?pl=" + quote(json.dumps({"adCreativeMetaData": {"adCreativeDetails": {"k": 1}}}))}),
        json.dumps({"ajaxUrl": "/af?pl=" + quote(json.dumps({"adCreativeMetaData": {"adCreativeDetails": ["x"]}}))}),
        json.dumps({"ajaxUrl": "/af?pl=" + quote(json.dumps({"adCreativeMetaData": ["x"]}))}),
    ],
)
def test_extract_ad_params_malformed(raw):
    assert extract_ad_params(element(preload_trigger(raw))) == AdParams()


def test_extract_ad_params_missing_trigger():
    assert extract_ad_params(element("<span>nothing here</span>")) == AdParams()


def test_extract_impression_params():
    props = json.dumps({"url": "/1/action-impressions?qualifier=17234&adIndex=2&widgetName=sp_mtf&id=x%3Ay"})
    markup = f'<div data-component-type="s-impression-logger" data-component-props="{escape(props, quote=True)}"></div>'

    params = extract_impression_params(element(markup))
    assert params == ImpressionParams(qualifier="17234", ad_index="2", widget_name="sp_mtf")


def test_extract_impression_params_malformed():
    markup = '<div data-component-type="s-impression-logger" data-component-props="oops"></div>'
    assert extract_impression_params(element(markup)) == ImpressionParams()


@pytest.mark.parametrize("props", [{"url": 123}, {"url": ["/x?qualifier=1"]}, ["url"], "plain string"])
def test_extract_impression_params_unexpected_shapes(props):
    raw = escape(json.dumps(props), quote=True)
    markup = f'<div data-component-type="s-impression-logger" data-component-props="{raw}"></div>'
    assert extract_impression_params(element(markup)) == ImpressionParams()


def test_extract_recommendation_ad_data():
    details = [
        {"asin": "B0RAIL0001", "campaignId": 1, "adId": 2, "sku": "A"},
        {"campaignId": 9},
        "junk",
        {"asin": "B0RAIL0002", "campaignId": 3, "adId": 4},
    ]
    payload = {"multiAdfPayload": json.dumps({"adCreativeMetaData": {"adCreativeDetails": details}})}
    markup = f'<span data-multi-ad-feedback-form-trigger="{escape(json.dumps(payload), quote=True)}"></span>'

    assert extract_recommendation_ad_data(element(markup)) == {
        "B0RAIL0001": AdParams("1", "2", "A"),
        "B0RAIL0002": AdParams("3", "4", ""),
    }


def test_extract_recommendation_ad_data_skips_unusable_asins():
    details = [
        {"asin": ["B0LIST0001"], "campaignId": 1},
        {"asin": {"id": "B0DICT0001"}, "campaignId": 2},
        {"asin": "B0RAIL0003", "campaignId": 3},
    ]
    payload = {"multiAdfPayload": json.dumps({"adCreativeMetaData": {"adCreativeDetails": details}})}
    markup = f'<span data-multi-ad-feedback-form-trigger="{escape(json.dumps(payload), quote=True)}"></span>'

    assert extract_recommendation_ad_data(element(markup)) == {"B0RAIL0003": AdParams("3", "", "")}


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        json.dumps({"multiAdfPayload": "{truncated"}),
        json.dumps({"multiAdfPayload": ""}),
        json.dumps({"other": 1}),
        json.dumps({"multiAdfPayload": 7}),
        json.dumps({"multiAdfPayload": json.dumps({"adCreativeMetaData": {"adCreativeDetails": {"asin": "B0X"}}})}),
        json.dumps({"multiAdfPayload": json.dumps(["x"])}),
    ],
)
def test_extract_recommendation_ad_data_malformed(raw):
    markup = f'<span data-multi-ad-feedback-form-trigger="{escape(raw, quote=True)}"></span>'
    assert extract_recommendation_ad_data(element(markup)) == {}


def test_decode_json_attribute():
    tag = element('<i data-props="{&quot;a&quot;: 1}" data-list="[1, 2]" data-bad="{"></i>').i

    assert decode_json_attribute(tag, "data-props") == {"a": 1}
    assert decode_json_attribute(tag, "data-list") == {}
    assert decode_json_attribute(tag, "data-bad") == {}
    assert decode_json_attribute(tag, "data-missing") == {}


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("amzn1.asin.B00EXAMPLE1:extra", "B00EXAMPLE1"),
        ("amzn1.asin.B0CLEAN0001", "B0CLEAN0001"),
        ("  B0PLAIN001 ", "B0PLAIN001"),
        ("", ""),
        (None, ""),
    ],
)
def test_clean_item_id(raw, expected):
    assert clean_item_id(raw) == expected


@pytest.mark.parametrize(
    "url,expected",
    [
        ("/Some-Thing/dp/B0ABCDEFGH/ref=sr_1_1", "B0ABCDEFGH"),
        ("https://www.amazon.com/gp/product/B0ABCDEFGH?th=1", "B0ABCDEFGH"),
        ("/stores/acme/page/123", None),
        ("", None),
        (None, None),
    ],
)
def test_item_id_from_url(url, expected):
    assert item_id_from_url(url) == expected
