from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from omegaconf import OmegaConf
from playwright.async_api import Error as PlaywrightError

from rankscout.contexts.scraping import (
    ExhaustionPolicy,
    MarkupError,
    PlacementType,
    QualityGate,
    QualityGateError,
    ResultsTimeoutError,
    extract_with_refresh,
)

RELOAD = "rankscout.contexts.scraping.quality.reload_results"


def item(asin, sponsored=False):
    classes = "s-result-item AdHolder" if sponsored else "s-result-item"
    return f'<div class="{classes}" role="listitem" data-asin="{asin}"><h2>Title {asin}</h2></div>'


def results(organic=3, sponsored=0):
    items = [item(f"B0ORG{n:05d}") for n in range(organic)]
    items += [item(f"B0SPN{n:05d}", sponsored=True) for n in range(sponsored)]
    return "<html><body>" + "".join(items) + "</body></html>"


WITHOUT_ADS = results(organic=3)
WITH_ADS = results(organic=3, sponsored=2)


def fake_page(*contents):
    page = MagicMock(name="page")
    page.content = AsyncMock(side_effect=list(contents))
    return page


@pytest.mark.asyncio
async def test_accepts_first_attempt_when_gate_is_satisfied():
    page = fake_page(WITH_ADS)

    with patch(RELOAD, new_callable=AsyncMock) as reload:
        extraction = await extract_with_refresh(page, QualityGate(), page_number=1, keyword="hdmi")

    reload.assert_not_awaited()
    assert extraction.gate_satisfied
    assert extraction.refreshes == 0
    assert extraction.paid_standard_count == 2
    assert extraction.organic_count == 3
    assert extraction.keyword == "hdmi"
    assert extraction.html == WITH_ADS


@pytest.mark.asyncio
async def test_refreshes_until_sponsored_results_appear():
    page = fake_page(WITHOUT_ADS, WITHOUT_ADS, WITH_ADS)

    with patch(RELOAD, new_callable=AsyncMock) as reload:
        extraction = await extract_with_refresh(page, QualityGate(), page_number=2, max_refreshes=5)

    assert reload.await_count == 2
    assert page.content.await_count == 3
    assert extraction.gate_satisfied
    assert extraction.refreshes == 2
    assert extraction.page_number == 2


@pytest.mark.asyncio
async def test_exhausted_budget_keeps_best_effort_result():
    page = fake_page(*[WITHOUT_ADS] * 3)

    with patch(RELOAD, new_callable=AsyncMock):
        extraction = await extract_with_refresh(page, QualityGate(), page_number=1, max_refreshes=2)

    # One initial extraction plus one per refresh
    assert page.content.await_count == 3
    assert not extraction.gate_satisfied
    assert extraction.refreshes == 2
    assert extraction.organic_count == 3


@pytest.mark.asyncio
async def test_exhausted_budget_raises_under_raise_policy():
    page = fake_page(*[WITHOUT_ADS] * 3)

    with patch(RELOAD, new_callable=AsyncMock):
        with pytest.raises(QualityGateError) as exc_info:
            await extract_with_refresh(
                page, QualityGate(), page_number=4, max_refreshes=2, policy=ExhaustionPolicy.RAISE
            )

    assert exc_info.value.page_number == 4
    assert exc_info.value.refreshes == 2


@pytest.mark.asyncio
async def test_zero_budget_extracts_once():
    page = fake_page(WITHOUT_ADS)

    with patch(RELOAD, new_callable=AsyncMock) as reload:
        extraction = await extract_with_refresh(page, QualityGate(), page_number=1, max_refreshes=0)

    reload.assert_not_awaited()
    assert not extraction.gate_satisfied


@pytest.mark.asyncio
async def test_transient_errors_use_up_refreshes():
    page = fake_page(PlaywrightError("Target page crashed"), WITH_ADS)

    with patch(RELOAD, new_callable=AsyncMock) as reload:
        extraction = await extract_with_refresh(page, QualityGate(), page_number=1, max_refreshes=3)

    reload.assert_awaited_once()
    assert extraction.gate_satisfied
    assert extraction.refreshes == 1


@pytest.mark.asyncio
async def test_reload_failure_is_retried():
    page = fake_page(WITHOUT_ADS, WITH_ADS)
    reload = AsyncMock(side_effect=[ResultsTimeoutError("no results"), None])

    with patch(RELOAD, reload):
        extraction = await extract_with_refresh(page, QualityGate(), page_number=1, max_refreshes=3)

    assert reload.await_count == 2
    assert page.content.await_count == 2
    assert extraction.refreshes == 2
    assert extraction.gate_satisfied


@pytest.mark.asyncio
async def test_error_on_last_attempt_is_raised():
    page = fake_page("", "")

    with patch(RELOAD, new_callable=AsyncMock):
        with pytest.raises(MarkupError):
            await extract_with_refresh(page, QualityGate(), page_number=1, max_refreshes=1)

    assert page.content.await_count == 2


@pytest.mark.asyncio
async def test_unexpected_errors_propagate():
    page = fake_page(KeyError("boom"))

    with patch(RELOAD, new_callable=AsyncMock) as reload:
        with pytest.raises(KeyError):
            await extract_with_refresh(page, QualityGate(), page_number=1)

    reload.assert_not_awaited()


class TestQualityGate:
    def test_requires_sponsored_results_by_default(self):
        gate = QualityGate()

        assert not gate.is_satisfied({PlacementType.ORGANIC: 40})
        assert gate.is_satisfied({PlacementType.PAID_STANDARD: 1})

    def test_organic_threshold_is_exclusive(self):
        gate = QualityGate(require_paid_standard=False, organic_threshold=8)

        assert not gate.is_satisfied({PlacementType.ORGANIC: 8})
        assert gate.is_satisfied({PlacementType.ORGANIC: 9})

    def test_both_conditions(self):
        gate = QualityGate(organic_threshold=2)

        assert not gate.is_satisfied({PlacementType.PAID_STANDARD: 1, PlacementType.ORGANIC: 2})
        assert gate.is_satisfied({PlacementType.PAID_STANDARD: 1, PlacementType.ORGANIC: 3})

    def test_from_config(self):
        gate = QualityGate.from_config(OmegaConf.create({"require_paid_standard": False, "organic_threshold": 8}))

        assert gate == QualityGate(require_paid_standard=False, organic_threshold=8)


@pytest.mark.asyncio
async def test_extraction_summary():
    page = fake_page(WITH_ADS)

    with patch(RELOAD, new_callable=AsyncMock):
        extraction = await extract_with_refresh(page, QualityGate(), page_number=3)

    assert extraction.summary() == {
        "page_number": 3,
        "total": 5,
        "paid_standard": 2,
        "organic": 3,
        "gate_satisfied": True,
        "refreshes": 0,
    }
