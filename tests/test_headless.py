"""Tests for headless browser page fetching."""
import random
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from talentradar.fetchers.headless import NO_RESPONSE_ERROR, SCROLL_HEIGHT_JS, FetchOrchestrator, home_page
from talentradar.metrics import MetricsCollector
from talentradar.models import FetchOptions, SessionConfig
from talentradar.stealth.evasion import DEFAULT_POLICY, SITE_POLICIES

JOBS_URL = "https://www.jobs.bg/front_job_search.php?categories[]=56"


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def orchestrator(metrics, fake_sleep):
    return FetchOrchestrator(metrics, rng=random.Random(99), sleep=fake_sleep)


@pytest_asyncio.fixture
async def session(engine):
    """Live jobs.bg session on the fake browser."""
    return await engine.get_session(SessionConfig(site_name="jobs.bg"))


def height_reads(page) -> int:
    return sum(1 for call in page.evaluate.await_args_list if call.args[0] == SCROLL_HEIGHT_JS)


@pytest.mark.asyncio
async def test_fetch_page_success(orchestrator, session, metrics):
    result = await orchestrator.fetch_page(JOBS_URL, session)

    assert result.success is True
    assert result.status == 200
    assert result.final_url == JOBS_URL
    assert "Python Developer" in result.html
    assert result.headers["content-type"].startswith("text/html")
    assert result.cookies[0].name == "sid"
    assert result.source == "browser"
    assert result.load_time >= 0
    assert metrics.total_requests == 1
    assert metrics.successful_requests == 1


@pytest.mark.asyncio
async def test_navigation_uses_session_timeout(orchestrator, engine):
    session = await engine.get_session(SessionConfig(site_name="jobs.bg", timeout=60000))
    await orchestrator.fetch_page(JOBS_URL, session)
    session.page.goto.assert_awaited_once_with(JOBS_URL, wait_until="domcontentloaded", timeout=60000)


@pytest.mark.asyncio
async def test_request_count_and_activity_on_success(orchestrator, session):
    before = session.last_activity
    await orchestrator.fetch_page(JOBS_URL, session)
    assert session.request_count == 1
    assert session.last_activity >= before


@pytest.mark.asyncio
async def test_request_count_and_activity_on_failure(orchestrator, session):
    session.page.goto.side_effect = PlaywrightTimeoutError("Timeout 30000ms exceeded")
    before = session.last_activity

    await orchestrator.fetch_page(JOBS_URL, session)

    assert session.request_count == 1
    assert session.last_activity >= before


@pytest.mark.asyncio
async def test_timeout_is_returned_as_failure(orchestrator, session, metrics):
    session.page.goto.side_effect = PlaywrightTimeoutError("Timeout 30000ms exceeded")

    result = await orchestrator.fetch_page(JOBS_URL, session)

    assert result.success is False
    assert result.html == ""
    assert result.status == 0
    assert result.final_url == JOBS_URL
    assert "Timeout" in result.error
    assert metrics.failures_by_type == {"timeout": 1}
    assert metrics.failures_by_site == {"jobs.bg": 1}


@pytest.mark.asyncio
async def test_dns_failure_is_returned_as_failure(orchestrator, session, metrics):
    session.page.goto.side_effect = PlaywrightError("page.goto: net::ERR_NAME_NOT_RESOLVED")

    result = await orchestrator.fetch_page("https://unreachable.invalid/", session)

    assert result.success is False
    assert "ERR_NAME_NOT_RESOLVED" in result.error
    assert metrics.failures_by_type == {"navigation": 1}


@pytest.mark.asyncio
async def test_missing_response(orchestrator, session):
    session.page.goto = AsyncMock(return_value=None)

    result = await orchestrator.fetch_page(JOBS_URL, session)

    assert result.success is False
    assert result.error == NO_RESPONSE_ERROR


@pytest.mark.asyncio
async def test_network_idle_timeout_is_tolerated(orchestrator, session):
    session.page.wait_for_load_state.side_effect = PlaywrightTimeoutError("Timeout 2000ms exceeded")

    result = await orchestrator.fetch_page(JOBS_URL, session)

    assert result.success is True
    session.page.wait_for_load_state.assert_awaited_once_with("networkidle", timeout=2000)


@pytest.mark.asyncio
async def test_policy_delay_before_navigation(orchestrator, session, fake_sleep):
    await orchestrator.fetch_page(JOBS_URL, session)

    first_pause = fake_sleep.await_args_list[0].args[0]
    policy = SITE_POLICIES["jobs.bg"]
    assert policy.min_delay / 1000 <= first_pause <= policy.max_delay / 1000


@pytest.mark.asyncio
async def test_mouse_movements_when_enabled(metrics, fake_sleep, session):
    policy = replace(DEFAULT_POLICY, mouse_movements=True, scroll_page=False)
    orchestrator = FetchOrchestrator(metrics, rng=random.Random(3), sleep=fake_sleep,
                                     policy_provider=lambda site: policy)

    await orchestrator.fetch_page(JOBS_URL, session)

    moves = session.page.mouse.move.await_args_list
    assert 3 <= len(moves) <= 7
    viewport = session.fingerprint.viewport
    for call in moves:
        x, y = call.args
        assert 0 <= x < viewport.width
        assert 0 <= y < viewport.height


@pytest.mark.asyncio
async def test_behavior_errors_are_not_fatal(metrics, fake_sleep, session):
    policy = replace(DEFAULT_POLICY, mouse_movements=True)
    orchestrator = FetchOrchestrator(metrics, rng=random.Random(3), sleep=fake_sleep,
                                     policy_provider=lambda site: policy)
    session.page.mouse.move.side_effect = PlaywrightError("Target page, context or browser has been closed")

    result = await orchestrator.fetch_page(JOBS_URL, session)

    assert result.success is True


@pytest.mark.asyncio
async def test_infinite_scroll_stops_at_attempt_cap(orchestrator, session, page_factory):
    session.page = page_factory(heights=[1000 + 500 * i for i in range(40)])

    result = await orchestrator.fetch_page(JOBS_URL, session, FetchOptions(infinite_scroll=True))

    assert result.success is True
    # One initial read plus one per scroll round
    assert height_reads(session.page) == 1 + 15


@pytest.mark.asyncio
async def test_infinite_scroll_custom_cap(orchestrator, session, page_factory):
    session.page = page_factory(heights=[1000 + 500 * i for i in range(40)])

    await orchestrator.fetch_page(JOBS_URL, session, FetchOptions(infinite_scroll=True, max_scroll_attempts=4))

    assert height_reads(session.page) == 1 + 4


@pytest.mark.asyncio
async def test_infinite_scroll_stops_when_height_settles(orchestrator, session, page_factory):
    session.page = page_factory(heights=[1000, 1800, 1800])

    await orchestrator.fetch_page(JOBS_URL, session, FetchOptions(infinite_scroll=True))

    assert height_reads(session.page) == 3
    scripts = [call.args[0] for call in session.page.evaluate.await_args_list]
    assert scripts[-1] == "window.scrollTo({top: 0, behavior: 'smooth'})"


@pytest.mark.asyncio
async def test_no_scroll_without_option(orchestrator, session):
    await orchestrator.fetch_page(JOBS_URL, session)
    assert height_reads(session.page) == 0


@pytest.mark.asyncio
async def test_blocked_status_is_reported(orchestrator, session, metrics, page_factory):
    session.page = page_factory(status=403)

    result = await orchestrator.fetch_page(JOBS_URL, session)

    assert result.status == 403
    assert result.blocked is True
    assert metrics.snapshot()["blocked_by_site"] == {"jobs.bg": 1}


@pytest.mark.asyncio
async def test_snapshot_saved_every_fifth_request(metrics, fake_sleep, session):
    saver = AsyncMock()
    orchestrator = FetchOrchestrator(metrics, rng=random.Random(5), sleep=fake_sleep,
                                     save_every=5, snapshot_saver=saver)

    for _ in range(4):
        await orchestrator.fetch_page(JOBS_URL, session)
    saver.assert_not_awaited()

    await orchestrator.fetch_page(JOBS_URL, session)
    saver.assert_awaited_once_with(session)


@pytest.mark.asyncio
async def test_failed_fetch_skips_snapshot(metrics, fake_sleep, session):
    saver = AsyncMock()
    orchestrator = FetchOrchestrator(metrics, rng=random.Random(5), sleep=fake_sleep,
                                     save_every=1, snapshot_saver=saver)
    session.page.goto.side_effect = PlaywrightTimeoutError("Timeout 30000ms exceeded")

    await orchestrator.fetch_page(JOBS_URL, session)

    saver.assert_not_awaited()


@pytest.mark.parametrize("url,expected", [
    (JOBS_URL, "https://www.jobs.bg/"),
    ("https://dev.bg/company/jobs/python/", "https://dev.bg/"),
    ("http://localhost:8080/jobs", "http://localhost:8080/"),
])
def test_home_page(url, expected):
    assert home_page(url) == expected


def goto_urls(page):
    return [call.args[0] for call in page.goto.await_args_list]


@pytest.mark.asyncio
async def test_warmup_visits_home_page_first(orchestrator, session, caplog):
    options = FetchOptions(warmup=True, warmup_probability=1.0)

    with caplog.at_level("DEBUG"):
        result = await orchestrator.fetch_page(JOBS_URL, session, options)

    assert result.success is True
    assert result.final_url == JOBS_URL
    assert goto_urls(session.page) == ["https://www.jobs.bg/", JOBS_URL]
    assert "Warm-up navigation to https://www.jobs.bg/" in caplog.text


@pytest.mark.asyncio
async def test_warmup_lingers_before_target(orchestrator, session, fake_sleep):
    await orchestrator.fetch_page(JOBS_URL, session, FetchOptions(warmup=True, warmup_probability=1.0))

    reading = fake_sleep.await_args_list[0].args[0]
    assert 3.0 <= reading <= 7.0


@pytest.mark.asyncio
async def test_warmup_custom_url(orchestrator, session):
    options = FetchOptions(warmup=True, warmup_url="https://www.jobs.bg/company", warmup_probability=1.0)

    await orchestrator.fetch_page(JOBS_URL, session, options)

    assert goto_urls(session.page)[0] == "https://www.jobs.bg/company"


@pytest.mark.asyncio
async def test_warmup_failure_does_not_fail_fetch(orchestrator, session, metrics, caplog):
    page = session.page

    async def goto(url, **kwargs):
        if url == "https://www.jobs.bg/":
            raise PlaywrightTimeoutError("Timeout 30000ms exceeded")
        page.url = url
        return page.response

    page.goto.side_effect = goto

    result = await orchestrator.fetch_page(JOBS_URL, session, FetchOptions(warmup=True, warmup_probability=1.0))

    assert result.success is True
    assert result.final_url == JOBS_URL
    assert goto_urls(page) == ["https://www.jobs.bg/", JOBS_URL]
    assert metrics.successful_requests == 1
    assert "Warm-up navigation to https://www.jobs.bg/ failed" in caplog.text


@pytest.mark.asyncio
@pytest.mark.parametrize("options", [
    FetchOptions(),
    FetchOptions(warmup=True, warmup_probability=0.0),
])
async def test_no_warmup(orchestrator, session, options):
    await orchestrator.fetch_page(JOBS_URL, session, options)
    assert goto_urls(session.page) == [JOBS_URL]
