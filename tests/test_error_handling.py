"""Data-driven tests for error handling functionality."""
import logging
import random

import pytest
import requests
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from talentradar.error_handling import (
    EngineError,
    EngineUnavailableError,
    ErrorHandler,
    PersistenceError,
    SessionNotFoundError,
)


@pytest.fixture
def error_handler():
    """Create an error handler instance for testing."""
    handler = ErrorHandler()
    handler.testing_mode = True  # Enable testing mode for predictable backoff
    return handler


# Test data for different types of errors
error_scenarios = [
    {
        'name': "http_timeout",
        'error': requests.exceptions.Timeout("Connection timed out"),
        'site_name': "jobs.bg",
        'expected_retry': True,
        'expected_log_level': "warning"
    },
    {
        'name': "http_connection_error",
        'error': requests.exceptions.ConnectionError("Connection refused"),
        'site_name': "dev.bg",
        'expected_retry': True,
        'expected_log_level': "warning"
    },
    {
        'name': "http_too_many_redirects",
        'error': requests.exceptions.TooManyRedirects("Too many redirects"),
        'site_name': "remoteok.com",
        'expected_retry': False,
        'expected_log_level': "error"
    },
    {
        'name': "playwright_timeout",
        'error': PlaywrightTimeoutError("Timeout 30000ms exceeded"),
        'site_name': "jobs.bg",
        'expected_retry': True,
        'expected_log_level': "warning"
    },
    {
        'name': "playwright_navigation",
        'error': PlaywrightError("Navigation failed: net::ERR_CONNECTION_REFUSED"),
        'site_name': "dev.bg",
        'expected_retry': True,
        'expected_log_level': "warning"
    },
    {
        'name': "playwright_other",
        'error': PlaywrightError("Target page, context or browser has been closed"),
        'site_name': "dev.bg",
        'expected_retry': False,
        'expected_log_level': "error"
    },
    {
        'name': "generic_exception",
        'error': Exception("Unknown error occurred"),
        'site_name': "weworkremotely.com",
        'expected_retry': False,
        'expected_log_level': "error"
    },
]


@pytest.mark.parametrize("test_case", error_scenarios, ids=[case['name'] for case in error_scenarios])
def test_handle_error(error_handler, test_case, caplog):
    """Test error handling for different types of errors using DDT."""
    caplog.set_level(logging.DEBUG)

    result = error_handler.handle_error(
        test_case['error'],
        test_case['site_name'],
        retry_count=1,
        max_retries=3
    )

    assert result == test_case['expected_retry']

    expected_level = getattr(logging, test_case['expected_log_level'].upper())
    assert any(record.levelno == expected_level for record in caplog.records)
    assert any(test_case['site_name'] in record.message for record in caplog.records)
    assert any(str(test_case['error']) in record.message for record in caplog.records)
    assert error_handler.error_counts[test_case['site_name']] == 1


# Test data for specific HTTP status codes
http_status_codes = [
    ("not_found_404", 404, False, "error"),
    ("server_error_500", 500, True, "warning"),
    ("forbidden_403", 403, False, "error"),
    ("too_many_requests_429", 429, True, "warning"),
    ("bad_gateway_502", 502, True, "warning"),
]


@pytest.mark.parametrize("name,status_code,expected_retry,expected_log_level", http_status_codes)
def test_handle_http_status(error_handler, caplog, name, status_code, expected_retry, expected_log_level):
    """Test handling of HTTP error status codes using DDT."""
    caplog.set_level(logging.DEBUG)

    result = error_handler.handle_http_status(status_code, "jobs.bg")

    assert result == expected_retry
    expected_level = getattr(logging, expected_log_level.upper())
    assert any(record.levelno == expected_level for record in caplog.records)
    assert any(str(status_code) in record.message for record in caplog.records)


def test_http_error_with_response_uses_status(error_handler):
    response = requests.Response()
    response.status_code = 503
    error = requests.exceptions.HTTPError("503 Server Error", response=response)
    assert error_handler.handle_error(error, "dev.bg") is True
    assert error_handler.error_counts["dev.bg"] == 1


@pytest.mark.parametrize("retry_count,expected", [(0, True), (2, True), (3, False), (4, False)])
def test_max_retries(error_handler, retry_count, expected):
    error = requests.exceptions.Timeout("Connection timed out")
    assert error_handler.handle_error(error, "jobs.bg", retry_count=retry_count, max_retries=3) is expected


# Backoff in milliseconds for base 1000 ms, without jitter
backoff_scenarios = [
    (1, False, 1000),
    (2, False, 2000),
    (3, False, 4000),
    (1, True, 2000),
    (2, True, 4000),
    (3, True, 8000),
]


@pytest.mark.parametrize("attempt,rate_limited,expected", backoff_scenarios)
def test_backoff(error_handler, attempt, rate_limited, expected):
    assert error_handler.backoff_ms(1000, attempt, rate_limited=rate_limited) == expected


def test_backoff_jitter_bounded():
    handler = ErrorHandler()
    rng = random.Random(0)
    for _ in range(100):
        delay = handler.backoff_ms(1000, 2, rng=rng)
        assert 2000 <= delay <= 2200


@pytest.mark.parametrize("error,expected", [
    (PlaywrightTimeoutError("Timeout 30000ms exceeded"), "timeout"),
    (PlaywrightError("page.goto: net::ERR_NAME_NOT_RESOLVED"), "navigation"),
    (requests.exceptions.ConnectionError("refused"), "network"),
    (requests.exceptions.HTTPError("500"), "http"),
    (RuntimeError("No response received from page navigation"), "unknown"),
])
def test_classify(error_handler, error, expected):
    assert error_handler.classify(error) == expected


def test_notification_threshold(error_handler, caplog):
    for _ in range(4):
        error_handler.record_error("jobs.bg")
    assert error_handler.check_notification_threshold("jobs.bg") is False
    error_handler.record_error("jobs.bg")
    assert error_handler.check_notification_threshold("jobs.bg") is True
    assert any(record.levelno == logging.CRITICAL for record in caplog.records)

    error_handler.reset("jobs.bg")
    assert error_handler.check_notification_threshold("jobs.bg") is False


def test_error_taxonomy():
    assert issubclass(EngineUnavailableError, EngineError)
    assert issubclass(PersistenceError, EngineError)
    error = SessionNotFoundError("abc12345-deadbeef")
    assert isinstance(error, KeyError)
    assert str(error) == "Session abc12345-deadbeef not found"
    assert error.session_id == "abc12345-deadbeef"
