"""Tests for URL and logging helpers."""

import logging

import pytest

from scrape_proxy.utils.logging import LOG_FORMAT, get_logger, mask_credential
from scrape_proxy.utils.urls import parse_target_url, safe_url


@pytest.mark.parametrize(
    "raw",
    ["https://example.com", "http://example.com/a?b=c", "https://sub.example.org:8443/x#frag"],
)
def test_parse_target_url_accepts_http(raw: str) -> None:
    assert parse_target_url(raw) == raw


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "example.com",
        "ftp://example.com/x",
        "mailto:a@example.com",
        "https://",
        "http://example.com/\x01",
    ],
)
def test_parse_target_url_rejects(raw: str | None) -> None:
    assert parse_target_url(raw) is None


def test_safe_url_strips_query() -> None:
    assert safe_url("https://example.com/a?api_key=secret#top") == "https://example.com/a"
    assert len(safe_url("https://example.com/" + "x" * 200)) == 80


def test_mask_credential() -> None:
    assert mask_credential("short") == "****"
    masked = mask_credential("abcd1234efgh5678")
    assert masked.startswith("abcd")
    assert masked.endswith("5678")
    assert "1234efgh" not in masked


def test_get_logger_reuses_handler() -> None:
    first = get_logger("scrape_proxy.test")
    second = get_logger("scrape_proxy.test")
    assert first is second
    assert len(first.handlers) == 1


def test_get_logger_reads_level_and_stays_off_uvicorn_loggers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "debug")
    logger = get_logger("scrape_proxy.test.level")
    assert logger.level == logging.DEBUG
    assert logger.propagate is False
    assert logger.handlers[0].formatter._fmt == LOG_FORMAT
