"""Tests for behavioral signal detection."""

from shieldon_core.core.config import FilterOptions
from shieldon_core.services.session import SessionRecord
from shieldon_core.services.signals import RequestContext, SignalDetector

from conftest import START

VISITOR = "0123456789abcdef0123456789abcdef"
RECORD = SessionRecord(id=VISITOR, ip="", created_at=int(START), created_at_micros=0)


def _detect(
    request,
    *,
    now=START,
    filters=None,
    identity_cookie=VISITOR,
    reissued=False,
    created=False,
    first_seen=START - 60,
):
    detector = SignalDetector(filters or FilterOptions())
    return detector.detect(
        request,
        RECORD,
        identity_cookie=identity_cookie,
        identity_reissued=reissued,
        session_created=created,
        now=now,
        first_seen=first_seen,
    )


def test_well_behaved_browser_raises_nothing() -> None:
    request = RequestContext(cookies={"ssjd": "1"}, referer="https://example.com/")

    assert _detect(request, now=START + 60) == set()


def test_buffered_signals_wait_for_time_buffer() -> None:
    """Test that a brand-new visitor is not blamed for missing cookie or referer."""
    bare = RequestContext()

    assert _detect(bare, now=START + 5) == set()
    assert _detect(bare, now=START + 6) == {"cookie", "referer"}


def test_wrong_cookie_value_is_flagged() -> None:
    request = RequestContext(cookies={"ssjd": "0"}, referer="https://example.com/")

    assert _detect(request, now=START + 60) == {"cookie"}


def test_session_signal_on_tampered_identity() -> None:
    request = RequestContext(cookies={"ssjd": "1"}, referer="x")

    assert _detect(request, identity_cookie="forged", reissued=True, created=True) == {"session"}


def test_session_signal_on_lost_record() -> None:
    request = RequestContext(cookies={"ssjd": "1"}, referer="x")

    assert _detect(request, reissued=False, created=True) == {"session"}


def test_first_visit_is_not_a_session_signal() -> None:
    assert _detect(RequestContext(), identity_cookie=None, reissued=True, created=True) == set()


def test_disabled_filters_are_ignored() -> None:
    filters = FilterOptions.model_validate(
        {"cookie": {"enable": False}, "referer": {"enable": False}, "session": {"enable": False}}
    )
    request = RequestContext(flags=frozenset({"session"}))

    assert _detect(request, now=START + 60, filters=filters, reissued=False, created=True) == set()


def test_caller_flags_pass_through() -> None:
    request = RequestContext(cookies={"ssjd": "1"}, referer="x", flags=frozenset({"referer", "unknown"}))

    assert _detect(request) == {"referer"}


def test_session_signal_waits_for_time_buffer() -> None:
    """Test that a client IP seen for the first time is not blamed for a broken session."""
    request = RequestContext(cookies={"ssjd": "1"}, referer="x")

    assert _detect(request, created=True, first_seen=START - 5) == set()
    assert _detect(request, created=True, first_seen=START - 6) == {"session"}


def test_session_time_buffer_is_configurable() -> None:
    filters = FilterOptions.model_validate({"session": {"config": {"time_buffer": 120}}})
    request = RequestContext(cookies={"ssjd": "1"}, referer="x")

    assert _detect(request, filters=filters, created=True) == set()
    assert _detect(request, filters=filters, created=True, first_seen=START - 121) == {"session"}


def test_session_buffer_falls_back_to_record_age() -> None:
    request = RequestContext(cookies={"ssjd": "1"}, referer="x")

    assert _detect(request, created=True, first_seen=None) == set()
    assert _detect(request, now=START + 6, created=True, first_seen=None) == {"session"}
