from datetime import date, datetime, timedelta
from urllib.parse import parse_qs, urlsplit

import pytest

from funnel_tracker.core.exceptions import ValidationError
from funnel_tracker.core.time import now_local
from funnel_tracker.services import funnel_manager, utm


def test_sanitize_utm_parameters():
    params = utm.sanitize_utm_parameters({
        "utm_source": "  <b>Google</b>\n Ads ",
        "utm_medium": ["cpc"],
        "utm_campaign": "x" * 300,
        "unrelated": "ignored",
    })
    assert params.utm_source == "Google Ads"
    assert params.utm_medium == ""
    assert len(params.utm_campaign) == 255
    assert params.utm_term == ""


def test_generate_utm_url_keeps_existing_query():
    url = utm.generate_utm_url(
        "https://example.com/landing?ref=abc",
        {"utm_source": "newsletter", "utm_medium": "email", "utm_campaign": ""},
    )
    query = parse_qs(urlsplit(url).query)
    assert query == {"ref": ["abc"], "utm_source": ["newsletter"], "utm_medium": ["email"]}


@pytest.fixture()
def step(db):
    funnel = funnel_manager.create_funnel(db, "UTM", steps=[{"step_type": "page", "page_id": 1}])
    return funnel.steps[0]


def test_utm_report_groups_per_day(db, step, add_event):
    add_event(step, "a", datetime(2026, 3, 10, 9), utm_source="google", utm_medium="cpc")
    add_event(step, "a", datetime(2026, 3, 10, 10), utm_source="google", utm_medium="cpc")
    add_event(step, "b", datetime(2026, 3, 10, 11), utm_source="google", utm_medium="cpc")
    add_event(step, "c", datetime(2026, 3, 11, 9))

    report = utm.get_utm_report(db, date(2026, 3, 10), date(2026, 3, 11))

    assert report.data[0].event_date == date(2026, 3, 11)
    google = report.data[1]
    assert google.event_date == date(2026, 3, 10)
    assert google.utm_source == "google"
    assert google.unique_sessions == 2
    assert google.total_events == 3
    assert report.summary.total_sessions == 3
    assert report.summary.total_events == 4
    assert report.summary.sessions_with_utm == 2


def test_utm_statistics_and_available_values(db, step, add_event):
    recent = now_local() - timedelta(days=1)
    add_event(step, "a", recent, utm_source="google", utm_campaign="spring")
    add_event(step, "b", recent, utm_source="google")
    add_event(step, "c", recent, utm_source="bing")
    add_event(step, "d", recent)
    add_event(step, "e", now_local() - timedelta(days=90), utm_source="yahoo")

    stats = utm.get_utm_statistics(db, days=30)
    assert [(v.value, v.sessions) for v in stats.top_sources] == [("google", 2), ("bing", 1)]
    assert [v.value for v in stats.top_campaigns] == ["spring"]
    assert stats.top_mediums == []

    assert utm.get_available_utm_values(db, "utm_source") == ["bing", "google", "yahoo"]
    with pytest.raises(ValidationError):
        utm.get_available_utm_values(db, "id; drop table")
