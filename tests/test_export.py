import csv
import io
import json
from datetime import date, datetime

import pytest

from funnel_tracker.core.exceptions import ValidationError
from funnel_tracker.schemas.analytics import AnalyticsSummary, FunnelAnalytics, StepAnalytics
from funnel_tracker.services import export, funnel_manager


@pytest.fixture()
def sample_analytics():
    steps = [
        StepAnalytics(
            step_id=1, step_order=1, step_name="Landing", step_type="page",
            unique_visitors=3, total_events=5, conversion_rate=None,
            first_event=datetime(2026, 3, 10, 9, 0), last_event=datetime(2026, 3, 10, 17, 30),
        ),
        StepAnalytics(
            step_id=2, step_order=2, step_name="  ", step_type="form",
            unique_visitors=2, total_events=2, conversion_rate=200 / 3,
            first_event=datetime(2026, 3, 10, 9, 5), last_event=datetime(2026, 3, 10, 10, 0),
        ),
        StepAnalytics(step_id=3, step_order=3, step_name='Say "thanks", please', step_type="page"),
    ]
    return FunnelAnalytics(
        funnel_id=1,
        date_from=date(2026, 3, 1),
        date_to=date(2026, 3, 31),
        steps=steps,
        summary=AnalyticsSummary(total_entries=3, total_completions=0),
    )


def test_csv_layout(sample_analytics):
    text = export.to_csv(sample_analytics)
    lines = text.strip("\n").split("\n")

    assert len(lines) == len(sample_analytics.steps) + 1
    assert lines[0] == ",".join(f'"{column}"' for column in export.CSV_HEADER)
    assert lines[1] == '"1","Landing","Page","3","5","","2026-03-10 09:00:00","2026-03-10 17:30:00"'
    assert lines[2].startswith('"2","Unnamed Step","Form","2","2","66.67"')

    rows = list(csv.reader(io.StringIO(text)))
    assert rows[3][1] == 'Say "thanks", please'
    assert rows[3][6:] == ["", ""]


def test_csv_round_trip(sample_analytics):
    parsed = export.parse_csv(export.to_csv(sample_analytics))

    assert len(parsed) == len(sample_analytics.steps)
    for original, restored in zip(sample_analytics.steps, parsed):
        assert restored.step_order == original.step_order
        assert restored.step_name == original.step_name.strip()
        assert restored.step_type == original.step_type
        assert restored.unique_visitors == original.unique_visitors
        assert restored.total_events == original.total_events
        assert restored.first_event == original.first_event
        assert restored.last_event == original.last_event
        if original.conversion_rate is None:
            assert restored.conversion_rate is None
        else:
            assert restored.conversion_rate == round(original.conversion_rate, 2)


def test_parse_csv_rejects_foreign_header():
    with pytest.raises(ValidationError):
        export.parse_csv('"a","b"\n"1","2"\n')


def test_json_is_pretty_printed(sample_analytics):
    text = export.to_json(sample_analytics)
    assert text.startswith("{\n  ")
    data = json.loads(text)
    assert data["funnel_id"] == 1
    assert data["steps"][0]["conversion_rate"] is None
    assert data["date_from"] == "2026-03-01"


def test_render_analytics_unknown_format(sample_analytics):
    with pytest.raises(ValidationError):
        export.render_analytics(sample_analytics, "xml")


def test_export_tracking_events_newest_first(db, add_event):
    funnel = funnel_manager.create_funnel(db, "Export", steps=[{"step_type": "page", "page_id": 4}])
    step = funnel.steps[0]
    add_event(step, "older", datetime(2026, 3, 1, 8, 0), utm_source="google")
    add_event(step, "newer", datetime(2026, 3, 2, 8, 0), user_agent="Mozilla/5.0, like Gecko")

    text = export.export_tracking_events(db, funnel.id, "csv")
    rows = list(csv.DictReader(io.StringIO(text)))
    assert [row["session_id"] for row in rows] == ["newer", "older"]
    assert rows[0]["user_agent"] == "Mozilla/5.0, like Gecko"
    assert rows[1]["utm_source"] == "google"
    assert rows[1]["created_at"] == "2026-03-01 08:00:00"
    assert list(rows[0]) == export.EVENT_COLUMNS

    data = json.loads(export.export_tracking_events(db, funnel.id, "json"))
    assert [event["session_id"] for event in data] == ["newer", "older"]
    assert data[0]["page_id"] == 4

    with pytest.raises(ValidationError):
        export.export_tracking_events(db, funnel.id, "xlsx")
