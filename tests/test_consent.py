import json
from datetime import timedelta
from urllib.parse import unquote

import pytest

from funnel_tracker.core.config import settings
from funnel_tracker.core.exceptions import ValidationError
from funnel_tracker.core.time import now_local
from funnel_tracker.models.consent import ConsentRecord
from funnel_tracker.services.consent import (
    CATEGORIES_COOKIE_NAME,
    STATUS_COOKIE_NAME,
    ConsentContext,
    apply_consent_action,
    consent_statistics,
    get_consent_categories,
    has_consent,
    set_consent,
)


@pytest.mark.parametrize("status", ["", "declined", "accepted", "partial", "bogus"])
def test_necessary_is_always_granted(status):
    assert has_consent(ConsentContext(status=status), "necessary") is True


def test_declined_and_missing_cookie_deny_marketing():
    assert has_consent(ConsentContext(status="declined", categories={"necessary": True}), "marketing") is False
    # Expired consent: the browser no longer sends the cookie
    assert has_consent(ConsentContext.from_cookies({}), "marketing") is False


def test_partial_consent_checks_individual_categories():
    ctx = ConsentContext.from_cookies({
        STATUS_COOKIE_NAME: "partial",
        CATEGORIES_COOKIE_NAME: json.dumps({"analytics": True, "marketing": "true", "unknown": True}),
    })
    assert ctx.categories == {"analytics": True}
    assert has_consent(ctx, "analytics") is True
    assert has_consent(ctx, "marketing") is False
    assert get_consent_categories(ctx) == {
        "necessary": True, "analytics": True, "marketing": False, "preferences": False,
    }


def test_malformed_categories_cookie_is_ignored():
    ctx = ConsentContext.from_cookies({STATUS_COOKIE_NAME: "partial", CATEGORIES_COOKIE_NAME: "{not json"})
    assert ctx.categories == {}
    assert has_consent(ctx, "analytics") is False


def test_disabled_consent_subsystem_allows_everything(monkeypatch):
    monkeypatch.setattr(settings, "COOKIE_CONSENT_ENABLED", False)
    assert has_consent(ConsentContext(status="declined"), "marketing") is True


def test_apply_consent_action():
    status, categories = apply_consent_action("accept")
    assert status == "accepted"
    assert all(categories.values())

    assert apply_consent_action("decline") == ("declined", {"necessary": True})

    status, categories = apply_consent_action("customize", {"analytics": True, "bogus": True})
    assert status == "partial"
    assert categories == {"analytics": True, "necessary": True}

    status, _ = apply_consent_action("customize", {"analytics": False})
    assert status == "declined"

    with pytest.raises(ValidationError):
        apply_consent_action("shrug")


def test_set_consent_persists_record_and_forces_necessary(db):
    decision = set_consent(db, "partial", {"necessary": False, "analytics": True}, session_id="s1", ip_address="1.2.3.4")

    assert decision.categories["necessary"] is True
    record = db.query(ConsentRecord).one()
    assert record.id == decision.record_id
    assert record.consent_status == "partial"
    assert record.consent_categories == {"necessary": True, "analytics": True}
    assert (record.expires_at - record.created_at) == timedelta(days=180)
    assert decision.cookie_max_age == 180 * 24 * 60 * 60
    assert json.loads(unquote(decision.cookie_values()[CATEGORIES_COOKIE_NAME]))["analytics"] is True
    assert has_consent(decision.context(), "analytics")


def test_set_consent_rejects_unknown_status(db):
    with pytest.raises(ValidationError):
        set_consent(db, "maybe", {})


def test_consent_statistics_counts_recent_records(db):
    set_consent(db, "accepted", {})
    set_consent(db, "accepted", {})
    set_consent(db, "declined", {})
    old = ConsentRecord(
        session_id="old",
        consent_status="partial",
        consent_categories={"necessary": True},
        created_at=now_local() - timedelta(days=60),
        expires_at=now_local() + timedelta(days=120),
    )
    db.add(old)
    db.commit()

    stats = consent_statistics(db, days=30)
    assert stats == {"total_consents": 3, "accepted": 2, "declined": 1, "partial": 0}
