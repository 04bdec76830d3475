"""Tests for CLV record synthesis from identity and engagement insight."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.clv.tracking.schemas import CustomerValueRecord, EngagementInsight, Identity
from src.clv.tracking.synthesizer import (
    ACTIVITY_TRACKING,
    DATA_SYNC,
    InvalidIdentityError,
    Rounding,
    get_baseline,
    synthesize,
)

from tests.conftest import FIXED_NOW


class TestActivityTrackingBaseline:
    def test_zero_engagement_uses_base_factors(self, identity):
        """Empty batch: 150 x 8 x 2 = 2400."""
        record = synthesize(identity, EngagementInsight(), now=FIXED_NOW)

        assert record.average_purchase_value == 150
        assert record.purchase_frequency == 8
        assert record.customer_lifespan == 2
        assert record.clv == 2400
        assert record.last_updated == FIXED_NOW
        assert record.source == "activity_tracking"

    def test_full_engagement_scales_and_floors(self, identity):
        record = synthesize(identity, EngagementInsight(engagement_score=100), now=FIXED_NOW)

        # 150 * 1.5 = 225, floor(8 * 1.3) = 10, floor(2 * 1.2) = 2
        assert record.average_purchase_value == 225
        assert record.purchase_frequency == 10
        assert record.customer_lifespan == 2
        assert record.clv == 4500

    def test_any_form_submission_adds_value_bonus(self, identity):
        record = synthesize(identity, EngagementInsight(form_submissions=1), now=FIXED_NOW)

        assert record.average_purchase_value == 200

    def test_long_session_adds_lifespan_bonus(self, identity):
        at_threshold = synthesize(
            identity, EngagementInsight(session_duration_ms=300_000), now=FIXED_NOW
        )
        over = synthesize(identity, EngagementInsight(session_duration_ms=300_001), now=FIXED_NOW)

        assert at_threshold.customer_lifespan == 2
        assert over.customer_lifespan == 3

    def test_insight_counters_copied_onto_record(self, identity):
        insight = EngagementInsight(
            total_activities=7, engagement_score=42, session_duration_ms=12_345
        )

        record = synthesize(identity, insight, now=FIXED_NOW)

        assert record.total_activities == 7
        assert record.engagement_score == 42
        assert record.session_duration_ms == 12_345

    def test_deterministic_for_pinned_clock(self, identity):
        insight = EngagementInsight(engagement_score=63, clicks=4, form_submissions=2)

        first = synthesize(identity, insight, now=FIXED_NOW)
        second = synthesize(identity, insight, now=FIXED_NOW)

        assert first == second


class TestDataSyncBaseline:
    def test_bonuses_for_forms_and_logins(self, identity):
        insight = EngagementInsight(form_submissions=3, login_count=6)

        record = synthesize(identity, insight, baseline=DATA_SYNC, now=FIXED_NOW)

        assert record.average_purchase_value == 300
        assert record.purchase_frequency == 10
        assert record.customer_lifespan == 3.0
        assert record.clv == 9000
        assert record.source == "data_sync"

    def test_lifespan_kept_to_one_decimal(self, identity):
        # 2.5 * (1 + 0.5 * 0.2) = 2.75 -> 2.8
        record = synthesize(
            identity, EngagementInsight(engagement_score=50), baseline=DATA_SYNC, now=FIXED_NOW
        )

        assert record.customer_lifespan == 2.8

    def test_thresholds_are_strict(self, identity):
        insight = EngagementInsight(form_submissions=2, login_count=5)

        record = synthesize(identity, insight, baseline=DATA_SYNC, now=FIXED_NOW)

        assert record.average_purchase_value == 200
        assert record.customer_lifespan == 2.5


class TestIdentityHandling:
    def test_display_name_falls_back_to_email_local_part(self):
        record = synthesize(
            Identity(uid="u2", email="grace.hopper@example.com"),
            EngagementInsight(),
            now=FIXED_NOW,
        )

        assert record.name == "grace.hopper"
        assert record.id == "u2"

    def test_missing_uid_rejected(self):
        with pytest.raises(InvalidIdentityError):
            synthesize(Identity(uid="", email="x@example.com"), EngagementInsight())

    def test_missing_name_and_email_rejected(self):
        with pytest.raises(InvalidIdentityError, match="neither a display name nor an email"):
            synthesize(Identity(uid="u3"), EngagementInsight())

    def test_explicit_source_overrides_baseline_name(self, identity):
        record = synthesize(identity, EngagementInsight(), now=FIXED_NOW, source="data_sync")

        assert record.source == "data_sync"


class TestBaselineLookup:
    def test_known_names(self):
        assert get_baseline("activity_tracking") is ACTIVITY_TRACKING
        assert get_baseline("data_sync") is DATA_SYNC

    def test_unknown_name(self):
        with pytest.raises(ValueError, match="Unknown value formula"):
            get_baseline("lifetime_magic")

    def test_rounding_modes(self):
        assert Rounding.FLOOR.apply(10.99) == 10
        assert Rounding.ONE_DECIMAL.apply(2.25) == 2.3
        assert Rounding.ONE_DECIMAL.apply(2.24) == 2.2


class TestCustomerValueRecord:
    def test_clv_is_always_product_of_factors(self):
        record = CustomerValueRecord(
            id="c1",
            name="C",
            average_purchase_value=12.5,
            purchase_frequency=4,
            customer_lifespan=3,
        )

        assert record.clv == 150

    def test_negative_factor_rejected(self):
        with pytest.raises(ValidationError):
            CustomerValueRecord(
                id="c1",
                name="C",
                average_purchase_value=-1,
                purchase_frequency=4,
                customer_lifespan=3,
            )

    def test_wire_format_is_flat_camel_case(self, identity):
        wire = synthesize(identity, EngagementInsight(), now=FIXED_NOW).to_wire()

        assert wire["averagePurchaseValue"] == 150
        assert wire["purchaseFrequency"] == 8
        assert wire["customerLifespan"] == 2
        assert wire["clv"] == 2400
        assert wire["lastUpdated"].startswith("2026-03-01T12:00:00")
        assert wire["engagementScore"] == 0
        assert "average_purchase_value" not in wire
