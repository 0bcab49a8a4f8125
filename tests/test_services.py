"""
Tests for the service layer: event log, quota store, alert trigger,
tracking orchestration and analytics.
"""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from metering.exceptions import ConflictError, ValidationError
from metering.models.billing_alert import AlertType, BillingAlert
from metering.models.subject import Subject
from metering.models.usage_event import UsageEvent, UsageEventType
from metering.models.usage_quota import QuotaType, ResetPeriod
from metering.models.user import User
from metering.services.alert_service import AlertService
from metering.services.analytics_service import AnalyticsService
from metering.services.quota_service import QuotaService
from metering.services.usage_event_service import UsageEventService
from metering.services.usage_tracking_service import UsageTrackingService, quota_type_for_event
from metering.config import DEFAULT_USAGE_PRICING
from metering.utils.clock import FixedClock

NOW = datetime(2026, 10, 15, 12, 0, 0)


async def _count_alerts(db: AsyncSession, subject: Subject, alert_type: AlertType) -> int:
    result = await db.execute(
        select(func.count()).select_from(BillingAlert).where(
            BillingAlert.subject_key == subject.key,
            BillingAlert.alert_type == alert_type
        )
    )
    return result.scalar_one()


class TestUsageEventService:
    """Tests for UsageEventService."""

    @pytest.mark.asyncio
    async def test_record_stamps_billing_period(self, db_session: AsyncSession, test_user: User):
        subject = Subject.for_user(test_user.id)

        event = await UsageEventService.record(
            db_session, subject, UsageEventType.API_CALL, 3, NOW, metadata={"endpoint": "/v1/things"}
        )

        assert event.id is not None
        assert event.user_id == test_user.id
        assert event.organization_id is None
        assert event.subject_key == f"user:{test_user.id}"
        assert event.quantity == 3
        assert event.event_metadata == {"endpoint": "/v1/things"}
        assert event.billing_period_start == datetime(2026, 10, 1, 0, 0, 0)
        assert event.billing_period_end == datetime(2026, 10, 31, 23, 59, 59)
        assert event.processed is False

    @pytest.mark.asyncio
    async def test_record_rejects_zero_quantity(self, db_session: AsyncSession, test_user: User):
        with pytest.raises(ValidationError):
            await UsageEventService.record(
                db_session, Subject.for_user(test_user.id), UsageEventType.API_CALL, 0, NOW
            )


class TestQuotaService:
    """Tests for QuotaService."""

    @pytest.mark.asyncio
    async def test_get_missing_quota_returns_none(self, db_session: AsyncSession, test_user: User):
        quota = await QuotaService.get(db_session, Subject.for_user(test_user.id), QuotaType.API_CALLS)
        assert quota is None

    @pytest.mark.asyncio
    async def test_increment_accumulates(self, db_session: AsyncSession, test_user: User, make_quota):
        subject = Subject.for_user(test_user.id)
        await make_quota(subject, QuotaType.API_CALLS, 100, current_usage=5)

        for delta in (1, 2, 3):
            quota = await QuotaService.increment(db_session, subject, QuotaType.API_CALLS, delta, NOW)

        assert quota.current_usage == 11
        reloaded = await QuotaService.get(db_session, subject, QuotaType.API_CALLS)
        assert reloaded.current_usage == 11

    @pytest.mark.asyncio
    async def test_increment_without_quota_returns_none(self, db_session: AsyncSession, test_user: User):
        quota = await QuotaService.increment(
            db_session, Subject.for_user(test_user.id), QuotaType.EXPORTS, 1, NOW
        )
        assert quota is None

    @pytest.mark.asyncio
    async def test_increment_rejects_non_positive_delta(self, db_session: AsyncSession, test_user: User):
        with pytest.raises(ValidationError):
            await QuotaService.increment(db_session, Subject.for_user(test_user.id), QuotaType.API_CALLS, 0, NOW)

    @pytest.mark.asyncio
    async def test_increment_only_touches_own_subject(
        self, db_session: AsyncSession, test_user: User, outsider_user: User, make_quota
    ):
        mine = Subject.for_user(test_user.id)
        theirs = Subject.for_user(outsider_user.id)
        await make_quota(mine, QuotaType.API_CALLS, 100)
        await make_quota(theirs, QuotaType.API_CALLS, 100)

        await QuotaService.increment(db_session, mine, QuotaType.API_CALLS, 4, NOW)

        assert (await QuotaService.get(db_session, theirs, QuotaType.API_CALLS)).current_usage == 0

    @pytest.mark.asyncio
    async def test_set_limit_creates_then_updates(self, db_session: AsyncSession, test_user: User):
        subject = Subject.for_user(test_user.id)

        created = await QuotaService.set_limit(db_session, subject, QuotaType.PROJECTS, 5, NOW)
        assert created.limit_value == 5
        assert created.current_usage == 0
        assert created.reset_period == ResetPeriod.MONTHLY

        updated = await QuotaService.set_limit(
            db_session, subject, QuotaType.PROJECTS, -1, NOW, reset_period=ResetPeriod.YEARLY
        )
        assert updated.id == created.id
        assert updated.limit_value == -1
        assert updated.reset_period == ResetPeriod.YEARLY

    @pytest.mark.asyncio
    async def test_set_limit_insert_collision_without_row_is_conflict(
        self, db_session: AsyncSession, test_user: User, make_quota
    ):
        subject = Subject.for_user(test_user.id)
        await make_quota(subject, QuotaType.PROJECTS, 5)

        # The lookup never sees the existing row, so the insert hits the unique constraint
        with patch.object(QuotaService, "get", AsyncMock(return_value=None)):
            with pytest.raises(ConflictError):
                await QuotaService.set_limit(db_session, subject, QuotaType.PROJECTS, 10, NOW)

    @pytest.mark.asyncio
    async def test_set_limit_rejects_below_unlimited(self, db_session: AsyncSession, test_user: User):
        with pytest.raises(ValidationError):
            await QuotaService.set_limit(db_session, Subject.for_user(test_user.id), QuotaType.PROJECTS, -2, NOW)

    @pytest.mark.asyncio
    async def test_reset_selected_types_only(self, db_session: AsyncSession, test_user: User, make_quota):
        subject = Subject.for_user(test_user.id)
        await make_quota(subject, QuotaType.API_CALLS, 100, current_usage=50)
        await make_quota(subject, QuotaType.EXPORTS, 10, current_usage=4)
        await make_quota(subject, QuotaType.PROJECTS, 3, current_usage=2)

        later = NOW + timedelta(hours=1)
        count = await QuotaService.reset(db_session, subject, later, quota_types=[QuotaType.API_CALLS])

        assert count == 1
        api_calls = await QuotaService.get(db_session, subject, QuotaType.API_CALLS)
        assert api_calls.current_usage == 0
        assert api_calls.last_reset == later
        assert (await QuotaService.get(db_session, subject, QuotaType.EXPORTS)).current_usage == 4
        assert (await QuotaService.get(db_session, subject, QuotaType.PROJECTS)).current_usage == 2

    @pytest.mark.asyncio
    async def test_reset_is_idempotent(self, db_session: AsyncSession, test_user: User, make_quota):
        subject = Subject.for_user(test_user.id)
        await make_quota(subject, QuotaType.API_CALLS, 100, current_usage=50)
        await make_quota(subject, QuotaType.EXPORTS, 10, current_usage=4)

        first = await QuotaService.reset(db_session, subject, NOW)
        second = await QuotaService.reset(db_session, subject, NOW)

        assert first == second == 2
        quotas = await QuotaService.list_for_subject(db_session, subject)
        assert [q.current_usage for q in quotas] == [0, 0]

    @pytest.mark.asyncio
    async def test_reset_filters_by_period(self, db_session: AsyncSession, test_user: User, make_quota):
        subject = Subject.for_user(test_user.id)
        await make_quota(subject, QuotaType.API_CALLS, 100, current_usage=50, reset_period=ResetPeriod.DAILY)
        await make_quota(subject, QuotaType.EXPORTS, 10, current_usage=4)

        count = await QuotaService.reset(db_session, subject, NOW, reset_period=ResetPeriod.DAILY)

        assert count == 1
        assert (await QuotaService.get(db_session, subject, QuotaType.EXPORTS)).current_usage == 4

    @pytest.mark.asyncio
    async def test_reset_due_only_resets_stale_quotas(
        self, db_session: AsyncSession, test_user: User, outsider_user: User, make_quota
    ):
        stale = Subject.for_user(test_user.id)
        fresh = Subject.for_user(outsider_user.id)
        await make_quota(
            stale, QuotaType.API_CALLS, 100, current_usage=30,
            reset_period=ResetPeriod.DAILY, last_reset=NOW - timedelta(days=1)
        )
        await make_quota(
            fresh, QuotaType.API_CALLS, 100, current_usage=30,
            reset_period=ResetPeriod.DAILY, last_reset=NOW.replace(hour=0, minute=1)
        )
        # Monthly quota last reset this month: not due
        await make_quota(
            stale, QuotaType.EXPORTS, 10, current_usage=3,
            reset_period=ResetPeriod.MONTHLY, last_reset=NOW - timedelta(days=1)
        )

        dry = await QuotaService.reset_due(db_session, ResetPeriod.DAILY, NOW, dry_run=True)
        assert dry == 1
        assert (await QuotaService.get(db_session, stale, QuotaType.API_CALLS)).current_usage == 30

        count = await QuotaService.reset_due(db_session, ResetPeriod.DAILY, NOW)
        assert count == 1
        assert (await QuotaService.get(db_session, stale, QuotaType.API_CALLS)).current_usage == 0
        assert (await QuotaService.get(db_session, fresh, QuotaType.API_CALLS)).current_usage == 30
        assert (await QuotaService.get(db_session, stale, QuotaType.EXPORTS)).current_usage == 3

        # Same window again: nothing left to reset
        assert await QuotaService.reset_due(db_session, ResetPeriod.DAILY, NOW) == 0


class TestAlertService:
    """Tests for threshold alerts and the alert inbox."""

    @pytest.mark.asyncio
    async def test_below_threshold_creates_nothing(self, db_session: AsyncSession, test_user: User):
        alerts = await AlertService.evaluate_thresholds(
            db_session, Subject.for_user(test_user.id), QuotaType.API_CALLS,
            current_usage=79, limit_value=100, event_type=UsageEventType.API_CALL, now=NOW
        )
        assert alerts == []

    @pytest.mark.asyncio
    async def test_warning_created_once_while_unacknowledged(self, db_session: AsyncSession, test_user: User):
        subject = Subject.for_user(test_user.id)

        first = await AlertService.evaluate_thresholds(
            db_session, subject, QuotaType.API_CALLS,
            current_usage=85, limit_value=100, event_type=UsageEventType.API_CALL, now=NOW
        )
        second = await AlertService.evaluate_thresholds(
            db_session, subject, QuotaType.API_CALLS,
            current_usage=90, limit_value=100, event_type=UsageEventType.API_CALL, now=NOW
        )

        assert len(first) == 1
        warning = first[0]
        assert warning.alert_type == AlertType.QUOTA_WARNING
        assert warning.threshold_percentage == 85
        assert warning.current_usage == 85
        assert warning.limit_value == 100
        assert warning.alert_metadata["event_type"] == "api_call"
        assert second == []
        assert await _count_alerts(db_session, subject, AlertType.QUOTA_WARNING) == 1

    @pytest.mark.asyncio
    async def test_acknowledged_warning_allows_new_warning(self, db_session: AsyncSession, test_user: User):
        subject = Subject.for_user(test_user.id)
        [warning] = await AlertService.evaluate_thresholds(
            db_session, subject, QuotaType.API_CALLS,
            current_usage=80, limit_value=100, event_type=UsageEventType.API_CALL, now=NOW
        )

        await AlertService.acknowledge(db_session, warning, NOW)
        again = await AlertService.evaluate_thresholds(
            db_session, subject, QuotaType.API_CALLS,
            current_usage=82, limit_value=100, event_type=UsageEventType.API_CALL, now=NOW
        )

        assert warning.acknowledged is True
        assert warning.acknowledged_at == NOW
        assert len(again) == 1

    @pytest.mark.asyncio
    async def test_warnings_are_per_quota_type(self, db_session: AsyncSession, test_user: User):
        subject = Subject.for_user(test_user.id)
        for quota_type in (QuotaType.API_CALLS, QuotaType.EXPORTS):
            created = await AlertService.evaluate_thresholds(
                db_session, subject, quota_type,
                current_usage=9, limit_value=10, event_type=UsageEventType.API_CALL, now=NOW
            )
            assert len(created) == 1

    @pytest.mark.asyncio
    async def test_exceeded_alert_every_time(self, db_session: AsyncSession, test_user: User):
        subject = Subject.for_user(test_user.id)

        for usage in (100, 110):
            [alert] = await AlertService.evaluate_thresholds(
                db_session, subject, QuotaType.API_CALLS,
                current_usage=usage, limit_value=100, event_type=UsageEventType.API_CALL, now=NOW
            )
            assert alert.alert_type == AlertType.QUOTA_EXCEEDED
            assert alert.threshold_percentage == 100

        assert await _count_alerts(db_session, subject, AlertType.QUOTA_EXCEEDED) == 2

    @pytest.mark.asyncio
    async def test_unlimited_never_alerts(self, db_session: AsyncSession, test_user: User):
        alerts = await AlertService.evaluate_thresholds(
            db_session, Subject.for_user(test_user.id), QuotaType.API_CALLS,
            current_usage=10_000, limit_value=-1, event_type=UsageEventType.API_CALL, now=NOW
        )
        assert alerts == []

    @pytest.mark.asyncio
    async def test_store_rejects_second_open_warning(self, db_session: AsyncSession, test_user: User):
        """A concurrent request that slipped past the lookback inserts nothing."""
        subject = Subject.for_user(test_user.id)
        await AlertService.evaluate_thresholds(
            db_session, subject, QuotaType.API_CALLS,
            current_usage=85, limit_value=100, event_type=UsageEventType.API_CALL, now=NOW
        )

        duplicate = await AlertService._insert_warning(db_session, {
            **subject.columns(),
            "id": "duplicate-warning",
            "alert_type": AlertType.QUOTA_WARNING,
            "quota_type": QuotaType.API_CALLS,
            "threshold_percentage": 86,
            "current_usage": 86,
            "limit_value": 100,
            "metadata": {},
            "acknowledged": False,
            "triggered_at": NOW,
        })

        assert duplicate is None
        assert await _count_alerts(db_session, subject, AlertType.QUOTA_WARNING) == 1

    @pytest.mark.asyncio
    async def test_list_alerts_filters_and_pages(self, db_session: AsyncSession, test_user: User):
        subject = Subject.for_user(test_user.id)
        clock = FixedClock(NOW)
        for usage in (100, 101, 102):
            await AlertService.evaluate_thresholds(
                db_session, subject, QuotaType.API_CALLS,
                current_usage=usage, limit_value=100, event_type=UsageEventType.API_CALL, now=clock.now()
            )
            clock.advance(minutes=1)
        await AlertService.evaluate_thresholds(
            db_session, subject, QuotaType.EXPORTS,
            current_usage=8, limit_value=10, event_type=UsageEventType.EXPORT_GENERATED, now=clock.now()
        )

        page = await AlertService.list_alerts(
            db_session, subject, alert_type=AlertType.QUOTA_EXCEEDED, limit=2, offset=0
        )
        assert [a.current_usage for a in page] == [102, 101]

        next_page = await AlertService.list_alerts(
            db_session, subject, alert_type=AlertType.QUOTA_EXCEEDED, limit=2, offset=2
        )
        assert [a.current_usage for a in next_page] == [100]

        everything = await AlertService.list_alerts(db_session, subject)
        assert len(everything) == 4
        assert everything[0].alert_type == AlertType.QUOTA_WARNING

    @pytest.mark.asyncio
    async def test_dismiss_deletes(self, db_session: AsyncSession, test_user: User):
        subject = Subject.for_user(test_user.id)
        [alert] = await AlertService.evaluate_thresholds(
            db_session, subject, QuotaType.API_CALLS,
            current_usage=100, limit_value=100, event_type=UsageEventType.API_CALL, now=NOW
        )
        alert_id = alert.id

        await AlertService.dismiss(db_session, alert)

        assert await AlertService.get(db_session, alert_id) is None


class TestUsageTrackingService:
    """Tests for the tracking pipeline."""

    def test_event_quota_mapping(self):
        assert quota_type_for_event(UsageEventType.API_CALL) == QuotaType.API_CALLS
        assert quota_type_for_event(UsageEventType.USER_INVITED) == QuotaType.TEAM_MEMBERS
        assert quota_type_for_event(UsageEventType.ADVANCED_FEATURE) is None

    @pytest.mark.asyncio
    async def test_threshold_sequence(self, db_session: AsyncSession, test_user: User, make_quota, clock):
        subject = Subject.for_user(test_user.id)
        await make_quota(subject, QuotaType.API_CALLS, 100, current_usage=69)

        async def track(quantity):
            clock.advance(seconds=1)
            return await UsageTrackingService.track(
                db_session, subject, UsageEventType.API_CALL, quantity, clock
            )

        at_70 = await track(1)
        assert at_70.quota_status.current == 70
        assert at_70.quota_status.percentage == 70
        assert at_70.created_alerts == []

        at_85 = await track(15)
        assert [a.alert_type for a in at_85.created_alerts] == [AlertType.QUOTA_WARNING]
        assert at_85.quota_status.remaining == 15

        at_90 = await track(5)
        assert at_90.created_alerts == []
        assert len(at_90.recent_alerts) == 1

        at_100 = await track(10)
        assert [a.alert_type for a in at_100.created_alerts] == [AlertType.QUOTA_EXCEEDED]
        assert at_100.quota_status.remaining == 0
        assert at_100.quota_status.percentage == 100

        at_105 = await track(5)
        assert [a.alert_type for a in at_105.created_alerts] == [AlertType.QUOTA_EXCEEDED]
        assert at_105.quota_status.current == 105
        assert at_105.recent_alerts[0].id == at_105.created_alerts[0].id

    @pytest.mark.asyncio
    async def test_no_quota_reports_unlimited(self, db_session: AsyncSession, test_user: User, clock):
        subject = Subject.for_user(test_user.id)

        result = await UsageTrackingService.track(
            db_session, subject, UsageEventType.EMAIL_SENT, 4, clock, metadata={"campaign": "launch"}
        )

        assert result.quota_status.current == 4
        assert result.quota_status.limit == -1
        assert result.quota_status.remaining == float("inf")
        assert result.quota_status.percentage == 0
        assert result.recent_alerts == []
        assert result.usage_event.event_metadata == {"campaign": "launch"}

    @pytest.mark.asyncio
    async def test_unmapped_event_is_recorded_only(self, db_session: AsyncSession, test_user: User, clock):
        subject = Subject.for_user(test_user.id)

        result = await UsageTrackingService.track(db_session, subject, UsageEventType.ADVANCED_FEATURE, 1, clock)

        stored = await db_session.get(UsageEvent, result.usage_event.id)
        assert stored is not None
        assert result.quota_status.limit == -1

    @pytest.mark.asyncio
    async def test_recent_alerts_are_capped(self, db_session: AsyncSession, test_user: User, make_quota, clock):
        subject = Subject.for_user(test_user.id)
        await make_quota(subject, QuotaType.API_CALLS, 1, current_usage=1)

        for _ in range(7):
            clock.advance(seconds=1)
            result = await UsageTrackingService.track(
                db_session, subject, UsageEventType.API_CALL, 1, clock, recent_alerts_limit=5
            )

        assert len(result.recent_alerts) == 5
        assert await _count_alerts(db_session, subject, AlertType.QUOTA_EXCEEDED) == 7


class TestAnalyticsService:
    """Tests for usage analytics."""

    @pytest.fixture
    async def seeded(self, db_session: AsyncSession, test_user: User, outsider_user: User, make_quota):
        subject = Subject.for_user(test_user.id)
        record = UsageEventService.record
        await record(db_session, subject, UsageEventType.API_CALL, 7, datetime(2026, 9, 1, 10, 0))
        await record(db_session, subject, UsageEventType.API_CALL, 5, datetime(2026, 9, 20, 10, 0))
        await record(db_session, subject, UsageEventType.API_CALL, 10, datetime(2026, 10, 14, 9, 0))
        await record(
            db_session, subject, UsageEventType.EXPORT_GENERATED, 2, datetime(2026, 10, 15, 8, 0), unit_price=25
        )
        await record(
            db_session, Subject.for_user(outsider_user.id), UsageEventType.API_CALL, 100, datetime(2026, 10, 1)
        )
        await make_quota(subject, QuotaType.API_CALLS, 100, current_usage=40)
        return subject

    @pytest.mark.asyncio
    async def test_thirty_day_summary(self, db_session: AsyncSession, seeded: Subject):
        report = await AnalyticsService.analytics(db_session, seeded, NOW, DEFAULT_USAGE_PRICING)

        assert report.total_usage == 17
        assert report.usage_by_type == {"api_call": 15, "export_generated": 2}
        assert [p.date for p in report.usage_trend] == ["2026-09-20", "2026-10-14", "2026-10-15"]
        assert [p.usage for p in report.usage_trend] == [5, 10, 2]
        # api_call at $0.001/unit, the export at its own 25 cents/unit
        assert report.total_cost == pytest.approx(0.005 + 0.01 + 0.5)
        assert report.previous_period_usage == 7
        assert report.current_period_usage == 12
        assert report.projected_cost == pytest.approx((0.01 + 0.5) / 14.5 * 31, rel=1e-4)
        assert report.quota_utilization["api_calls"].used == 40
        assert report.quota_utilization["api_calls"].percentage == 40

    @pytest.mark.asyncio
    async def test_seven_day_window_and_type_filter(self, db_session: AsyncSession, seeded: Subject):
        week = await AnalyticsService.analytics(db_session, seeded, NOW, DEFAULT_USAGE_PRICING, time_range="7d")
        assert week.total_usage == 12

        exports = await AnalyticsService.analytics(
            db_session, seeded, NOW, DEFAULT_USAGE_PRICING,
            event_type=UsageEventType.EXPORT_GENERATED, include_projections=False
        )
        assert exports.total_usage == 2
        assert exports.usage_by_type == {"export_generated": 2}
        assert exports.projected_cost == 0

    @pytest.mark.asyncio
    async def test_invalid_time_range(self, db_session: AsyncSession, seeded: Subject):
        with pytest.raises(ValidationError):
            await AnalyticsService.analytics(db_session, seeded, NOW, DEFAULT_USAGE_PRICING, time_range="2w")
