import asyncio
from datetime import datetime, timedelta, timezone

from leadsync.models.schemas import LeadRecord
from leadsync.services import lead_service, views

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def lead(id, minutes=0, **kw):
    kw.setdefault("name", f"Lead {id}")
    at = T0 + timedelta(minutes=minutes)
    return LeadRecord(id=id, user_id="u1", created_at=at, updated_at=at, **kw)


SAMPLE = [
    lead("a", 0, status="hot", lead_type="inbound", source_channel="inbound_call", qualified=True),
    lead("b", 1, status="warm", lead_type="inbound", source_channel="web_form", call_result="appointment_booked"),
    lead("c", 2, status="cold", lead_type="outbound", source_channel="cold_call", email="c@example.com"),
    lead("d", 3, status="uninterested", lead_type="inbound", call_result="unsuccessful"),
]


def test_filter_leads():
    assert [l.id for l in views.filter_leads(SAMPLE, status="hot")] == ["a"]
    assert [l.id for l in views.filter_leads(SAMPLE, lead_type="outbound")] == ["c"]
    assert [l.id for l in views.filter_leads(SAMPLE, qualified="not_qualified")] == ["b", "c", "d"]
    assert [l.id for l in views.filter_leads(SAMPLE, search="EXAMPLE")] == ["c"]


def test_inbound_summary_and_filter():
    assert views.inbound_summary(SAMPLE) == {"total_inbound": 3, "to_work": 2, "appointments_booked": 1}
    assert [l.id for l in views.filter_inbound(SAMPLE, "booked")] == ["b"]
    assert [l.id for l in views.filter_inbound(SAMPLE, "to_work")] == ["b", "d"]
    assert [l.id for l in views.filter_inbound(SAMPLE, "hot")] == ["a"]


def test_dashboard_stats():
    stats = views.dashboard_stats(SAMPLE)
    assert stats["total_leads"] == 4
    assert stats["conversion_rate"] == 50.0
    assert [l.id for l in stats["recent_leads"]] == ["d", "c", "b", "a"]
    assert views.dashboard_stats([])["conversion_rate"] == 0.0


def test_quick_analytics():
    stats = views.quick_analytics(SAMPLE)
    assert stats["inbound_leads"] == 3 and stats["outbound_leads"] == 1
    assert stats["appointments_booked"] == 1 and stats["unsuccessful"] == 1
    assert stats["conversion_rate"] == 25.0
    assert stats["inbound_by_source"] == {"inbound_call": 1, "web_form": 1, "unknown": 1}
    assert [l.id for l in stats["recent_qualified_leads"]] == ["a"]


def test_dashboard_follows_writes(store):
    async def scenario():
        await lead_service.create_lead(store, "u1", name="First", status="hot")
        view = views.DashboardView(store, "u1")
        await view.mount()
        assert view.loading is False
        assert view.data["total_leads"] == 1

        await lead_service.create_lead(store, "u1", name="Second", status="warm")
        await lead_service.create_lead(store, "u2", name="Not mine")
        await view.flush()
        assert view.data["total_leads"] == 2
        assert view.data["warm_leads"] == 1
        await view.unmount()
        assert store.bus.stats()["__total__"] == 0

    asyncio.run(scenario())


def test_inbound_view_drops_leads_that_leave_scope(store):
    async def scenario():
        inbound = await lead_service.create_lead(store, "u1", name="In", lead_type="inbound")
        view = views.InboundLeadsView(store, "u1")
        await view.mount()
        await lead_service.create_lead(store, "u1", name="Out", lead_type="outbound")
        await view.flush()
        assert view.data["summary"]["total_inbound"] == 1

        await lead_service.update_lead(store, inbound.id, lead_type="outbound")
        await view.flush()
        assert view.data["summary"]["total_inbound"] == 0
        await view.unmount()

    asyncio.run(scenario())


def test_leads_view_optimistic_save_is_not_duplicated(store):
    async def scenario():
        view = views.LeadsView(store, "u1")
        await view.mount()
        saved = await view.save_lead(name="Gus", phone="555 000 1111")
        await view.flush()
        assert [l.id for l in view.data["leads"]] == [saved.id]
        assert view.notifier.current.message == "Lead added successfully"

        view.set_filters(status="hot")
        assert view.data["filtered"] == []

        assert await view.delete_lead(saved.id) is True
        await view.flush()
        assert view.data["leads"] == []
        await view.unmount()

    asyncio.run(scenario())


def test_session_shares_one_subscription(store):
    async def scenario():
        session = views.LeadsSession(store, "u1")
        dash = session.attach(views.DashboardView)
        analytics = session.attach(views.AnalyticsView)
        await session.start()
        await lead_service.create_lead(store, "u1", name="Ivy", lead_type="inbound")
        await session.flush()
        assert store.bus.stats()["leads"] == 1
        assert dash.data["total_leads"] == 1
        assert analytics.data["inbound_leads"] == 1

        await session.set_user("u2")
        assert dash.data["total_leads"] == 0
        await session.stop()
        assert store.bus.stats()["__total__"] == 0

    asyncio.run(scenario())
