from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Callable, Dict, Iterable, List, Optional

from leadsync.core.errors import LeadSyncError
from leadsync.models.schemas import LeadRecord
from leadsync.services import lead_service
from leadsync.services.change_feed import ChangeFeedSubscriber
from leadsync.services.notifications import Notifier
from leadsync.services.replica import ReplicaStore
from leadsync.services.store import Store

logger = logging.getLogger("leadsync.views")


# -------------------
# Pure projections
# -------------------
def filter_leads(
    leads: Iterable[LeadRecord],
    *,
    status: str = "all",
    lead_type: str = "all",
    qualified: str = "all",
    search: str = "",
) -> List[LeadRecord]:
    out = list(leads)
    if status != "all":
        out = [l for l in out if l.status == status]
    if lead_type != "all":
        out = [l for l in out if l.lead_type == lead_type]
    if qualified == "qualified":
        out = [l for l in out if l.qualified is True]
    elif qualified == "not_qualified":
        out = [l for l in out if l.qualified is not True]
    if search:
        term = search.lower()

        def hit(l: LeadRecord) -> bool:
            fields = (l.name, l.email or "", l.phone or "", l.lead_type, l.source_channel or "")
            return any(term in f.lower() for f in fields)

        out = [l for l in out if hit(l)]
    return out


def inbound_summary(leads: Iterable[LeadRecord]) -> Dict[str, int]:
    leads = [l for l in leads if l.lead_type == "inbound"]
    return {
        "total_inbound": len(leads),
        "to_work": sum(1 for l in leads if l.qualified is False),
        "appointments_booked": sum(1 for l in leads if l.call_result == "appointment_booked"),
    }


def filter_inbound(leads: Iterable[LeadRecord], selected: str = "all") -> List[LeadRecord]:
    leads = [l for l in leads if l.lead_type == "inbound"]
    if selected == "all":
        return leads
    if selected == "to_work":
        return [l for l in leads if l.qualified is False]
    if selected == "booked":
        return [l for l in leads if l.call_result == "appointment_booked"]
    return [l for l in leads if l.status == selected]


def _newest(leads: Iterable[LeadRecord], n: int) -> List[LeadRecord]:
    return sorted(leads, key=lambda l: l.created_at, reverse=True)[:n]


def dashboard_stats(leads: Iterable[LeadRecord]) -> Dict[str, Any]:
    leads = list(leads)
    counts = Counter(l.status for l in leads)
    total = len(leads)
    hot, warm = counts.get("hot", 0), counts.get("warm", 0)
    return {
        "total_leads": total,
        "hot_leads": hot,
        "warm_leads": warm,
        "cold_leads": counts.get("cold", 0),
        "uninterested_leads": counts.get("uninterested", 0),
        "conversion_rate": (hot + warm) / total * 100 if total else 0.0,
        "recent_leads": _newest(leads, 5),
    }


def quick_analytics(leads: Iterable[LeadRecord]) -> Dict[str, Any]:
    leads = list(leads)
    total = len(leads)
    statuses = Counter(l.status for l in leads)
    results = Counter(l.call_result for l in leads)
    booked = results.get("appointment_booked", 0)
    by_source: Dict[str, int] = {}
    for l in leads:
        if l.lead_type == "inbound":
            source = l.source_channel or "unknown"
            by_source[source] = by_source.get(source, 0) + 1
    return {
        "total_leads": total,
        "inbound_leads": sum(1 for l in leads if l.lead_type == "inbound"),
        "outbound_leads": sum(1 for l in leads if l.lead_type == "outbound"),
        "hot_leads": statuses.get("hot", 0),
        "warm_leads": statuses.get("warm", 0),
        "cold_leads": statuses.get("cold", 0),
        "appointments_booked": booked,
        "unsuccessful": results.get("unsuccessful", 0),
        # % of leads that resulted in appointment_booked
        "conversion_rate": booked / total * 100 if total else 0.0,
        "inbound_by_source": by_source,
        "recent_qualified_leads": _newest((l for l in leads if l.qualified is True), 10),
    }


# -------------------
# Live views
# -------------------
class LiveView:
    """
    A screen bound to a leads replica.

    Standalone (default): owns its replica and a user-scoped subscription;
    mount() reloads then subscribes, unmount() unsubscribes.
    Attached (`replica=` given): re-derives from a replica someone else keeps
    live, e.g. a LeadsSession shared by several views.
    """

    channel = "leads"

    def __init__(
        self,
        store: Store,
        user_id: str,
        *,
        replica: Optional[ReplicaStore] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.store = store
        self.user_id = user_id
        self.notifier = notifier or Notifier()
        self.owns_replica = replica is None
        self.replica = replica if replica is not None else ReplicaStore("leads")
        self.subscriber: Optional[ChangeFeedSubscriber] = None
        if self.owns_replica:
            self.subscriber = ChangeFeedSubscriber(
                self.replica,
                user_id=user_id,
                bus=store.bus,
                channel=self.channel,
                accept=self.accept,
            )
        self.loading = self.owns_replica
        self.data: Any = self.project([])
        self.renders = 0
        self._detach: Optional[Callable[[], None]] = self.replica.add_listener(self._on_change)
        if not self.owns_replica:
            self._on_change(self.replica)

    # hooks
    def accept(self, lead: LeadRecord) -> bool:
        return True

    def project(self, leads: List[LeadRecord]) -> Any:
        return leads

    async def fetch(self) -> List[LeadRecord]:
        return await lead_service.list_leads(self.store, self.user_id)

    def _on_change(self, replica: ReplicaStore) -> None:
        self.data = self.project(replica.list())
        self.renders += 1

    # lifecycle
    async def reload(self) -> None:
        try:
            rows = await self.fetch()
        except LeadSyncError as e:
            logger.error("%s: load failed user=%s: %s", type(self).__name__, self.user_id, e.message)
            self.notifier.error(e.message)
            return
        finally:
            self.loading = False
        self.replica.replace_all(rows)

    async def mount(self) -> None:
        if not self.owns_replica:
            return
        await self.reload()
        await self.subscriber.start()

    async def unmount(self) -> None:
        if self.subscriber is not None:
            await self.subscriber.stop()
        if self._detach is not None:
            self._detach()
            self._detach = None
        self.notifier.close()

    async def set_user(self, user_id: str) -> None:
        self.user_id = user_id
        if self.subscriber is not None:
            await self.subscriber.set_user(user_id)
            await self.reload()

    async def flush(self) -> None:
        if self.subscriber is not None:
            await self.subscriber.flush()


class LeadsView(LiveView):
    """Lead table with filters plus user-initiated writes."""

    channel = "leads"

    def __init__(self, *args, **kwargs):
        self.filters = {"status": "all", "lead_type": "all", "qualified": "all", "search": ""}
        super().__init__(*args, **kwargs)

    def project(self, leads):
        return {"leads": leads, "filtered": filter_leads(leads, **self.filters)}

    def set_filters(self, **filters: str) -> None:
        self.filters.update(filters)
        self._on_change(self.replica)

    async def save_lead(self, lead_id: Optional[str] = None, **fields: Any) -> Optional[LeadRecord]:
        try:
            if lead_id:
                lead = await lead_service.update_lead(self.store, lead_id, user_id=self.user_id, **fields)
                self.notifier.success("Lead updated successfully")
            else:
                lead = await lead_service.create_lead(self.store, self.user_id, **fields)
                self.notifier.success("Lead added successfully")
        except LeadSyncError as e:
            self.notifier.error(e.message)
            return None
        # optimistic; the echo insert is deduplicated by the subscriber
        self.replica.upsert(lead)
        return lead

    async def delete_lead(self, lead_id: str) -> bool:
        try:
            removed = await lead_service.delete_lead(self.store, lead_id, user_id=self.user_id)
        except LeadSyncError as e:
            self.notifier.error(e.message)
            return False
        if removed:
            self.replica.remove(lead_id)
            self.notifier.success("Lead deleted successfully")
        return removed


class InboundLeadsView(LiveView):
    channel = "inbound_leads"

    def __init__(self, *args, **kwargs):
        self.selected = "all"
        super().__init__(*args, **kwargs)

    def accept(self, lead: LeadRecord) -> bool:
        return lead.lead_type == "inbound"

    async def fetch(self):
        return await lead_service.list_leads(self.store, self.user_id, lead_type="inbound")

    def project(self, leads):
        return {"summary": inbound_summary(leads), "filtered": filter_inbound(leads, self.selected)}

    def select(self, selected: str) -> None:
        self.selected = selected
        self._on_change(self.replica)


class DashboardView(LiveView):
    channel = "dashboard_leads"

    def project(self, leads):
        return dashboard_stats(leads)


class AnalyticsView(LiveView):
    channel = "analytics_leads"

    def project(self, leads):
        return quick_analytics(leads)


class LeadsSession:
    """One leads replica and one subscription shared by several attached views."""

    def __init__(self, store: Store, user_id: str):
        self.store = store
        self.user_id = user_id
        self.replica = ReplicaStore("leads")
        self.subscriber = ChangeFeedSubscriber(self.replica, user_id=user_id, bus=store.bus, channel="session_leads")
        self.views: List[LiveView] = []

    def attach(self, view_cls, **kwargs) -> LiveView:
        view = view_cls(self.store, self.user_id, replica=self.replica, **kwargs)
        self.views.append(view)
        return view

    async def start(self) -> None:
        self.replica.replace_all(await lead_service.list_leads(self.store, self.user_id))
        await self.subscriber.start()

    async def stop(self) -> None:
        await self.subscriber.stop()
        for view in self.views:
            await view.unmount()
        self.views.clear()

    async def set_user(self, user_id: str) -> None:
        self.user_id = user_id
        for view in self.views:
            view.user_id = user_id
        await self.subscriber.set_user(user_id)
        self.replica.replace_all(await lead_service.list_leads(self.store, user_id))

    async def flush(self) -> None:
        await self.subscriber.flush()
