from datetime import datetime, timedelta, timezone

from leadsync.models.schemas import LeadRecord, TriggerRecord
from leadsync.services.replica import ReplicaStore

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def lead(id, minutes=0, updated=0, **kw):
    kw.setdefault("name", f"Lead {id}")
    kw.setdefault("user_id", "u1")
    return LeadRecord(
        id=id,
        created_at=T0 + timedelta(minutes=minutes),
        updated_at=T0 + timedelta(minutes=minutes, seconds=updated),
        **kw,
    )


def test_one_entry_per_id():
    r = ReplicaStore("leads")
    r.upsert(lead("a"))
    r.upsert(lead("a", updated=5, status="hot"))
    assert len(r) == 1
    assert r.get("a").status == "hot"


def test_identical_upsert_does_not_notify():
    r = ReplicaStore("leads")
    seen = []
    r.add_listener(lambda rep: seen.append(rep.version))
    assert r.upsert(lead("a")) is True
    assert r.upsert(lead("a")) is False
    assert seen == [1]


def test_stale_version_is_ignored():
    r = ReplicaStore("leads")
    r.upsert(lead("a", updated=10, status="warm"))
    assert r.upsert(lead("a", updated=1, status="cold")) is False
    assert r.get("a").status == "warm"


def test_list_is_newest_first():
    r = ReplicaStore("leads")
    r.replace_all([lead("old", minutes=0), lead("new", minutes=10), lead("mid", minutes=5)])
    assert [l.id for l in r.list()] == ["new", "mid", "old"]
    assert r.first().id == "new"


def test_remove_and_clear():
    r = ReplicaStore("leads")
    r.upsert(lead("a"))
    assert r.remove("a") is True
    assert r.remove("a") is False
    r.upsert(lead("b"))
    r.clear()
    assert len(r) == 0 and "b" not in r


def test_listener_errors_do_not_break_others():
    r = ReplicaStore("leads")
    calls = []

    def boom(_):
        raise RuntimeError("render failed")

    r.add_listener(boom)
    remove = r.add_listener(lambda rep: calls.append(len(rep)))
    r.upsert(lead("a"))
    remove()
    r.upsert(lead("b"))
    assert calls == [1]


def test_single_mode_holds_one_record():
    r = ReplicaStore("triggers", single=True)
    r.upsert(TriggerRecord(id="t1", created_at=T0, updated_at=T0))
    r.upsert(TriggerRecord(id="t2", created_at=T0, updated_at=T0, start_calling=True))
    assert len(r) == 1
    assert r.first().id == "t2"
