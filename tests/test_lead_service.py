import asyncio

import pytest

from leadsync.core.errors import NotFoundError, ValidationError
from leadsync.services import lead_service


def run(coro):
    return asyncio.run(coro)


def test_source_channel_defaults_from_lead_type(store):
    inbound = run(lead_service.create_lead(store, "u1", name="In", lead_type="inbound"))
    outbound = run(lead_service.create_lead(store, "u1", name="Out"))
    assert inbound.source_channel == "inbound_call"
    assert outbound.source_channel == "cold_call"
    assert outbound.lead_type == "outbound"
    assert outbound.status == "cold"


def test_explicit_source_channel_is_kept(store):
    lead = run(lead_service.create_lead(store, "u1", name="Web", lead_type="inbound", source_channel="web_form"))
    assert lead.source_channel == "web_form"


def test_phone_and_email_normalized(store):
    lead = run(lead_service.create_lead(store, "u1", name="P", phone="1 (555) 123-4567", email=""))
    assert lead.phone == "+15551234567"
    assert lead.email is None
    assert lead.call_result is None


def test_changing_lead_type_keeps_source_channel(store):
    lead = run(lead_service.create_lead(store, "u1", name="X", lead_type="inbound"))
    updated = run(lead_service.update_lead(store, lead.id, lead_type="outbound"))
    assert updated.lead_type == "outbound"
    assert updated.source_channel == "inbound_call"
    assert updated.updated_at >= lead.updated_at


def test_update_errors(store):
    with pytest.raises(NotFoundError):
        run(lead_service.update_lead(store, "missing", status="hot"))
    lead = run(lead_service.create_lead(store, "u1", name="X"))
    with pytest.raises(ValidationError):
        run(lead_service.update_lead(store, lead.id))
    with pytest.raises(ValidationError):
        run(lead_service.update_lead(store, lead.id, status="bogus"))


def test_create_requires_name(store):
    with pytest.raises(ValidationError):
        run(lead_service.create_lead(store, "u1", name=""))


def test_list_and_delete(store):
    first = run(lead_service.create_lead(store, "u1", name="A"))
    second = run(lead_service.create_lead(store, "u1", name="B", lead_type="inbound"))
    run(lead_service.create_lead(store, "u2", name="C"))
    assert [l.id for l in run(lead_service.list_leads(store, "u1"))] == [second.id, first.id]
    assert [l.id for l in run(lead_service.list_leads(store, "u1", lead_type="inbound"))] == [second.id]
    assert run(lead_service.delete_lead(store, first.id)) is True
    assert run(lead_service.delete_lead(store, first.id)) is False


def test_writes_scoped_to_owner(store):
    lead = run(lead_service.create_lead(store, "u1", name="Mine"))
    with pytest.raises(NotFoundError):
        run(lead_service.update_lead(store, lead.id, user_id="u2", status="hot"))
    assert run(lead_service.delete_lead(store, lead.id, user_id="u2")) is False
    assert run(lead_service.update_lead(store, lead.id, user_id="u1", status="hot")).status == "hot"
    assert run(lead_service.delete_lead(store, lead.id, user_id="u1")) is True
