"""
Tests for peer-to-peer ticket transfers.
"""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

from boxoffice.domain.results import ErrorCode
from boxoffice.models.ticket import (
    TRANSFER_ACCEPTED,
    TRANSFER_CANCELLED,
    TRANSFER_REJECTED,
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_NONE,
    Ticket,
)
from boxoffice.services import checkin_service, transfer_service


async def reload(db, ticket_id) -> Ticket:
    return await db.get(Ticket, ticket_id, populate_existing=True)


@pytest_asyncio.fixture
async def owned_ticket(db_session, buyer, event_with_tickets, purchase) -> Ticket:
    event, ticket_type = event_with_tickets
    [ticket] = await purchase(buyer, event, ticket_type)
    return ticket


@pytest.mark.asyncio
async def test_accept_moves_ownership(db_session, buyer, second_buyer, owned_ticket, notifier):
    started = await transfer_service.initiate(
        db_session, owned_ticket.id, buyer, "  Bob@Example.com ", notifier=notifier
    )
    assert started.ok
    transfer = started.value
    assert transfer.to_email == "bob@example.com"
    assert len(transfer.transfer_code) == 10
    assert notifier.of_kind("transfer_initiated")[0]["transfer_code"] == transfer.transfer_code

    accepted = await transfer_service.accept(
        db_session, transfer.id, second_buyer, attendee_name="Bob", notifier=notifier
    )

    assert accepted.ok
    assert accepted.value.status == TRANSFER_ACCEPTED
    assert accepted.value.to_account_id == second_buyer.id
    ticket = await reload(db_session, owned_ticket.id)
    assert ticket.holder_id == second_buyer.id
    assert ticket.attendee_email == "bob@example.com"
    assert ticket.attendee_name == "Bob"
    assert ticket.transfer_status == TRANSFER_STATUS_COMPLETED
    # Same code, new holder: the ticket still scans
    assert ticket.ticket_code == owned_ticket.ticket_code
    assert len(notifier.of_kind("transfer_accepted")) == 1


@pytest.mark.asyncio
async def test_received_ticket_cannot_be_transferred_again(
    db_session, buyer, second_buyer, owned_ticket, notifier
):
    transfer = (
        await transfer_service.initiate(db_session, owned_ticket.id, buyer, second_buyer.email, notifier=notifier)
    ).value
    await transfer_service.accept(db_session, transfer.id, second_buyer, notifier=notifier)

    result = await transfer_service.initiate(
        db_session, owned_ticket.id, second_buyer, "carol@example.com", notifier=notifier
    )

    assert result.code == ErrorCode.TRANSFER_OF_RECEIVED_TICKET


@pytest.mark.asyncio
async def test_only_the_holder_can_transfer(db_session, second_buyer, owned_ticket, notifier):
    result = await transfer_service.initiate(
        db_session, owned_ticket.id, second_buyer, "carol@example.com", notifier=notifier
    )

    assert result.code == ErrorCode.NOT_TICKET_HOLDER


@pytest.mark.asyncio
async def test_self_transfer_is_refused(db_session, buyer, owned_ticket, notifier):
    result = await transfer_service.initiate(
        db_session, owned_ticket.id, buyer, buyer.email.upper(), notifier=notifier
    )

    assert result.code == ErrorCode.SELF_TRANSFER


@pytest.mark.asyncio
async def test_one_pending_transfer_per_ticket(db_session, buyer, second_buyer, owned_ticket, notifier):
    first = await transfer_service.initiate(db_session, owned_ticket.id, buyer, second_buyer.email, notifier=notifier)
    second = await transfer_service.initiate(db_session, owned_ticket.id, buyer, "carol@example.com", notifier=notifier)

    assert first.ok
    assert second.code == ErrorCode.TRANSFER_ALREADY_PENDING


@pytest.mark.asyncio
async def test_used_ticket_cannot_be_transferred(db_session, buyer, second_buyer, owned_ticket, notifier):
    await checkin_service.check_in(db_session, owned_ticket.ticket_code, owned_ticket.event_id)

    result = await transfer_service.initiate(db_session, owned_ticket.id, buyer, second_buyer.email, notifier=notifier)

    assert result.code == ErrorCode.ALREADY_USED


@pytest.mark.asyncio
async def test_transfers_close_before_the_event(db_session, buyer, second_buyer, event_factory, purchase, notifier):
    event, ticket_type = await event_factory(starts_in=timedelta(hours=1))
    [ticket] = await purchase(buyer, event, ticket_type)

    result = await transfer_service.initiate(db_session, ticket.id, buyer, second_buyer.email, notifier=notifier)

    assert result.code == ErrorCode.TRANSFER_WINDOW_CLOSED


@pytest.mark.asyncio
async def test_reject_returns_ticket_to_sender(db_session, buyer, second_buyer, owned_ticket, notifier):
    transfer = (
        await transfer_service.initiate(db_session, owned_ticket.id, buyer, second_buyer.email, notifier=notifier)
    ).value

    rejected = await transfer_service.reject(db_session, transfer.id, second_buyer, notifier=notifier)

    assert rejected.value.status == TRANSFER_REJECTED
    ticket = await reload(db_session, owned_ticket.id)
    assert ticket.holder_id == buyer.id
    assert ticket.transfer_status == TRANSFER_STATUS_NONE

    # Sender may try again once the first attempt is resolved
    retry = await transfer_service.initiate(db_session, owned_ticket.id, buyer, second_buyer.email, notifier=notifier)
    assert retry.ok


@pytest.mark.asyncio
async def test_sender_cancels_pending_transfer(db_session, buyer, second_buyer, owned_ticket, notifier):
    transfer = (
        await transfer_service.initiate(db_session, owned_ticket.id, buyer, second_buyer.email, notifier=notifier)
    ).value

    wrong_account = await transfer_service.cancel(db_session, transfer.id, second_buyer)
    cancelled = await transfer_service.cancel(db_session, transfer.id, buyer)

    assert wrong_account.code == ErrorCode.NOT_TRANSFER_SENDER
    assert cancelled.value.status == TRANSFER_CANCELLED
    assert (await reload(db_session, owned_ticket.id)).transfer_status == TRANSFER_STATUS_NONE

    late_accept = await transfer_service.accept(db_session, transfer.id, second_buyer, notifier=notifier)
    assert late_accept.code == ErrorCode.TRANSFER_ALREADY_RESOLVED


@pytest.mark.asyncio
async def test_only_the_recipient_can_accept(db_session, buyer, second_buyer, staff, owned_ticket, notifier):
    transfer = (
        await transfer_service.initiate(db_session, owned_ticket.id, buyer, second_buyer.email, notifier=notifier)
    ).value

    result = await transfer_service.accept(db_session, transfer.id, staff, notifier=notifier)

    assert result.code == ErrorCode.RECIPIENT_MISMATCH
    assert (await reload(db_session, owned_ticket.id)).holder_id == buyer.id


@pytest.mark.asyncio
async def test_lookup_by_code_is_case_insensitive(db_session, buyer, second_buyer, owned_ticket, notifier):
    transfer = (
        await transfer_service.initiate(db_session, owned_ticket.id, buyer, second_buyer.email, notifier=notifier)
    ).value

    found = await transfer_service.get_by_code(db_session, transfer.transfer_code.lower())

    assert found.id == transfer.id
    assert [t.id for t in await transfer_service.list_incoming(db_session, second_buyer)] == [transfer.id]
    assert [t.id for t in await transfer_service.list_outgoing(db_session, buyer)] == [transfer.id]


@pytest.mark.asyncio
async def test_accept_racing_cancel_has_one_winner(
    session_factory, db_session, buyer, second_buyer, owned_ticket, notifier
):
    transfer = (
        await transfer_service.initiate(db_session, owned_ticket.id, buyer, second_buyer.email, notifier=notifier)
    ).value

    async def accept():
        async with session_factory() as session:
            return await transfer_service.accept(session, transfer.id, second_buyer, notifier=notifier)

    async def cancel():
        async with session_factory() as session:
            return await transfer_service.cancel(session, transfer.id, buyer)

    accepted, cancelled = await asyncio.gather(accept(), cancel())

    assert accepted.ok != cancelled.ok
    loser = cancelled if accepted.ok else accepted
    assert loser.code == ErrorCode.TRANSFER_ALREADY_RESOLVED

    ticket = await reload(db_session, owned_ticket.id)
    if accepted.ok:
        assert ticket.holder_id == second_buyer.id
        assert ticket.transfer_status == TRANSFER_STATUS_COMPLETED
    else:
        assert ticket.holder_id == buyer.id
        assert ticket.transfer_status == TRANSFER_STATUS_NONE


@pytest.mark.asyncio
async def test_transfer_code_collision_gets_a_fresh_code(
    monkeypatch, db_session, buyer, second_buyer, event_with_tickets, purchase, notifier
):
    event, ticket_type = event_with_tickets
    first_ticket, second_ticket = await purchase(buyer, event, ticket_type, 2)
    first = (
        await transfer_service.initiate(db_session, first_ticket.id, buyer, second_buyer.email, notifier=notifier)
    ).value

    # Hand out the taken code first and let it reach the unique constraint
    codes = iter([first.transfer_code, "FRESHCODE1"])
    monkeypatch.setattr(transfer_service, "generate_transfer_code", lambda: next(codes))

    async def never_taken(db, code):
        return False

    monkeypatch.setattr(transfer_service, "_code_taken", never_taken)

    second = await transfer_service.initiate(
        db_session, second_ticket.id, buyer, second_buyer.email, notifier=notifier
    )

    assert second.ok, second
    assert second.value.transfer_code == "FRESHCODE1"
    assert second.value.ticket_id == second_ticket.id
    outgoing = await transfer_service.list_outgoing(db_session, buyer)
    assert sorted(t.transfer_code for t in outgoing) == sorted([first.transfer_code, "FRESHCODE1"])
