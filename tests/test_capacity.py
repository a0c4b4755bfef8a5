from __future__ import annotations

import asyncio

import pytest

from centerbot.constants import RegistrationStatus
from centerbot.utils.errors import PreconditionFailed

from .conftest import make_principal


@pytest.mark.asyncio
async def test_try_reserve_stops_at_max(services, program):
    assert await services.capacity.try_reserve(program.program_id) is True
    assert await services.capacity.try_reserve(program.program_id) is True
    assert await services.capacity.try_reserve(program.program_id) is False

    got = await services.program.get_program(program.program_id)
    assert got.current_participants == got.max_participants == 2


@pytest.mark.asyncio
async def test_release_never_goes_below_zero(services, program):
    await services.capacity.release(program.program_id)
    got = await services.program.get_program(program.program_id)
    assert got.current_participants == 0


@pytest.mark.asyncio
async def test_reconcile_repairs_counter_drift(services, repos, program, student):
    await services.registration.register(student, program.program_id)
    await repos.program.set_participants(program.program_id, 0)

    assert await services.capacity.reconcile(program.program_id) == 1
    assert (await repos.program.get(program.program_id)).current_participants == 1

    counters = await services.capacity.reconcile_all()
    assert counters == {program.program_id: 1}


@pytest.mark.asyncio
async def test_concurrent_registrations_for_last_seat(services, admin):
    last_seat = await services.program.create_program(admin, title="Cyber Security", max_participants=1)
    first = await make_principal(services, 1)
    second = await make_principal(services, 2)

    results = await asyncio.gather(
        services.registration.register(first, last_seat.program_id),
        services.registration.register(second, last_seat.program_id),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], PreconditionFailed)
    assert "full" in str(failures[0]).lower()

    got = await services.program.get_program(last_seat.program_id)
    assert got.current_participants == 1
    pending = await services.registration.list_for_program(admin, last_seat.program_id, RegistrationStatus.PENDING)
    assert len(pending) == 1
