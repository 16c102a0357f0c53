"""Optimistic version check and the conflict-retry wrapper."""

from __future__ import annotations

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from marketplace.domain.clock import utcnow
from marketplace.domain.entities import DriverSnapshot
from marketplace.domain.errors import NotFound, Transient
from marketplace.infrastructure.models import RideRequestModel
from marketplace.infrastructure.repositories import RequestRepository
from marketplace.infrastructure.transactions import run_transaction


class TestVersionCheck:
    @pytest.mark.asyncio
    async def test_write_over_a_newer_version_is_stale(
        self, session_factory, add_request
    ):
        created = await add_request(fare=200.0)

        async with session_factory() as session:
            with pytest.raises(StaleDataError):
                async with session.begin():
                    repo = RequestRepository(session)
                    request = await repo.get(created.id)
                    # another writer bumps the version behind this session's back
                    await session.execute(
                        update(RideRequestModel)
                        .where(RideRequestModel.id == created.id)
                        .values(version=RideRequestModel.version + 1)
                        .execution_options(synchronize_session=False)
                    )
                    request.fare = 260.0
                    await repo.save(request)

    @pytest.mark.asyncio
    async def test_unchanged_save_keeps_version(
        self, session_factory, add_request, load_request
    ):
        created = await add_request()

        async with session_factory() as session:
            async with session.begin():
                repo = RequestRepository(session)
                await repo.save(await repo.get(created.id))

        assert (await load_request(created.id)).version == created.version

    @pytest.mark.asyncio
    async def test_changed_save_bumps_version(
        self, session_factory, add_request, load_request
    ):
        created = await add_request(fare=200.0)

        async with session_factory() as session:
            async with session.begin():
                repo = RequestRepository(session)
                request = await repo.get(created.id)
                request.fare = 210.0
                saved = await repo.save(request)

        assert saved.version == created.version + 1
        assert (await load_request(created.id)).version == created.version + 1


class TestRunTransaction:
    @pytest.mark.asyncio
    async def test_conflict_is_retried_with_fresh_session(self, session_factory):
        sessions = []

        async def fn(session):
            sessions.append(session)
            if len(sessions) < 3:
                raise StaleDataError("lost the race")
            return "done"

        assert await run_transaction(session_factory, fn, max_attempts=5) == "done"
        assert len(sessions) == 3
        assert len({id(s) for s in sessions}) == 3

    @pytest.mark.asyncio
    async def test_exhausted_attempts_raise_transient(self, session_factory):
        calls = 0

        async def fn(session):
            nonlocal calls
            calls += 1
            raise OperationalError("UPDATE ...", {}, Exception("database is locked"))

        with pytest.raises(Transient) as exc:
            await run_transaction(session_factory, fn, max_attempts=3)
        assert calls == 3
        assert isinstance(exc.value.__cause__, OperationalError)

    @pytest.mark.asyncio
    async def test_domain_errors_are_not_retried(self, session_factory):
        calls = 0

        async def fn(session):
            nonlocal calls
            calls += 1
            raise NotFound("gone")

        with pytest.raises(NotFound):
            await run_transaction(session_factory, fn, max_attempts=5)
        assert calls == 1


class TestStaleClaim:
    @pytest.mark.asyncio
    async def test_claim_on_an_old_read_cannot_overwrite_the_winner(
        self, session_factory, add_driver, add_request, load_request
    ):
        winner = await add_driver(name="Winner")
        late = await add_driver(name="Late")
        created = await add_request()
        seen = await load_request(created.id)

        # the winner commits after the late driver has read SEARCHING
        async with session_factory() as session:
            async with session.begin():
                repo = RequestRepository(session)
                request = await repo.get(created.id)
                request.accept(winner, DriverSnapshot(name="Winner"), utcnow())
                await repo.save(request)

        seen.accept(late, DriverSnapshot(name="Late"), utcnow())
        async with session_factory() as session:
            with pytest.raises(StaleDataError):
                async with session.begin():
                    await RequestRepository(session).save(seen)

        stored = await load_request(created.id)
        assert stored.driver_id == winner
        assert stored.driver.name == "Winner"
        assert stored.version == created.version + 1
