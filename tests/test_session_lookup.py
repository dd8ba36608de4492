"""Tests for session lookup and the in-memory session store."""

from __future__ import annotations

from datetime import timedelta

import pytest

from tests.conftest import NOW
from tutorrito.core.errors import DependencyUnavailable, InvalidInput, NoUpcomingSession, NotFound
from tutorrito.sessions.lookup import SessionLookup
from tutorrito.sessions.models import Profile, Session, SessionStatus
from tutorrito.sessions.store import SessionStore


class TestSessionLookup:
    async def test_finds_confirmed_future_session(self, session_store) -> None:
        upcoming = await SessionLookup(session_store).find_next("T1", NOW)
        assert upcoming.session.id == "sess-1"
        assert upcoming.recipient.email == "s1@example.com"
        assert upcoming.recipient.display_name == "Sam Student"
        assert upcoming.tutor_name == "Tara Tutor"

    async def test_no_sessions(self, session_store) -> None:
        with pytest.raises(NoUpcomingSession):
            await SessionLookup(session_store).find_next("T2", NOW)

    async def test_unknown_tutor(self, session_store) -> None:
        with pytest.raises(NotFound):
            await SessionLookup(session_store).find_next("nobody", NOW)

    async def test_student_id_is_not_a_tutor(self, session_store) -> None:
        with pytest.raises(NotFound):
            await SessionLookup(session_store).find_next("S1", NOW)

    async def test_blank_tutor_id(self, session_store) -> None:
        with pytest.raises(InvalidInput):
            await SessionLookup(session_store).find_next("  ", NOW)

    async def test_ignores_past_and_unconfirmed(self, session_store) -> None:
        session_store.save_session(
            Session(id="past", tutor_id="T2", student_id="S1",
                    start_time=NOW - timedelta(minutes=1), status=SessionStatus.CONFIRMED)
        )
        session_store.save_session(
            Session(id="pending", tutor_id="T2", student_id="S1",
                    start_time=NOW + timedelta(hours=1), status=SessionStatus.PENDING)
        )
        with pytest.raises(NoUpcomingSession):
            await SessionLookup(session_store).find_next("T2", NOW)

    async def test_session_starting_now_is_eligible(self, session_store) -> None:
        session_store.save_session(
            Session(id="now", tutor_id="T2", student_id="S1",
                    start_time=NOW, status=SessionStatus.CONFIRMED)
        )
        upcoming = await SessionLookup(session_store).find_next("T2", NOW)
        assert upcoming.session.id == "now"

    async def test_earliest_wins_with_id_tie_break(self, session_store) -> None:
        start = NOW + timedelta(hours=1)
        for sid in ("b-session", "a-session"):
            session_store.save_session(
                Session(id=sid, tutor_id="T1", student_id="S1",
                        start_time=start, status=SessionStatus.CONFIRMED)
            )
        upcoming = await SessionLookup(session_store).find_next("T1", NOW)
        assert upcoming.session.id == "a-session"

    async def test_missing_student_profile(self, session_store) -> None:
        session_store.save_session(
            Session(id="orphan", tutor_id="T2", student_id="ghost",
                    start_time=NOW + timedelta(hours=1), status=SessionStatus.CONFIRMED)
        )
        with pytest.raises(NotFound):
            await SessionLookup(session_store).find_next("T2", NOW)

    async def test_datastore_failure_propagates(self, session_store, monkeypatch) -> None:
        def boom(profile_id):
            raise DependencyUnavailable("Session datastore unavailable")

        monkeypatch.setattr(session_store, "get_profile", boom)
        with pytest.raises(DependencyUnavailable):
            await SessionLookup(session_store).find_next("T1", NOW)


class TestSessionStore:
    def setup_method(self) -> None:
        self.store = SessionStore()
        self.store.save_profile(Profile(id="S1", email="s1@example.com"))
        self.session = self.store.save_session(
            Session(tutor_id="T1", student_id="S1", start_time=NOW)
        )

    def test_confirm_then_complete(self) -> None:
        self.store.transition_status(self.session.id, SessionStatus.CONFIRMED)
        updated = self.store.transition_status(self.session.id, SessionStatus.COMPLETED)
        assert updated.status == SessionStatus.COMPLETED

    def test_invalid_transition(self) -> None:
        with pytest.raises(InvalidInput):
            self.store.transition_status(self.session.id, SessionStatus.COMPLETED)

    def test_terminal_status_is_final(self) -> None:
        self.store.transition_status(self.session.id, SessionStatus.CANCELLED)
        with pytest.raises(InvalidInput):
            self.store.transition_status(self.session.id, SessionStatus.CONFIRMED)

    def test_transition_unknown_session(self) -> None:
        with pytest.raises(KeyError):
            self.store.transition_status("nope", SessionStatus.CONFIRMED)

    def test_count(self) -> None:
        assert self.store.count == 1
