"""Speed-dating session coordinator.

One ``SpeedDatingCoordinator`` per user drives the flow
searching -> results -> detail -> chat -> congratulations, with rejection and
exit paths. Every countdown is derived from a stored anchor timestamp and the
``now`` passed to ``tick``, so a coordinator can be rebuilt at any time.

All cross-user coordination goes through the store: the partner's actions
reach this coordinator only as changes to the shared connection document.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from ..config import (
    CHAT_DURATION_SECONDS,
    CHAT_REMINDER_SECONDS,
    COORDINATOR_IDLE_SECONDS,
    DEFAULT_AGE_MAX,
    DEFAULT_AGE_MIN,
    DETAIL_COUNTDOWN_SECONDS,
    NO_USERS_MAX_ATTEMPTS,
    NO_USERS_RETRY_SECONDS,
    PERMANENT_MATCH_MESSAGE,
    SEARCH_DURATION_SECONDS,
    SEARCH_SESSION_MAX_AGE_SECONDS,
    WELCOME_MESSAGE,
)
from ..store import SERVER_TIMESTAMP, DocumentSnapshot, DocumentStore, StoreError, doc_path, get_store
from . import state_machine as sm
from .countdown import is_expired, remaining_seconds
from .guards import GuardBusy, lock_mode_change_guard, mode_selection_guard, session_check_guard
from .matching import MatchCandidate, find_matches
from .sync_groups import epoch_ms, evaluation_due_at, sync_group

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (StoreError, SQLAlchemyError)

REJECTION_REASONS = (
    "Not my type",
    "No common interests",
    "Inappropriate behavior",
    "Conversation felt one-sided",
    "Looking for something different",
    "Other",
)
NO_REASON = "No reason provided"


class CoordinatorError(Exception):
    pass


class InvalidAction(CoordinatorError):
    pass


class UnknownCandidate(CoordinatorError):
    pass


class ProfileNotFound(CoordinatorError):
    pass


@dataclass
class Notice:
    kind: str
    message: str
    at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "at": self.at.isoformat()}


@dataclass
class CoordinatorState:
    step: str = sm.EXITED
    session_id: str | None = None
    session_created_at: datetime | None = None
    sync_group: int | None = None
    match_due_at: datetime | None = None
    no_users_attempts: int = 0
    candidates: list[MatchCandidate] = field(default_factory=list)
    selected_id: str | None = None
    detail_started_at: datetime | None = None
    connection_id: str | None = None
    partner_id: str | None = None
    chat_started_at: datetime | None = None
    reminder_sent: bool = False
    rejected_user_id: str | None = None
    permanent_match_id: str | None = None


def connection_id_for(user_a: str, user_b: str) -> str:
    first, second = sorted((user_a, user_b))
    return f"speed_{first}_{second}"


def combine_rejection_reason(reason: str | None, custom_review: str | None) -> str:
    reason = (reason or "").strip()
    custom_review = (custom_review or "").strip()
    if reason and custom_review:
        return f"{reason} - {custom_review}"
    return reason or custom_review or NO_REASON


def _connection_path(connection_id: str) -> str:
    return doc_path("speedDatingConnections", connection_id)


class SpeedDatingCoordinator:
    def __init__(self, store: DocumentStore, user_id: str, *, rng: random.Random | None = None) -> None:
        self.store = store
        self.user_id = user_id
        self.rng = rng
        self.state = CoordinatorState()
        self.notices: list[Notice] = []
        self.mode_selection = mode_selection_guard()
        self.session_check = session_check_guard()
        self.lock_mode_change = lock_mode_change_guard()
        self._lock = threading.RLock()
        self._unsubscribe: Callable[[], None] | None = None
        self._connection_events: deque[DocumentSnapshot] = deque()

    # ---- helpers

    def _now(self, now: datetime | None) -> datetime:
        return now or self.store.now()

    def _notify(self, kind: str, message: str, now: datetime) -> None:
        self.notices.append(Notice(kind, message, now))

    def _transition(self, action: str) -> None:
        new_step = sm.transition_step(self.state.step, action)
        if new_step != self.state.step:
            logger.debug("[SPEED_DATING] user=%s %s --%s--> %s", self.user_id, self.state.step, action, new_step)
        self.state.step = new_step

    def _require(self, *steps: str) -> None:
        if self.state.step not in steps:
            raise InvalidAction(f"Not allowed while {self.state.step}")

    def _best_effort(self, label: str, fn: Callable[..., Any], *args: Any) -> None:
        try:
            fn(*args)
        except TRANSIENT_ERRORS:
            logger.warning("[SPEED_DATING] %s failed for user=%s", label, self.user_id, exc_info=True)

    def _profile(self) -> dict[str, Any]:
        snap = self.store.get(doc_path("users", self.user_id))
        if not snap.exists:
            raise ProfileNotFound(f"No profile for {self.user_id}")
        return snap.data or {}

    def _stop_listening(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._connection_events.clear()

    def _listen(self, connection_id: str) -> None:
        self._stop_listening()
        self._unsubscribe = self.store.subscribe(_connection_path(connection_id), self._connection_events.append)

    def _delete_own_sessions(self) -> None:
        sessions = self.store.collection("speedDatingSessions").where("userId", "==", self.user_id).get()
        if not sessions:
            return
        batch = self.store.batch()
        for s in sessions:
            batch.delete(s.path)
        batch.commit()

    def _reset(self) -> None:
        self._stop_listening()
        self.state = CoordinatorState()

    # ---- snapshot

    def snapshot(self, now: datetime | None = None) -> dict[str, Any]:
        now = self._now(now)
        st = self.state
        notices = [n.to_dict() for n in self.notices]
        self.notices = []
        out: dict[str, Any] = {
            "step": st.step,
            "sessionId": st.session_id,
            "syncGroup": st.sync_group,
            "candidates": [c.to_dict() for c in st.candidates],
            "selectedId": st.selected_id,
            "connectionId": st.connection_id,
            "partnerId": st.partner_id,
            "permanentMatchId": st.permanent_match_id,
            "notices": notices,
        }
        if st.step == sm.SEARCHING:
            out["searchRemainingSeconds"] = remaining_seconds(st.session_created_at, SEARCH_DURATION_SECONDS, now)
        if st.step == sm.DETAIL:
            out["detailRemainingSeconds"] = remaining_seconds(st.detail_started_at, DETAIL_COUNTDOWN_SECONDS, now)
        if st.step == sm.CHAT:
            out["chatRemainingSeconds"] = remaining_seconds(st.chat_started_at, CHAT_DURATION_SECONDS, now)
        return out

    # ---- searching

    def start_search(self, now: datetime | None = None, preferences: dict[str, Any] | None = None) -> dict[str, Any]:
        with self._lock:
            now = self._now(now)
            self._require(sm.EXITED, sm.SEARCHING, sm.RESULTS)
            try:
                with self.mode_selection.hold(now):
                    self._profile()
                    self._reset()
                    self._open_session(now, preferences)
            except GuardBusy:
                raise InvalidAction("A search is already starting")
            except TRANSIENT_ERRORS:
                logger.exception("[SPEED_DATING] could not open search for user=%s", self.user_id)
                self._notify("error", "Could not start searching. Please try again.", now)
                return self.snapshot(now)
            return self.tick(now)

    def _open_session(self, now: datetime, preferences: dict[str, Any] | None) -> None:
        prefs = {"ageMin": DEFAULT_AGE_MIN, "ageMax": DEFAULT_AGE_MAX, **(preferences or {})}
        group = sync_group(epoch_ms(now))
        session_id = self.store.new_id()

        def _replace(txn) -> None:
            for existing in txn.collection("speedDatingSessions").where("userId", "==", self.user_id).get():
                txn.delete(existing.path)
            txn.set(
                doc_path("speedDatingSessions", session_id),
                {
                    "userId": self.user_id,
                    "status": "searching",
                    "createdAt": now,
                    "syncGroup": group,
                    "preferences": prefs,
                },
            )

        self.store.run_transaction(_replace)
        self._adopt_session(session_id, now, group, evaluation_due_at(now, group))
        logger.info("[SPEED_DATING] user=%s searching session=%s group=%s", self.user_id, session_id, group)

    def _adopt_session(self, session_id: str, created_at: datetime, group: int | None, due_at: datetime) -> None:
        self.state.session_id = session_id
        self.state.session_created_at = created_at
        self.state.sync_group = group
        self.state.match_due_at = due_at
        self.state.no_users_attempts = 0
        self.state.step = sm.SEARCHING

    def resume(self, now: datetime | None = None) -> dict[str, Any]:
        """Pick up a recent searching session and match right away."""
        with self._lock:
            now = self._now(now)
            if self.state.step in (sm.CHAT, sm.DETAIL, sm.RESULTS, sm.REJECTION, sm.CONGRATULATIONS):
                return self.tick(now)
            try:
                with self.session_check.hold(now):
                    cutoff = now - timedelta(seconds=SEARCH_SESSION_MAX_AGE_SECONDS)
                    sessions = (
                        self.store.collection("speedDatingSessions")
                        .where("userId", "==", self.user_id)
                        .where("status", "==", "searching")
                        .where("createdAt", ">", cutoff)
                        .order_by("createdAt", "desc")
                        .limit(1)
                        .get()
                    )
            except GuardBusy:
                return self.snapshot(now)
            if not sessions:
                return self.start_search(now)
            s = sessions[0]
            self._adopt_session(s.id, s.get("createdAt"), s.get("syncGroup"), now)
            return self.tick(now)

    def _run_matching(self, now: datetime) -> None:
        try:
            candidates = find_matches(self.store, self.user_id, self._profile(), now, rng=self.rng)
        except TRANSIENT_ERRORS:
            logger.exception("[SPEED_DATING] matching failed for user=%s", self.user_id)
            self._notify("error", "Matching failed. Retrying shortly.", now)
            self.state.match_due_at = now + timedelta(seconds=NO_USERS_RETRY_SECONDS)
            return

        if not candidates:
            self.state.no_users_attempts += 1
            self._notify("no_users_available", "No users available right now. Searching again...", now)
            if NO_USERS_MAX_ATTEMPTS and self.state.no_users_attempts >= NO_USERS_MAX_ATTEMPTS:
                self._best_effort("session cleanup", self._delete_own_sessions)
                self._transition("timeout")
                return
            self.state.match_due_at = now + timedelta(seconds=NO_USERS_RETRY_SECONDS)
            return

        self.state.candidates = candidates
        self._notify("matches_found", f"Found {len(candidates)} matches!", now)
        self._transition("matches_found")

    # ---- time

    def tick(self, now: datetime | None = None) -> dict[str, Any]:
        with self._lock:
            now = self._now(now)
            self._drain_connection_events(now)
            st = self.state

            if st.step == sm.SEARCHING:
                if is_expired(st.session_created_at, SEARCH_DURATION_SECONDS, now):
                    self._best_effort("session cleanup", self._delete_own_sessions)
                    self._notify("search_timed_out", "Search time is up. Try again later.", now)
                    self._transition("timeout")
                elif st.match_due_at is None or now >= st.match_due_at:
                    self._run_matching(now)

            elif st.step == sm.DETAIL:
                if is_expired(st.detail_started_at, DETAIL_COUNTDOWN_SECONDS, now):
                    self._transition("detail_timeout")

            elif st.step == sm.CHAT:
                self._recheck_connection(now)

            if st.step == sm.CHAT:
                if is_expired(st.chat_started_at, CHAT_DURATION_SECONDS, now):
                    self._notify("chat_expired", "Your speed date has ended.", now)
                    self._end_chat(now, action="chat_timeout", reason="timeout")
                elif not st.reminder_sent and remaining_seconds(st.chat_started_at, CHAT_DURATION_SECONDS, now) <= CHAT_REMINDER_SECONDS:
                    st.reminder_sent = True
                    self._notify("chat_reminder", "One hour left in your speed date.", now)

            return self.snapshot(now)

    # ---- results / detail

    def select(self, candidate_id: str, now: datetime | None = None) -> dict[str, Any]:
        with self._lock:
            now = self._now(now)
            self._require(sm.RESULTS, sm.DETAIL)
            if candidate_id not in {c.id for c in self.state.candidates}:
                raise UnknownCandidate(candidate_id)
            if self.state.step == sm.DETAIL:
                self._transition("back_to_results")
            self.state.selected_id = candidate_id
            self.state.detail_started_at = now
            self._transition("select")
            return self.snapshot(now)

    def back_to_results(self, now: datetime | None = None) -> dict[str, Any]:
        with self._lock:
            self._require(sm.DETAIL)
            self._transition("back_to_results")
            return self.snapshot(now)

    def reject_candidate(self, candidate_id: str | None = None, now: datetime | None = None) -> dict[str, Any]:
        with self._lock:
            self._require(sm.RESULTS, sm.DETAIL)
            target = candidate_id or self.state.selected_id
            if target is None or target not in {c.id for c in self.state.candidates}:
                raise UnknownCandidate(str(target))
            self.state.rejected_user_id = target
            self._transition("reject")
            return self.snapshot(now)

    # ---- connect

    def _find_existing_connection(self, partner_id: str) -> str | None:
        direct = self.store.get(_connection_path(connection_id_for(self.user_id, partner_id)))
        if direct.exists and direct.get("status") == "temporary":
            return direct.id
        rooms = self.store.collection("speedDatingConnections").where("users", "array-contains", self.user_id).get()
        for room in rooms:
            if partner_id in (room.get("users") or []) and room.get("status") == "temporary":
                return room.id
        return None

    def _find_permanent_match(self, partner_id: str) -> str | None:
        matches = self.store.collection("matches").where("users", "array-contains", self.user_id).get()
        for match in matches:
            if partner_id in (match.get("users") or []):
                return match.id
        return None

    def _create_connection(self, partner_id: str) -> tuple[str, bool]:
        connection_id = connection_id_for(self.user_id, partner_id)
        me = self.store.get(doc_path("users", self.user_id)).data or {}
        partner = self.store.get(doc_path("users", partner_id)).data or {}

        def _profile_entry(data: dict[str, Any]) -> dict[str, Any]:
            return {
                "displayName": data.get("displayName") or "User",
                "photoURL": data.get("photoURL") or "",
                "continuePermanently": False,
            }

        def _create(txn) -> bool:
            existing = txn.get(_connection_path(connection_id))
            if existing.exists and existing.get("status") == "temporary":
                return False
            txn.set(
                _connection_path(connection_id),
                {
                    "users": [self.user_id, partner_id],
                    "userProfiles": {self.user_id: _profile_entry(me), partner_id: _profile_entry(partner)},
                    "status": "temporary",
                    "startedAt": SERVER_TIMESTAMP,
                    "createdAt": SERVER_TIMESTAMP,
                },
            )
            txn.set(
                doc_path("speedDatingConnections", connection_id, "messages", self.store.new_id()),
                {"text": WELCOME_MESSAGE, "senderId": "system", "timestamp": SERVER_TIMESTAMP, "isSystemMessage": True},
            )
            return True

        created = self.store.run_transaction(_create)
        return connection_id, created

    def connect(self, now: datetime | None = None) -> dict[str, Any]:
        with self._lock:
            now = self._now(now)
            self._require(sm.DETAIL)
            partner_id = self.state.selected_id
            try:
                with self.lock_mode_change.hold(now):
                    match_id = self._find_permanent_match(partner_id)
                    if match_id:
                        self._stop_listening()
                        self.state.partner_id = partner_id
                        self.state.permanent_match_id = match_id
                        self.state.step = sm.CONGRATULATIONS
                        self._notify("already_matched", "You are already matched with this person.", now)
                        return self.snapshot(now)

                    connection_id = self._find_existing_connection(partner_id)
                    created = False
                    if connection_id is None:
                        connection_id, created = self._create_connection(partner_id)
                    room = self.store.get(_connection_path(connection_id))
            except GuardBusy:
                raise InvalidAction("Already connecting")
            except TRANSIENT_ERRORS:
                logger.exception("[SPEED_DATING] connect failed user=%s partner=%s", self.user_id, partner_id)
                self._notify("error", "Could not connect. Please pick again.", now)
                self._transition("back_to_results")
                return self.snapshot(now)

            self._best_effort("session cleanup", self._delete_own_sessions)
            self.state.session_id = None
            self.state.connection_id = connection_id
            self.state.partner_id = partner_id
            self.state.chat_started_at = room.get("startedAt") or now
            self.state.reminder_sent = False
            self._listen(connection_id)
            self._transition("connect")
            logger.info("[SPEED_DATING] user=%s connection=%s created=%s", self.user_id, connection_id, created)
            return self.snapshot(now)

    # ---- chat outcome

    def continue_permanently(self, now: datetime | None = None) -> dict[str, Any]:
        with self._lock:
            now = self._now(now)
            self._drain_connection_events(now)
            self._require(sm.CHAT)
            connection_id = self.state.connection_id

            def _opt_in(txn) -> bool:
                room = txn.get(_connection_path(connection_id))
                if not room.exists:
                    raise InvalidAction("Chat no longer exists")
                users = room.get("users") or []
                profiles = dict(room.get("userProfiles") or {})
                profiles[self.user_id] = {**(profiles.get(self.user_id) or {}), "continuePermanently": True}
                # whole map: user ids are keys and may not be safe in a dotted path
                txn.update(_connection_path(connection_id), {"userProfiles": profiles})
                return all((profiles.get(uid) or {}).get("continuePermanently") is True for uid in users)

            both = self.store.run_transaction(_opt_in)
            if not both:
                self._notify("waiting_for_partner", "Waiting for your match to continue too.", now)
                return self.snapshot(now)

            self._stop_listening()
            self.state.permanent_match_id = self._promote(connection_id)
            self._transition("promoted")
            self._notify("promoted", "It's a match! Your chat is now permanent.", now)
            return self.snapshot(now)

    def _promote(self, connection_id: str) -> str:
        match_path = doc_path("matches", connection_id)
        messages_path = doc_path("speedDatingConnections", connection_id, "messages")

        def _move(txn) -> None:
            if txn.get(match_path).exists:
                return
            room = txn.get(_connection_path(connection_id))
            if not room.exists:
                raise InvalidAction("Chat no longer exists")
            messages = txn.collection(messages_path).get()
            txn.set(
                match_path,
                {
                    "users": room.get("users"),
                    "userProfiles": room.get("userProfiles"),
                    "status": "permanent",
                    "matchType": "speed-dating-match",
                    "createdAt": SERVER_TIMESTAMP,
                    "lastMessageTime": SERVER_TIMESTAMP,
                },
            )
            for msg in messages:
                txn.set(doc_path(match_path, "messages", msg.id), msg.data or {})
                txn.delete(msg.path)
            txn.set(
                doc_path(match_path, "messages", self.store.new_id()),
                {"text": PERMANENT_MATCH_MESSAGE, "senderId": "system", "timestamp": SERVER_TIMESTAMP, "isSystemMessage": True},
            )
            txn.delete(room.path)

        self.store.run_transaction(_move)
        logger.info("[SPEED_DATING] connection=%s promoted to permanent match", connection_id)
        return connection_id

    def _end_chat(self, now: datetime, *, action: str, reason: str) -> None:
        connection_id = self.state.connection_id
        self._stop_listening()
        if connection_id:
            def _mark_rejected() -> None:
                if self.store.get(_connection_path(connection_id)).exists:
                    self.store.update(
                        _connection_path(connection_id),
                        {"status": "rejected", "rejectedBy": self.user_id, "rejectionData": {"reason": reason, "at": now}},
                    )

            self._best_effort("mark rejected", _mark_rejected)
            self._best_effort(
                "message cleanup",
                self.store.delete_collection,
                doc_path("speedDatingConnections", connection_id, "messages"),
            )
            self._best_effort("connection cleanup", self.store.delete, _connection_path(connection_id))
        self.state.rejected_user_id = self.state.partner_id
        self._transition(action)

    def end_chat(self, now: datetime | None = None) -> dict[str, Any]:
        with self._lock:
            now = self._now(now)
            self._require(sm.CHAT)
            self._end_chat(now, action="end_chat", reason="ended")
            return self.snapshot(now)

    def submit_rejection(
        self,
        reason: str | None = None,
        custom_review: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        with self._lock:
            now = self._now(now)
            self._require(sm.REJECTION)
            text = combine_rejection_reason(reason, custom_review)
            rejected = self.state.rejected_user_id
            connection_id = self.state.connection_id
            try:
                if rejected:
                    batch = self.store.batch()
                    batch.set(
                        doc_path("users", rejected, "rejectionReviews", self.store.new_id()),
                        {"reviewerId": self.user_id, "reason": text, "source": "speed-dating", "connectionId": connection_id, "createdAt": SERVER_TIMESTAMP},
                    )
                    batch.set(
                        doc_path("speedDatingFeedback", self.store.new_id()),
                        {
                            "userId": self.user_id,
                            "rejectedUserId": rejected,
                            "reason": (reason or "").strip() or None,
                            "customReview": (custom_review or "").strip() or None,
                            "combinedReason": text,
                            "connectionId": connection_id,
                            "createdAt": SERVER_TIMESTAMP,
                        },
                    )
                    batch.commit()
                if connection_id and self.store.get(_connection_path(connection_id)).exists:
                    self.store.update(_connection_path(connection_id), {"status": "rejected", "rejectedBy": self.user_id})
            except TRANSIENT_ERRORS:
                logger.exception("[SPEED_DATING] could not record rejection for user=%s", self.user_id)
                self._notify("error", "Could not save your feedback.", now)
            self._transition("submit")
            snap = self.snapshot(now)
            self._reset()
            return snap

    def back(self, now: datetime | None = None) -> dict[str, Any]:
        with self._lock:
            now = self._now(now)
            if self.state.step == sm.CHAT:
                self._end_chat(now, action="end_chat", reason="left")
            self._best_effort("session cleanup", self._delete_own_sessions)
            self._transition("back")
            snap = self.snapshot(now)
            self._reset()
            return snap

    # ---- partner changes

    def _drain_connection_events(self, now: datetime) -> None:
        while self._connection_events:
            snap = self._connection_events.popleft()
            if self.state.step != sm.CHAT or snap.id != self.state.connection_id:
                continue
            self._handle_connection_change(snap, now)

    def _recheck_connection(self, now: datetime) -> None:
        # Subscriptions only see commits made through this process's store.
        try:
            snap = self.store.get(_connection_path(self.state.connection_id))
        except TRANSIENT_ERRORS:
            logger.warning("[SPEED_DATING] connection re-check failed for user=%s", self.user_id, exc_info=True)
            return
        self._handle_connection_change(snap, now)

    def _handle_connection_change(self, snap: DocumentSnapshot, now: datetime) -> None:
        if snap.exists and snap.get("status") == "permanent":
            self._on_promoted(snap.id, now)
            return
        if snap.exists and not (snap.get("status") == "rejected" and snap.get("rejectedBy") != self.user_id):
            return
        if not snap.exists and self.store.get(doc_path("matches", snap.id)).exists:
            self._on_promoted(snap.id, now)
            return
        self._stop_listening()
        if is_expired(self.state.chat_started_at, CHAT_DURATION_SECONDS, now):
            # the partner's timer closed the room first
            self._notify("chat_expired", "Your speed date has ended.", now)
            self.state.rejected_user_id = self.state.partner_id
            self._transition("chat_timeout")
        else:
            self._notify("chat_ended_by_partner", "Your match has ended the chat.", now)
            self._transition("partner_left")
        self.state.connection_id = None

    def _on_promoted(self, match_id: str, now: datetime) -> None:
        self._stop_listening()
        self.state.permanent_match_id = match_id
        self._transition("promoted")
        self._notify("promoted", "It's a match! Your chat is now permanent.", now)


class CoordinatorRegistry:
    """Live coordinators by user id.

    Exited coordinators are dropped by ``release``; anything left untouched
    for ``idle_seconds`` is dropped on the next ``get``.
    """

    def __init__(
        self,
        store: DocumentStore | None = None,
        rng: random.Random | None = None,
        *,
        idle_seconds: float = COORDINATOR_IDLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._rng = rng
        self._idle_seconds = idle_seconds
        self._clock = clock
        self._coordinators: dict[str, SpeedDatingCoordinator] = {}
        self._last_used: dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def store(self) -> DocumentStore:
        return self._store or get_store()

    def __len__(self) -> int:
        return len(self._coordinators)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._coordinators

    def get(self, user_id: str) -> SpeedDatingCoordinator:
        now = self._clock()
        for uid in self._idle_users(now):
            if uid != user_id:
                self.discard(uid)
        with self._lock:
            coordinator = self._coordinators.get(user_id)
            if coordinator is None:
                coordinator = SpeedDatingCoordinator(self.store, user_id, rng=self._rng)
                self._coordinators[user_id] = coordinator
            self._last_used[user_id] = now
            return coordinator

    def _idle_users(self, now: float) -> list[str]:
        with self._lock:
            return [uid for uid, last in self._last_used.items() if now - last >= self._idle_seconds]

    def release(self, user_id: str, snapshot: dict[str, Any]) -> None:
        if snapshot.get("step") == sm.EXITED:
            self.discard(user_id)

    def discard(self, user_id: str) -> None:
        with self._lock:
            coordinator = self._coordinators.pop(user_id, None)
            self._last_used.pop(user_id, None)
        if coordinator is not None:
            coordinator._stop_listening()
            logger.debug("[SPEED_DATING] dropped coordinator for user=%s", user_id)

    def clear(self) -> None:
        with self._lock:
            user_ids = list(self._coordinators)
        for uid in user_ids:
            self.discard(uid)


registry = CoordinatorRegistry()
