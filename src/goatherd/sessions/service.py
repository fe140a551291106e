"""Session lifecycle management.

Each agent owns one store file, ``agents/<agent_id>/sessions/sessions.json``,
mapping session keys to ``SessionEntry`` records, plus one JSONL transcript per
session id. A session key is resolved from a caller reference:

- empty or ``"main"``: ``agent:<agent_id>:<main_key>``
- an existing session id: the key that holds it
- an existing key, or any value containing ``":"``: used as-is
- anything else: ``agent:<agent_id>:<normalized segment>``

Read-modify-write of a store is serialized by a per-agent ``asyncio.Lock``,
which covers every (agent, session key) pair kept in that store. Files are
replaced atomically.
"""

import asyncio
import re
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import orjson
from pydantic import ValidationError

from goatherd.config import AppConfig, GoatherdPaths
from goatherd.domain import (
    DEFAULT_AGENT_ID,
    SessionNotFoundError,
    SessionStoreError,
    SessionStoreParseError,
    SessionTranscriptParseError,
    normalize_agent_id,
)
from goatherd.sessions.models import (
    AgentLastAction,
    SessionCompactionConfig,
    SessionCompactionResult,
    SessionConfig,
    SessionDisabled,
    SessionEnabled,
    SessionEntry,
    SessionHistory,
    SessionHistoryItem,
    SessionInfo,
    SessionRemoveResult,
    SessionResetMode,
    SessionResetPolicy,
    SessionResolution,
    SessionStoreFile,
    SessionSummary,
    TranscriptCompaction,
    TranscriptHeader,
    TranscriptMessage,
    TranscriptRecord,
    transcript_record_adapter,
)
from goatherd.storage import read_json, write_json_atomic, write_text_atomic
from goatherd.telemetry import (
    SESSION_COMPACTED,
    SESSION_CREATED,
    SESSION_REMOVED,
    SESSION_RESET,
    SESSION_REUSED,
    SESSION_ROTATED,
    get_logger,
)

log = get_logger(__name__)

DEFAULT_IDLE_MINUTES = 60
MAX_TITLE_CHARS = 120
TRUNCATION_MARKER = "\n...[truncated]...\n"
KEPT_COMPACTION_RECORDS = 3

_NON_SEGMENT_CHARS = re.compile(r"[^a-z0-9-]+")
_WHITESPACE = re.compile(r"\s+")


def _now_ms() -> int:
    return int(time.time() * 1000)


def normalize_session_segment(value: str) -> str:
    return _NON_SEGMENT_CHARS.sub("-", value.strip().lower()).strip("-")


def build_main_session_key(agent_id: str, main_key: str = "main") -> str:
    segment = normalize_session_segment(main_key) or "main"
    return f"agent:{normalize_agent_id(agent_id) or DEFAULT_AGENT_ID}:{segment}"


def resolve_session_key(
    agent_id: str,
    main_key: str,
    sessions: dict[str, SessionEntry],
    reference: str | None = None,
) -> str:
    """Map a caller session reference to a store key."""
    main_session_key = build_main_session_key(agent_id, main_key)
    normalized = (reference or "").strip().lower()
    if not normalized or normalized == "main":
        return main_session_key

    for key, entry in sessions.items():
        if entry.session_id == normalized:
            return key

    if normalized in sessions or ":" in normalized:
        return normalized

    return f"agent:{agent_id}:{normalize_session_segment(normalized) or 'main'}"


def is_session_fresh(updated_at_ms: int, policy: SessionResetPolicy, now_ms: int) -> bool:
    """Whether a session last touched at ``updated_at_ms`` may still be reused."""
    stale_daily = False
    if policy.mode == SessionResetMode.DAILY:
        stale_daily = updated_at_ms < _most_recent_daily_reset_ms(now_ms, policy.at_hour)

    idle_minutes = policy.idle_minutes
    if idle_minutes is None and policy.mode == SessionResetMode.IDLE:
        idle_minutes = DEFAULT_IDLE_MINUTES
    stale_idle = idle_minutes is not None and now_ms > updated_at_ms + idle_minutes * 60_000

    return not (stale_daily or stale_idle)


def _most_recent_daily_reset_ms(now_ms: int, at_hour: int) -> int:
    now = datetime.fromtimestamp(now_ms / 1000).astimezone()
    reset_at = now.replace(hour=at_hour, minute=0, second=0, microsecond=0)
    if now < reset_at:
        reset_at -= timedelta(days=1)
    return int(reset_at.timestamp() * 1000)


def _clamp_tail(value: str, max_chars: int) -> str:
    if len(value) <= max_chars:
        return value
    tail_chars = max(64, max_chars - len(TRUNCATION_MARKER))
    return f"{value[-tail_chars:].lstrip()}{TRUNCATION_MARKER}"


def summarize_compacted_messages(messages: list[TranscriptMessage], max_chars: int) -> str:
    """Flatten older messages into a bounded plain-text summary."""
    lines = ["Compaction summary of earlier messages:"]
    for message in messages:
        flattened = _WHITESPACE.sub(" ", message.content).strip()
        if not flattened:
            continue
        lines.append(f"- {message.role}: {flattened}")
        if len("\n".join(lines)) >= max_chars:
            break
    return _clamp_tail("\n".join(lines), max_chars)


def _normalize_title(title: str) -> str:
    value = title.strip()
    if not value:
        raise ValueError("Session title cannot be empty")
    if len(value) <= MAX_TITLE_CHARS:
        return value
    return f"{value[: MAX_TITLE_CHARS - 3]}..."


def _resolve_title(session_key: str, title: str | None) -> str:
    if title and title.strip():
        return title.strip()
    segment = session_key.split(":")[-1].strip() or "session"
    normalized = re.sub(r"[-_]+", " ", segment).strip()
    if not normalized:
        return "Session"
    return normalized[0].upper() + normalized[1:]


def _resolve_project_path(value: str | Path | None) -> str | None:
    if value is None or not str(value).strip():
        return None
    return str(Path(str(value).strip()).expanduser().resolve())


class SessionService:
    """Owns session identity per (agent, session key) and its transcript.

    Args:
        config: Session behavior (main key, reset policy, compaction).
        enabled: Global switch; when False every resolution is disabled.
        now_ms: Clock returning epoch milliseconds, injectable for tests.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        enabled: bool = True,
        now_ms: Callable[[], int] | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self.enabled = enabled
        self._now_ms = now_ms or _now_ms
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, settings: AppConfig) -> "SessionService":
        """Build a service from ``AppConfig`` session fields."""
        config = SessionConfig(
            main_key=settings.session_main_key,
            compaction=SessionCompactionConfig(
                trigger_message_count=settings.session_compaction_trigger_messages,
                trigger_chars=settings.session_compaction_trigger_chars,
                keep_recent_messages=settings.session_compaction_keep_recent,
            ),
        )
        return cls(config=config, enabled=settings.sessions_enabled)

    def _lock_for(self, agent_id: str) -> asyncio.Lock:
        lock = self._locks.get(agent_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[agent_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def prepare_run_session(
        self,
        paths: GoatherdPaths,
        agent_id: str,
        user_message: str,
        session_ref: str | None = None,
        project_path: str | Path | None = None,
        force_new: bool = False,
        disable_session: bool = False,
    ) -> SessionResolution:
        """Resolve (create, reuse or rotate) the session for one agent run.

        An existing session is reused when the call omits ``project_path`` or
        supplies the stored one. A different ``project_path``, a stale session
        (reset policy) or ``force_new`` allocates a new session id. The user
        message is appended to the transcript and compaction runs if the
        transcript crossed its thresholds.

        Args:
            paths: On-disk layout.
            agent_id: Agent the session belongs to.
            user_message: Message recorded as the user turn.
            session_ref: Session key, alias or session id; defaults to main.
            project_path: Project directory bound to the session, if any.
            force_new: Always allocate a new session id.
            disable_session: Skip session tracking for this call.

        Returns:
            ``SessionDisabled`` when tracking is off, else ``SessionEnabled``.

        Raises:
            SessionStoreError: If the store cannot be read or written.
        """
        if disable_session or not self.enabled:
            return SessionDisabled()

        agent_id = normalize_agent_id(agent_id) or DEFAULT_AGENT_ID
        workspace_path = paths.workspaces_dir / agent_id

        async with self._lock_for(agent_id):
            store = self._read_store(paths, agent_id)
            session_key = resolve_session_key(
                agent_id, self.config.main_key, store.sessions, session_ref
            )
            existing = store.sessions.get(session_key)
            now = self._now_ms()

            stored_project_path = _resolve_project_path(existing.project_path) if existing else None
            requested_project_path = _resolve_project_path(project_path)
            next_project_path = requested_project_path or stored_project_path
            project_changed = bool(
                stored_project_path
                and requested_project_path
                and stored_project_path != requested_project_path
            )
            fresh = existing is not None and is_session_fresh(
                existing.updated_at, self.config.reset, now
            )
            is_new = force_new or existing is None or not fresh or project_changed

            if is_new:
                session_id = str(uuid.uuid4())
                transcript_path = self._sessions_dir(paths, agent_id) / f"{session_id}.jsonl"
                entry = SessionEntry(
                    session_id=session_id,
                    updated_at=now,
                    transcript_file=str(transcript_path),
                    workspace_path=str(workspace_path),
                    project_path=next_project_path,
                )
            else:
                transcript_path = self._transcript_path(paths, agent_id, existing)
                entry = existing.model_copy(
                    update={
                        "updated_at": now,
                        "transcript_file": str(transcript_path),
                        "workspace_path": str(workspace_path),
                        "project_path": next_project_path,
                    }
                )
            store.sessions[session_key] = entry
            self._persist_store(paths, agent_id, store)
            self._ensure_transcript_header(transcript_path, agent_id, session_key, entry)

            if existing is None:
                event = SESSION_CREATED
            elif is_new:
                event = SESSION_ROTATED
            else:
                event = SESSION_REUSED
            log.info(
                event,
                agent_id=agent_id,
                session_key=session_key,
                session_id=entry.session_id,
                project_changed=project_changed,
                stale=existing is not None and not fresh,
            )

            compaction = self._compact_locked(paths, agent_id, session_key, store, force=False)
            self._append_message_locked(paths, agent_id, session_key, "user", user_message)

            entry = self._read_store(paths, agent_id).sessions[session_key]
            return SessionEnabled(
                info=self._to_info(paths, agent_id, session_key, entry, is_new_session=is_new),
                compaction_applied=compaction.applied,
            )

    async def record_assistant_reply(
        self, paths: GoatherdPaths, info: SessionInfo, content: str
    ) -> SessionCompactionResult:
        """Append the agent's reply to the transcript and compact if needed."""
        async with self._lock_for(info.agent_id):
            self._append_message_locked(paths, info.agent_id, info.session_key, "assistant", content)
            store = self._read_store(paths, info.agent_id)
            if info.session_key not in store.sessions:
                return SessionCompactionResult(
                    session_key=info.session_key,
                    session_id=info.session_id,
                    transcript_path=info.transcript_path,
                    applied=False,
                )
            return self._compact_locked(paths, info.agent_id, info.session_key, store, force=False)

    async def compact_session(
        self, paths: GoatherdPaths, agent_id: str, session_ref: str | None = None
    ) -> SessionCompactionResult:
        """Force compaction. The session id is unchanged; ``compaction_count`` increments."""
        agent_id = normalize_agent_id(agent_id) or DEFAULT_AGENT_ID
        async with self._lock_for(agent_id):
            store = self._read_store(paths, agent_id)
            session_key = resolve_session_key(
                agent_id, self.config.main_key, store.sessions, session_ref
            )
            return self._compact_locked(paths, agent_id, session_key, store, force=True)

    async def reset_session(
        self, paths: GoatherdPaths, agent_id: str, session_ref: str | None = None
    ) -> SessionInfo:
        """Replace the session behind a key with a fresh one, keeping its project path."""
        agent_id = normalize_agent_id(agent_id) or DEFAULT_AGENT_ID
        workspace_path = paths.workspaces_dir / agent_id
        async with self._lock_for(agent_id):
            store = self._read_store(paths, agent_id)
            session_key = resolve_session_key(
                agent_id, self.config.main_key, store.sessions, session_ref
            )
            existing = store.sessions.get(session_key)
            session_id = str(uuid.uuid4())
            transcript_path = self._sessions_dir(paths, agent_id) / f"{session_id}.jsonl"
            entry = SessionEntry(
                session_id=session_id,
                updated_at=self._now_ms(),
                transcript_file=str(transcript_path),
                workspace_path=str(workspace_path),
                project_path=existing.project_path if existing else None,
            )
            store.sessions[session_key] = entry
            self._persist_store(paths, agent_id, store)
            self._ensure_transcript_header(transcript_path, agent_id, session_key, entry)

        log.info(SESSION_RESET, agent_id=agent_id, session_key=session_key, session_id=session_id)
        return self._to_info(paths, agent_id, session_key, entry, is_new_session=True)

    async def remove_session(
        self, paths: GoatherdPaths, agent_id: str, session_ref: str | None = None
    ) -> SessionRemoveResult:
        """Delete a session record. The transcript file is left on disk.

        Raises:
            SessionNotFoundError: If no session matches the reference.
        """
        agent_id = normalize_agent_id(agent_id) or DEFAULT_AGENT_ID
        async with self._lock_for(agent_id):
            store = self._read_store(paths, agent_id)
            session_key = resolve_session_key(
                agent_id, self.config.main_key, store.sessions, session_ref
            )
            entry = store.sessions.pop(session_key, None)
            if entry is None:
                raise SessionNotFoundError(session_ref or session_key)
            self._persist_store(paths, agent_id, store)

        log.info(SESSION_REMOVED, agent_id=agent_id, session_key=session_key)
        return SessionRemoveResult(
            session_key=session_key,
            session_id=entry.session_id,
            title=_resolve_title(session_key, entry.title),
            transcript_path=self._transcript_path(paths, agent_id, entry),
        )

    async def rename_session(
        self,
        paths: GoatherdPaths,
        agent_id: str,
        title: str,
        session_ref: str | None = None,
    ) -> SessionSummary:
        """Set a session's display title.

        Raises:
            SessionNotFoundError: If no session matches the reference.
            ValueError: If the title is empty.
        """
        agent_id = normalize_agent_id(agent_id) or DEFAULT_AGENT_ID
        async with self._lock_for(agent_id):
            store = self._read_store(paths, agent_id)
            session_key = resolve_session_key(
                agent_id, self.config.main_key, store.sessions, session_ref
            )
            entry = store.sessions.get(session_key)
            if entry is None:
                raise SessionNotFoundError(session_ref or session_key)
            entry = entry.model_copy(
                update={"title": _normalize_title(title), "updated_at": self._now_ms()}
            )
            store.sessions[session_key] = entry
            self._persist_store(paths, agent_id, store)
        return self._to_summary(paths, agent_id, session_key, entry)

    async def list_sessions(
        self,
        paths: GoatherdPaths,
        agent_id: str,
        active_minutes: int | None = None,
    ) -> list[SessionSummary]:
        """List sessions, most recently updated first.

        Args:
            active_minutes: If positive, only sessions updated within this window.
        """
        agent_id = normalize_agent_id(agent_id) or DEFAULT_AGENT_ID
        store = self._read_store(paths, agent_id)
        now = self._now_ms()
        window_ms = active_minutes * 60_000 if active_minutes and active_minutes > 0 else None

        summaries = [
            self._to_summary(paths, agent_id, key, entry)
            for key, entry in store.sessions.items()
            if window_ms is None or now - entry.updated_at <= window_ms
        ]
        return sorted(summaries, key=lambda s: s.updated_at, reverse=True)

    async def get_session_history(
        self,
        paths: GoatherdPaths,
        agent_id: str,
        session_ref: str | None = None,
        limit: int | None = None,
        include_compaction: bool = False,
    ) -> SessionHistory:
        """Return transcript messages (and optionally compaction summaries)."""
        agent_id = normalize_agent_id(agent_id) or DEFAULT_AGENT_ID
        store = self._read_store(paths, agent_id)
        session_key = resolve_session_key(agent_id, self.config.main_key, store.sessions, session_ref)
        entry = store.sessions.get(session_key)
        if entry is None:
            return SessionHistory(session_key=session_key)

        transcript_path = self._transcript_path(paths, agent_id, entry)
        items: list[SessionHistoryItem] = []
        for record in self._read_transcript(transcript_path):
            match record:
                case TranscriptMessage():
                    items.append(
                        SessionHistoryItem(
                            type="message",
                            role=record.role,
                            content=record.content,
                            timestamp=record.timestamp,
                        )
                    )
                case TranscriptCompaction() if include_compaction:
                    items.append(
                        SessionHistoryItem(
                            type="compaction", content=record.summary, timestamp=record.timestamp
                        )
                    )
                case _:
                    pass

        if limit is not None and limit > 0:
            items = items[-limit:]
        return SessionHistory(
            session_key=session_key,
            session_id=entry.session_id,
            transcript_path=transcript_path,
            messages=items,
        )

    async def get_last_agent_action(
        self, paths: GoatherdPaths, agent_id: str
    ) -> AgentLastAction | None:
        """Find the most recent assistant message across an agent's sessions."""
        agent_id = normalize_agent_id(agent_id) or DEFAULT_AGENT_ID
        store = self._read_store(paths, agent_id)
        latest: AgentLastAction | None = None

        for session_key, entry in store.sessions.items():
            if entry.output_chars <= 0:
                continue
            transcript_path = self._transcript_path(paths, agent_id, entry)
            for record in self._read_transcript(transcript_path):
                if not isinstance(record, TranscriptMessage) or record.role != "assistant":
                    continue
                if latest is None or record.timestamp > latest.timestamp:
                    latest = AgentLastAction(
                        agent_id=agent_id,
                        session_key=session_key,
                        session_id=entry.session_id,
                        transcript_path=transcript_path,
                        timestamp=record.timestamp,
                    )
        return latest

    # ------------------------------------------------------------------
    # Internals (callers hold the agent lock for anything that writes)
    # ------------------------------------------------------------------

    def _compact_locked(
        self,
        paths: GoatherdPaths,
        agent_id: str,
        session_key: str,
        store: SessionStoreFile,
        force: bool,
    ) -> SessionCompactionResult:
        entry = store.sessions.get(session_key)
        if entry is None:
            raise SessionNotFoundError(session_key)

        transcript_path = self._transcript_path(paths, agent_id, entry)
        not_applied = SessionCompactionResult(
            session_key=session_key,
            session_id=entry.session_id,
            transcript_path=transcript_path,
            applied=False,
        )
        records = self._read_transcript(transcript_path)
        messages = [r for r in records if isinstance(r, TranscriptMessage)]
        trigger = self.config.compaction

        if not force:
            if not trigger.enabled:
                return not_applied
            message_chars = sum(len(m.content) for m in messages)
            if (
                len(messages) < trigger.trigger_message_count
                and message_chars < trigger.trigger_chars
            ):
                return not_applied

        keep = trigger.keep_recent_messages
        if len(messages) <= keep:
            return not_applied

        compacted = messages[:-keep]
        kept = messages[-keep:]
        summary = summarize_compacted_messages(compacted, trigger.summary_max_chars)
        now = self._now_ms()

        header = next(
            (r for r in records if isinstance(r, TranscriptHeader)),
            self._new_header(agent_id, session_key, entry),
        )
        previous = [r for r in records if isinstance(r, TranscriptCompaction)]
        compaction = TranscriptCompaction(
            summary=summary,
            compacted_messages=len(compacted),
            kept_messages=len(kept),
            timestamp=now,
        )
        self._write_transcript(
            transcript_path,
            [header, *previous[-KEPT_COMPACTION_RECORDS:], compaction, *kept],
        )

        store.sessions[session_key] = entry.model_copy(
            update={
                "transcript_file": str(transcript_path),
                "updated_at": now,
                "compaction_count": entry.compaction_count + 1,
            }
        )
        self._persist_store(paths, agent_id, store)

        log.info(
            SESSION_COMPACTED,
            agent_id=agent_id,
            session_key=session_key,
            session_id=entry.session_id,
            compacted_messages=len(compacted),
            kept_messages=len(kept),
        )
        return SessionCompactionResult(
            session_key=session_key,
            session_id=entry.session_id,
            transcript_path=transcript_path,
            applied=True,
            summary=summary,
            compacted_messages=len(compacted),
        )

    def _append_message_locked(
        self,
        paths: GoatherdPaths,
        agent_id: str,
        session_key: str,
        role: str,
        content: str,
    ) -> None:
        content = content.strip()
        if not content:
            return
        store = self._read_store(paths, agent_id)
        entry = store.sessions.get(session_key)
        if entry is None:
            return

        transcript_path = self._transcript_path(paths, agent_id, entry)
        records = self._read_transcript(transcript_path)
        header = next(
            (r for r in records if isinstance(r, TranscriptHeader)),
            self._new_header(agent_id, session_key, entry),
        )
        now = self._now_ms()
        message = TranscriptMessage(role=role, content=content, timestamp=now)
        self._write_transcript(
            transcript_path,
            [header, *(r for r in records if not isinstance(r, TranscriptHeader)), message],
        )

        input_chars = entry.input_chars + (len(content) if role == "user" else 0)
        output_chars = entry.output_chars + (len(content) if role == "assistant" else 0)
        store.sessions[session_key] = entry.model_copy(
            update={
                "transcript_file": str(transcript_path),
                "updated_at": now,
                "input_chars": input_chars,
                "output_chars": output_chars,
                "total_chars": input_chars + output_chars,
            }
        )
        self._persist_store(paths, agent_id, store)

    def _ensure_transcript_header(
        self, transcript_path: Path, agent_id: str, session_key: str, entry: SessionEntry
    ) -> None:
        records = self._read_transcript(transcript_path)
        if records and isinstance(records[0], TranscriptHeader):
            return
        header = next(
            (r for r in records if isinstance(r, TranscriptHeader)),
            self._new_header(agent_id, session_key, entry),
        )
        self._write_transcript(
            transcript_path,
            [header, *(r for r in records if not isinstance(r, TranscriptHeader))],
        )

    def _new_header(self, agent_id: str, session_key: str, entry: SessionEntry) -> TranscriptHeader:
        return TranscriptHeader(
            session_id=entry.session_id,
            session_key=session_key,
            agent_id=agent_id,
            created_at=datetime.fromtimestamp(self._now_ms() / 1000, tz=UTC).isoformat(),
            workspace_path=entry.workspace_path,
            project_path=entry.project_path,
        )

    @staticmethod
    def _sessions_dir(paths: GoatherdPaths, agent_id: str) -> Path:
        return paths.agents_dir / agent_id / "sessions"

    def _store_path(self, paths: GoatherdPaths, agent_id: str) -> Path:
        return self._sessions_dir(paths, agent_id) / "sessions.json"

    def _transcript_path(self, paths: GoatherdPaths, agent_id: str, entry: SessionEntry) -> Path:
        if entry.transcript_file and entry.transcript_file.strip():
            return Path(entry.transcript_file.strip())
        return self._sessions_dir(paths, agent_id) / f"{entry.session_id}.jsonl"

    def _read_store(self, paths: GoatherdPaths, agent_id: str) -> SessionStoreFile:
        store_path = self._store_path(paths, agent_id)
        if not store_path.exists():
            return SessionStoreFile()
        try:
            data = read_json(store_path)
        except orjson.JSONDecodeError:
            raise SessionStoreParseError(store_path) from None
        except OSError as e:
            raise SessionStoreError(f"Cannot read session store {store_path}: {e}") from e
        try:
            return SessionStoreFile.model_validate(data)
        except ValidationError:
            raise SessionStoreParseError(store_path) from None

    def _persist_store(self, paths: GoatherdPaths, agent_id: str, store: SessionStoreFile) -> None:
        store_path = self._store_path(paths, agent_id)
        try:
            write_json_atomic(store_path, store.model_dump(mode="json", by_alias=True))
        except OSError as e:
            raise SessionStoreError(f"Cannot write session store {store_path}: {e}") from e

    def _read_transcript(self, transcript_path: Path) -> list[TranscriptRecord]:
        if not transcript_path.exists():
            return []
        try:
            raw = transcript_path.read_text(encoding="utf-8")
        except OSError as e:
            raise SessionStoreError(f"Cannot read transcript {transcript_path}: {e}") from e

        records: list[TranscriptRecord] = []
        for line in raw.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                data = orjson.loads(line)
            except orjson.JSONDecodeError:
                raise SessionTranscriptParseError(transcript_path) from None
            try:
                records.append(transcript_record_adapter.validate_python(data))
            except ValidationError:
                # Unknown record kinds from newer writers are skipped
                continue
        return records

    def _write_transcript(self, transcript_path: Path, records: list[TranscriptRecord]) -> None:
        lines = [
            orjson.dumps(r.model_dump(mode="json", by_alias=True, exclude_none=True)).decode()
            for r in records
        ]
        payload = "\n".join(lines)
        try:
            write_text_atomic(transcript_path, f"{payload}\n" if payload else "")
        except OSError as e:
            raise SessionStoreError(f"Cannot write transcript {transcript_path}: {e}") from e

    def _to_info(
        self,
        paths: GoatherdPaths,
        agent_id: str,
        session_key: str,
        entry: SessionEntry,
        is_new_session: bool,
    ) -> SessionInfo:
        return SessionInfo(
            agent_id=agent_id,
            session_key=session_key,
            session_id=entry.session_id,
            project_path=entry.project_path,
            updated_at=entry.updated_at,
            compaction_count=entry.compaction_count,
            transcript_path=self._transcript_path(paths, agent_id, entry),
            workspace_path=Path(entry.workspace_path or paths.workspaces_dir / agent_id),
            is_new_session=is_new_session,
        )

    def _to_summary(
        self, paths: GoatherdPaths, agent_id: str, session_key: str, entry: SessionEntry
    ) -> SessionSummary:
        return SessionSummary(
            session_key=session_key,
            session_id=entry.session_id,
            title=_resolve_title(session_key, entry.title),
            updated_at=entry.updated_at,
            transcript_path=self._transcript_path(paths, agent_id, entry),
            workspace_path=Path(entry.workspace_path or paths.workspaces_dir / agent_id),
            project_path=entry.project_path,
            input_chars=entry.input_chars,
            output_chars=entry.output_chars,
            total_chars=entry.total_chars,
            compaction_count=entry.compaction_count,
        )
