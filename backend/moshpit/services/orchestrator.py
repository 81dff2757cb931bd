"""Moshpit session orchestration.

One ``start`` runs these states strictly in order:

    ResolvingOwnerAuth -> ResolvingSession -> CollectingJoins
    -> SeedingPlaylist -> StartingPlayback -> Monitoring -> Ended

Everything up to Monitoring happens inside the command; Monitoring runs as
a background task registered under the moshpit id so ``quit`` can stop it.
"""

import asyncio
import contextlib
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

import asyncpg
import discord

from moshpit.core.exceptions import (
    AuthFailure,
    PersistenceFailure,
    PlaybackStartFailure,
    SpotifyAPIError,
)
from moshpit.services.credentials import CredentialManager
from moshpit.services.join_collector import JOIN_TIMEOUT, JoinCollector
from moshpit.services.seed_sampler import SeedSampler
from moshpit.services.spotify_api import PlaybackState, SpotifyAPIClient, playlist_uri
from shared.models.moshpit import Moshpit
from shared.repositories.moshpit import MoshpitRepository
from shared.repositories.user import UserRepository

logger = logging.getLogger(__name__)

PLAYLIST_FLOOR = 5
POLL_INTERVAL = 5.0
PLAYLIST_NAME = "moshpit"
PLAYLIST_DESCRIPTION = "A shared moshpit listening session"

JOIN_EMOJI = "🤘"
JOIN_PROMPT = (
    "{owner} is starting a moshpit! React with {emoji} to join. "
    "{owner}, react when everyone is in."
)
NOW_PLAYING = "Now playing: **{track}**"
MSG_NO_DEVICE = (
    "I couldn't start the moshpit on your Spotify. "
    "Open Spotify on one of your devices and try again."
)

_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class SessionState(str, Enum):
    RESOLVING_OWNER_AUTH = "resolving_owner_auth"
    RESOLVING_SESSION = "resolving_session"
    COLLECTING_JOINS = "collecting_joins"
    SEEDING_PLAYLIST = "seeding_playlist"
    STARTING_PLAYBACK = "starting_playback"
    MONITORING = "monitoring"
    ENDED = "ended"


@dataclass
class Listener:
    user: discord.abc.User
    token: str


@dataclass
class StartResult:
    """What a successful start produced, for the reply in the channel."""

    moshpit: Moshpit
    listeners: list[discord.abc.User]
    skipped: list[discord.abc.User] = field(default_factory=list)
    added_tracks: list[str] = field(default_factory=list)
    resumed: bool = False


@contextlib.contextmanager
def _store_errors(step: str) -> Iterator[None]:
    try:
        yield
    except _STORE_ERRORS as e:
        raise PersistenceFailure(f"{step}: {type(e).__name__}: {e}") from e


@dataclass
class _Monitor:
    stop: asyncio.Event
    task: asyncio.Task | None = None
    teardown: bool = True


class MonitorRegistry:
    """Running now-playing monitors, one per moshpit id."""

    def __init__(self) -> None:
        self._monitors: dict[UUID, _Monitor] = {}

    def __contains__(self, moshpit_id: UUID) -> bool:
        return moshpit_id in self._monitors

    def __len__(self) -> int:
        return len(self._monitors)

    def start(self, moshpit_id: UUID, monitor: "SessionMonitor") -> asyncio.Task:
        """Run *monitor* for a moshpit, superseding any monitor already running."""
        previous = self._monitors.pop(moshpit_id, None)
        if previous is not None:
            # The new session owns the participants' playback now
            previous.teardown = False
            previous.stop.set()

        entry = _Monitor(stop=asyncio.Event())
        entry.task = asyncio.create_task(
            self._run(moshpit_id, monitor, entry), name=f"moshpit-monitor-{moshpit_id}"
        )
        self._monitors[moshpit_id] = entry
        return entry.task

    async def _run(self, moshpit_id: UUID, monitor: "SessionMonitor", entry: _Monitor) -> None:
        try:
            await monitor.run(entry.stop, lambda: entry.teardown)
        except Exception:
            logger.exception(f"Monitor for moshpit {moshpit_id} crashed")
        finally:
            if self._monitors.get(moshpit_id) is entry:
                del self._monitors[moshpit_id]

    def cancel(self, moshpit_id: UUID) -> bool:
        """Signal a moshpit's monitor to tear down and stop. False if none runs."""
        entry = self._monitors.get(moshpit_id)
        if entry is None:
            return False
        entry.stop.set()
        return True

    async def shutdown(self) -> None:
        """Stop every monitor and wait for them to finish."""
        entries = list(self._monitors.values())
        for entry in entries:
            entry.stop.set()
        if entries:
            await asyncio.gather(*(e.task for e in entries if e.task), return_exceptions=True)


class SessionMonitor:
    """Keeps the now-playing message current until the owner stops.

    Ticks run one after another in a single task, so a slow tick delays the
    next one instead of overlapping it.
    """

    def __init__(
        self,
        moshpit: Moshpit,
        owner: discord.abc.User,
        channel: discord.abc.Messageable,
        listeners: list[discord.abc.User],
        credentials: CredentialManager,
        spotify: SpotifyAPIClient,
        *,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self.moshpit = moshpit
        self.owner = owner
        self.channel = channel
        self.listeners = listeners
        self.credentials = credentials
        self.spotify = spotify
        self.poll_interval = poll_interval
        self.context_uri = playlist_uri(moshpit.spotify_playlist_id)
        self.state = SessionState.MONITORING
        self._message: discord.Message | None = None
        self._track_id: str | None = None

    async def run(self, stop: asyncio.Event, should_teardown=lambda: True) -> None:
        """Poll until the owner stops or *stop* is set, then tear down."""
        try:
            playback = await self._owner_playback()
            if playback is not None:
                await self._announce(playback)

            while True:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
                if stop.is_set():
                    logger.info(f"Monitor for moshpit {self.moshpit.moshpit_id} stopped")
                    break
                if not await self.tick():
                    break
        finally:
            await self._end(pause=should_teardown())

    async def tick(self) -> bool:
        """Run a single poll. Returns False once the owner has stopped."""
        playback = await self._owner_playback()
        if playback is None or not self._still_moshing(playback):
            logger.info(f"Owner {self.owner.id} stopped moshpit {self.moshpit.moshpit_id}")
            return False
        if playback.track_id != self._track_id:
            await self._announce(playback)
        return True

    def _still_moshing(self, playback: PlaybackState | None) -> bool:
        return (
            playback is not None
            and playback.is_playing
            and playback.context_uri == self.context_uri
        )

    async def _owner_playback(self) -> PlaybackState | None:
        try:
            token = await self.credentials.get_access_token(self.owner)
        except AuthFailure:
            logger.warning(f"Lost Spotify access for moshpit owner {self.owner.id}")
            return None
        try:
            return await self.spotify.get_playback_state(token)
        except SpotifyAPIError as e:
            # Transient failures keep the session alive until the next tick
            logger.warning(f"Playback poll failed for owner {self.owner.id}: {e}")
            return PlaybackState(
                is_playing=True, context_uri=self.context_uri, track_id=self._track_id
            )

    async def _announce(self, playback: PlaybackState) -> None:
        await self._delete_message()
        self._track_id = playback.track_id
        try:
            self._message = await self.channel.send(
                NOW_PLAYING.format(track=playback.display_name)
            )
        except discord.HTTPException as e:
            logger.warning(f"Could not post now-playing for {self.moshpit.moshpit_id}: {e}")

    async def _delete_message(self) -> None:
        if self._message is None:
            return
        message, self._message = self._message, None
        try:
            await message.delete()
        except discord.HTTPException as e:
            logger.debug(f"Now-playing message already gone: {e}")

    async def _end(self, pause: bool) -> None:
        if self.state is SessionState.ENDED:
            return
        self.state = SessionState.ENDED
        await self._delete_message()
        if not pause:
            return
        results = await asyncio.gather(
            *(self._pause(user) for user in self.listeners), return_exceptions=True
        )
        for user, result in zip(self.listeners, results):
            if isinstance(result, Exception):
                logger.warning(
                    f"Could not pause user {user.id}: {type(result).__name__}: {result}"
                )
            elif isinstance(result, BaseException):
                raise result

    async def _pause(self, user: discord.abc.User) -> None:
        try:
            token = await self.credentials.get_access_token(user)
            await self.spotify.pause(token)
        except (AuthFailure, SpotifyAPIError) as e:
            logger.debug(f"Pause for user {user.id} ignored: {e}")


class SessionOrchestrator:
    """Top-level moshpit flow: auth, session, joins, playlist, playback, monitor."""

    def __init__(
        self,
        credentials: CredentialManager,
        spotify: SpotifyAPIClient,
        users: UserRepository,
        moshpits: MoshpitRepository,
        joins: JoinCollector,
        sampler: SeedSampler,
        monitors: MonitorRegistry,
        *,
        playlist_floor: int = PLAYLIST_FLOOR,
        join_timeout: float = JOIN_TIMEOUT,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self.credentials = credentials
        self.spotify = spotify
        self.users = users
        self.moshpits = moshpits
        self.joins = joins
        self.sampler = sampler
        self.monitors = monitors
        self.playlist_floor = playlist_floor
        self.join_timeout = join_timeout
        self.poll_interval = poll_interval
        self._session_locks: dict[tuple[int, int], asyncio.Lock] = {}

    def _session_lock(self, owner_id: int, guild_id: int) -> asyncio.Lock:
        return self._session_locks.setdefault((owner_id, guild_id), asyncio.Lock())

    async def start(
        self,
        owner: discord.abc.User,
        channel: discord.abc.Messageable,
        guild_id: int,
    ) -> StartResult:
        """Run a moshpit start through to Monitoring.

        Raises AuthFailure when the owner cannot be signed in,
        PlaybackStartFailure when the owner's own playback fails, and
        PlaylistSeedFailure / PersistenceFailure / SpotifyAPIError for
        everything else that aborts the flow.
        """
        log_prefix = f"[moshpit owner={owner.id} guild={guild_id}]"

        logger.debug(f"{log_prefix} {SessionState.RESOLVING_OWNER_AUTH.value}")
        owner_token = await self.credentials.get_access_token(owner)

        logger.debug(f"{log_prefix} {SessionState.RESOLVING_SESSION.value}")
        # A second concurrent start resumes the row the first one created
        async with self._session_lock(owner.id, guild_id):
            moshpit, resumed = await self._resolve_session(owner, owner_token, guild_id)

        logger.debug(f"{log_prefix} {SessionState.COLLECTING_JOINS.value}")
        roster = await self.joins.collect_joins(
            channel,
            owner,
            JOIN_PROMPT.format(owner=_mention(owner), emoji=JOIN_EMOJI),
            JOIN_EMOJI,
            self.join_timeout,
        )
        with _store_errors("update current moshpit"):
            await self.users.set_current_moshpit(owner.id, moshpit.moshpit_id)
        joined, skipped = await self._resolve_listeners(roster)
        logger.info(f"{log_prefix} {len(joined)} joined, {len(skipped)} skipped")

        logger.debug(f"{log_prefix} {SessionState.SEEDING_PLAYLIST.value}")
        added, position = await self._seed_playlist(
            moshpit, owner_token, [listener.token for listener in joined]
        )

        logger.debug(f"{log_prefix} {SessionState.STARTING_PLAYBACK.value}")
        playing, failed = await self._start_playback(
            owner, [listener.user for listener in joined], moshpit, position
        )
        skipped.extend(failed)
        for user in playing:
            with _store_errors("update current moshpit"):
                await self.users.set_current_moshpit(user.id, moshpit.moshpit_id)

        logger.debug(f"{log_prefix} {SessionState.MONITORING.value}")
        monitor = SessionMonitor(
            moshpit,
            owner,
            channel,
            playing,
            self.credentials,
            self.spotify,
            poll_interval=self.poll_interval,
        )
        self.monitors.start(moshpit.moshpit_id, monitor)

        return StartResult(
            moshpit=moshpit,
            listeners=playing,
            skipped=skipped,
            added_tracks=added,
            resumed=resumed,
        )

    async def quit(self, owner: discord.abc.User, guild_id: int) -> bool:
        """End the owner's moshpit in a guild. False if there was none."""
        with _store_errors("look up moshpit"):
            moshpit = await self.moshpits.get_for_owner(owner.id, guild_id)
        if moshpit is None:
            return False

        with _store_errors("delete moshpit"):
            await self.moshpits.delete(moshpit.moshpit_id)
        stopped = self.monitors.cancel(moshpit.moshpit_id)
        logger.info(
            f"Moshpit {moshpit.moshpit_id} quit by owner {owner.id} (monitor stopped: {stopped})"
        )
        return True

    # ==================== States ====================

    async def _resolve_session(
        self, owner: discord.abc.User, owner_token: str, guild_id: int
    ) -> tuple[Moshpit, bool]:
        with _store_errors("look up moshpit"):
            existing = await self.moshpits.get_for_owner(owner.id, guild_id)
        if existing is not None:
            logger.info(f"Resuming moshpit {existing.moshpit_id} for owner {owner.id}")
            return existing, True

        spotify_user_id = await self.spotify.get_current_user_id(owner_token)
        playlist_id = await self.spotify.create_playlist(
            owner_token, spotify_user_id, PLAYLIST_NAME, PLAYLIST_DESCRIPTION
        )
        # An orphaned playlist is accepted if this insert fails
        with _store_errors("create moshpit"):
            moshpit = await self.moshpits.create(owner.id, guild_id, playlist_id)
        logger.info(f"Created moshpit {moshpit.moshpit_id} with playlist {playlist_id}")
        return moshpit, False

    async def _resolve_listeners(
        self, roster: list[discord.abc.User]
    ) -> tuple[list[Listener], list[discord.abc.User]]:
        """Sign in every joined user concurrently; failures are skipped."""
        results = await asyncio.gather(
            *(self.credentials.get_access_token(user) for user in roster),
            return_exceptions=True,
        )
        joined: list[Listener] = []
        skipped: list[discord.abc.User] = []
        for user, result in zip(roster, results):
            if isinstance(result, AuthFailure):
                logger.info(f"Skipping user {user.id}: {result.reason.value}")
                skipped.append(user)
            elif isinstance(result, BaseException):
                raise result
            else:
                joined.append(Listener(user=user, token=result))
        return joined, skipped

    async def _seed_playlist(
        self, moshpit: Moshpit, owner_token: str, listener_tokens: list[str]
    ) -> tuple[list[str], int]:
        """Top the playlist up to the floor; return added URIs and start position.

        Playback starts at the first freshly added track, or within the last
        ``playlist_floor`` tracks when nothing had to be added.
        """
        length = await self.spotify.get_playlist_length(owner_token, moshpit.spotify_playlist_id)
        missing = self.playlist_floor - length
        if missing <= 0:
            return [], max(length - self.playlist_floor, 0)

        with _store_errors("store recommendations"):
            added = await self.sampler.add_tracks(
                owner_token,
                listener_tokens,
                missing,
                moshpit.spotify_playlist_id,
                moshpit.moshpit_id,
            )
        return added, length

    async def _start_playback(
        self,
        owner: discord.abc.User,
        users: list[discord.abc.User],
        moshpit: Moshpit,
        position: int,
    ) -> tuple[list[discord.abc.User], list[discord.abc.User]]:
        """Start everyone at once; only the owner's failure is fatal."""
        context_uri = playlist_uri(moshpit.spotify_playlist_id)
        everyone = [owner, *users]
        results = await asyncio.gather(
            *(self._play_for(user, context_uri, position) for user in everyone),
            return_exceptions=True,
        )

        owner_result, listener_results = results[0], results[1:]
        if isinstance(owner_result, AuthFailure):
            raise owner_result
        if isinstance(owner_result, BaseException):
            raise PlaybackStartFailure(
                owner.id, f"Could not start playback for the owner: {owner_result}"
            ) from owner_result

        playing: list[discord.abc.User] = []
        failed: list[discord.abc.User] = []
        for user, result in zip(users, listener_results):
            if isinstance(result, BaseException):
                if not isinstance(result, (AuthFailure, SpotifyAPIError)):
                    raise result
                logger.info(f"Playback start failed for user {user.id}: {result}")
                failed.append(user)
                if isinstance(result, SpotifyAPIError):
                    await _notify(user, MSG_NO_DEVICE)
            else:
                playing.append(user)
        return playing, failed

    async def _play_for(self, user: discord.abc.User, context_uri: str, position: int) -> None:
        token = await self.credentials.get_access_token(user)
        await self.spotify.set_shuffle(token, False)
        await self.spotify.play(token, context_uri, position)


def _mention(user: discord.abc.User) -> str:
    return getattr(user, "mention", f"<@{user.id}>")


async def _notify(user: discord.abc.User, text: str) -> None:
    try:
        await user.send(text)
    except discord.HTTPException as e:
        logger.warning(f"Could not DM user {user.id}: {e}")
