"""Tests for the reaction-based JoinCollector."""

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from moshpit.services.join_collector import JoinCollector

from .conftest import forbidden

EMOJI = "🤘"


@pytest.fixture
def bot() -> MagicMock:
    """A bot that records temporary listeners the way discord.py dispatches them."""
    bot = MagicMock()
    bot.listeners = []
    bot.add_listener = MagicMock(side_effect=lambda func, name: bot.listeners.append(func))
    bot.remove_listener = MagicMock(side_effect=lambda func, name: bot.listeners.remove(func))
    return bot


@pytest.fixture
def prompt() -> MagicMock:
    message = MagicMock()
    message.id = 777
    message.delete = AsyncMock()
    message.add_reaction = AsyncMock()
    return message


@pytest.fixture
def prompt_channel(prompt) -> MagicMock:
    channel = MagicMock()
    channel.send = AsyncMock(return_value=prompt)
    return channel


def make_reaction(message, emoji: str = EMOJI) -> MagicMock:
    reaction = MagicMock()
    reaction.message = message
    reaction.emoji = emoji
    return reaction


def script_reactions(bot, prompt, events) -> None:
    """Deliver *events* to every registered listener once the bot reacts."""

    async def add_reaction(emoji):
        for user, reaction in events:
            for listener in list(bot.listeners):
                await listener(reaction, user)

    prompt.add_reaction.side_effect = add_reaction


class TestCollectJoins:
    async def test_leader_reaction_closes_roster(
        self, bot, prompt, prompt_channel, owner, make_user
    ) -> None:
        a, b, late = make_user(), make_user(), make_user()
        script_reactions(
            bot,
            prompt,
            [(u, make_reaction(prompt)) for u in (a, b, owner, late)],
        )

        roster = await JoinCollector(bot).collect_joins(
            prompt_channel, owner, "join!", EMOJI, timeout=5
        )

        assert roster == [a, b]
        prompt.add_reaction.assert_awaited_once_with(EMOJI)

    async def test_duplicates_keep_arrival_order(
        self, bot, prompt, prompt_channel, owner, make_user
    ) -> None:
        a, b = make_user(), make_user()
        script_reactions(
            bot,
            prompt,
            [(u, make_reaction(prompt)) for u in (b, a, b, a, owner)],
        )

        roster = await JoinCollector(bot).collect_joins(
            prompt_channel, owner, "join!", EMOJI, timeout=5
        )

        assert roster == [b, a]

    async def test_unrelated_reactions_are_ignored(
        self, bot, prompt, prompt_channel, owner, make_user
    ) -> None:
        other_message = MagicMock()
        other_message.id = 778
        joiner, wrong_emoji, elsewhere = make_user(), make_user(), make_user()
        bot_user = make_user(bot=True)
        script_reactions(
            bot,
            prompt,
            [
                (bot_user, make_reaction(prompt)),
                (wrong_emoji, make_reaction(prompt, "👍")),
                (elsewhere, make_reaction(other_message)),
                (joiner, make_reaction(prompt)),
                (owner, make_reaction(prompt)),
            ],
        )

        roster = await JoinCollector(bot).collect_joins(
            prompt_channel, owner, "join!", EMOJI, timeout=5
        )

        assert roster == [joiner]

    async def test_timeout_without_reactions_is_empty(
        self, bot, prompt, prompt_channel, owner
    ) -> None:
        roster = await JoinCollector(bot).collect_joins(
            prompt_channel, owner, "join!", EMOJI, timeout=0.05
        )

        assert roster == []
        prompt.delete.assert_awaited_once()

    async def test_timeout_returns_partial_roster(
        self, bot, prompt, prompt_channel, owner, make_user
    ) -> None:
        joiner = make_user()
        script_reactions(bot, prompt, [(joiner, make_reaction(prompt))])

        roster = await JoinCollector(bot).collect_joins(
            prompt_channel, owner, "join!", EMOJI, timeout=0.05
        )

        assert roster == [joiner]


class TestCleanup:
    async def test_prompt_deleted_and_listener_removed(
        self, bot, prompt, prompt_channel, owner
    ) -> None:
        script_reactions(bot, prompt, [(owner, make_reaction(prompt))])

        await JoinCollector(bot).collect_joins(prompt_channel, owner, "join!", EMOJI, timeout=5)

        prompt_channel.send.assert_awaited_once_with("join!")
        prompt.delete.assert_awaited_once()
        assert bot.listeners == []
        bot.remove_listener.assert_called_once()

    async def test_failed_delete_does_not_raise(self, bot, prompt, prompt_channel, owner) -> None:
        prompt.delete.side_effect = forbidden("Missing Permissions")
        script_reactions(bot, prompt, [(owner, make_reaction(prompt))])

        roster = await JoinCollector(bot).collect_joins(
            prompt_channel, owner, "join!", EMOJI, timeout=5
        )

        assert roster == []

    async def test_cleanup_runs_when_reacting_fails(
        self, bot, prompt, prompt_channel, owner
    ) -> None:
        prompt.add_reaction.side_effect = forbidden("Missing Permissions")

        with pytest.raises(discord.Forbidden):
            await JoinCollector(bot).collect_joins(
                prompt_channel, owner, "join!", EMOJI, timeout=5
            )

        prompt.delete.assert_awaited_once()
        assert bot.listeners == []
