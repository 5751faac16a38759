import asyncio
from typing import Optional

import aiohttp
import discord
from discord import app_commands
from discord.ext import commands

from .asyncrace_games import SeedClient, build_descriptor
from .asyncrace_gateway import DiscordGateway
from .asyncrace_groups import ChannelGroupRegistry
from .asyncrace_ledger import SubmissionLedger, SubmitOutcome
from .asyncrace_lifecycle import RaceLifecycleManager
from .asyncrace_models import ChannelGroup, Race, Runner
from .asyncrace_paginator import MessagePaginator
from .asyncrace_shared import (
    DB_FILE,
    MAX_MESSAGE_LEN,
    AsyncRaceError,
    NotFoundError,
    RaceType,
    ValidationError,
    ensure_dirs,
    logger,
    maintenance_user_id,
    parse_duration,
)
from .asyncrace_storage import RaceStorage


class AsyncRaceCog(commands.Cog):
    asyncrace = app_commands.Group(name="asyncrace", description="Async race commands", guild_only=True)

    def __init__(self, client: commands.Bot):
        self.client = client
        ensure_dirs(DB_FILE)
        self.storage = RaceStorage(DB_FILE)
        self.gateway = DiscordGateway(client)
        self.groups = ChannelGroupRegistry(self.storage)
        self.ledger = SubmissionLedger(self.storage, self.gateway)
        self.paginator = MessagePaginator(self.storage, self.gateway)
        self.races = RaceLifecycleManager(self.storage, self.gateway, self.paginator, self.ledger)
        self.session: Optional[aiohttp.ClientSession] = None

    async def cog_load(self):
        self.session = aiohttp.ClientSession()
        await self.groups.load()

    def cog_unload(self):
        if self.session and not self.session.closed:
            asyncio.create_task(self.session.close())

    def has_mod_permissions(self, member: discord.Member) -> bool:
        perms = member.guild_permissions
        return perms.administrator or perms.manage_guild or perms.manage_roles or perms.manage_channels or perms.manage_messages

    def seeds(self) -> SeedClient:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
        return SeedClient(self.session)

    async def notify_maintenance(self, text: str) -> None:
        user_id = maintenance_user_id()
        if user_id is None:
            return
        try:
            user = self.client.get_user(user_id) or await self.client.fetch_user(user_id)
            await user.send(text[:MAX_MESSAGE_LEN])
        except discord.HTTPException:
            logger.exception("Failed to notify maintenance user %s", user_id)

    async def report_failure(self, interaction: discord.Interaction, exc: AsyncRaceError):
        if isinstance(exc, (ValidationError, NotFoundError)):
            return await interaction.followup.send(str(exc), ephemeral=True)
        logger.error("Command %s failed: %s", interaction.command.name if interaction.command else "?", exc, exc_info=exc)
        await self.notify_maintenance(f"Async race error in <#{interaction.channel_id}>: {exc}")
        return await interaction.followup.send(f"Something went wrong: {exc}", ephemeral=True)

    async def check_mod_channel(self, interaction: discord.Interaction) -> Optional[ChannelGroup]:
        """Defer, check permissions and resolve the channel group of the current channel."""
        await interaction.response.defer(ephemeral=True)
        if not self.has_mod_permissions(interaction.user):
            await interaction.followup.send("You do not have permission to manage async races.", ephemeral=True)
            return None
        group = self.groups.for_submission_channel(interaction.channel_id)
        if group is None:
            await interaction.followup.send("Run this in the submission channel of a channel group.", ephemeral=True)
            return None
        return group

    async def active_race(self, interaction: discord.Interaction, group: ChannelGroup) -> Optional[Race]:
        race = await self.races.get_active(group)
        if race is None:
            await interaction.followup.send(f"There is no active race in {group.name}.", ephemeral=True)
        return race

    async def start_race(self, interaction: discord.Interaction, game: str, race_type: RaceType):
        group = await self.check_mod_channel(interaction)
        if group is None:
            return
        try:
            descriptor = await build_descriptor(game, self.seeds())
            race = await self.races.start(group, descriptor, race_type)
        except AsyncRaceError as exc:
            return await self.report_failure(interaction, exc)
        await interaction.followup.send(f"Started {race.race_type} race: {race.description}", ephemeral=True)

    @asyncrace.command(name="igtstart", description="Start an in-game-time race in this channel group")
    @app_commands.describe(game="Seed URL, or a short description for other games")
    async def igtstart(self, interaction: discord.Interaction, game: str):
        await self.start_race(interaction, game, RaceType.IGT)

    @asyncrace.command(name="rtastart", description="Start a real-time race in this channel group")
    @app_commands.describe(game="Seed URL, or a short description for other games")
    async def rtastart(self, interaction: discord.Interaction, game: str):
        await self.start_race(interaction, game, RaceType.RTA)

    @asyncrace.command(name="stop", description="Stop the active race and archive its leaderboard")
    async def stop(self, interaction: discord.Interaction):
        group = await self.check_mod_channel(interaction)
        if group is None:
            return
        try:
            race = await self.races.stop(group)
        except AsyncRaceError as exc:
            return await self.report_failure(interaction, exc)
        await interaction.followup.send(f"Stopped race from {race.race_date}.", ephemeral=True)

    @asyncrace.command(name="refresh", description="Redraw the leaderboard of the active race")
    async def refresh(self, interaction: discord.Interaction):
        group = await self.check_mod_channel(interaction)
        if group is None:
            return
        try:
            race = await self.races.refresh(group)
        except AsyncRaceError as exc:
            return await self.report_failure(interaction, exc)
        if race is None:
            return await interaction.followup.send(f"There is no active race in {group.name}.", ephemeral=True)
        await interaction.followup.send("Leaderboard refreshed.", ephemeral=True)

    @asyncrace.command(name="changetime", description="Correct a runner's time")
    @app_commands.describe(runner="Runner name as shown on the leaderboard", time="New time as H:MM:SS")
    async def changetime(self, interaction: discord.Interaction, runner: str, time: str):
        group = await self.check_mod_channel(interaction)
        if group is None:
            return
        race = await self.active_race(interaction, group)
        if race is None:
            return
        try:
            sub = await self.ledger.amend_time(race, runner, parse_duration(time))
            await self.races.refresh(group)
        except AsyncRaceError as exc:
            return await self.report_failure(interaction, exc)
        await interaction.followup.send(f"Updated time for {sub.runner_name}.", ephemeral=True)

    @asyncrace.command(name="changescore", description="Correct a runner's collection rate")
    @app_commands.describe(runner="Runner name as shown on the leaderboard", score="New collection rate")
    async def changescore(self, interaction: discord.Interaction, runner: str, score: app_commands.Range[int, 0]):
        group = await self.check_mod_channel(interaction)
        if group is None:
            return
        race = await self.active_race(interaction, group)
        if race is None:
            return
        try:
            sub = await self.ledger.amend_score(race, runner, score)
            await self.races.refresh(group)
        except AsyncRaceError as exc:
            return await self.report_failure(interaction, exc)
        await interaction.followup.send(f"Updated collection rate for {sub.runner_name}.", ephemeral=True)

    @asyncrace.command(name="removetime", description="Remove a runner's submission")
    @app_commands.describe(runner="Runner name as shown on the leaderboard")
    async def removetime(self, interaction: discord.Interaction, runner: str):
        group = await self.check_mod_channel(interaction)
        if group is None:
            return
        race = await self.active_race(interaction, group)
        if race is None:
            return
        try:
            sub = await self.ledger.remove(race, runner)
            await self.races.refresh(group)
        except AsyncRaceError as exc:
            return await self.report_failure(interaction, exc)
        await interaction.followup.send(f"Removed submission from {sub.runner_name}.", ephemeral=True)

    @asyncrace.command(name="removespoiler", description="Take this group's spoiler role from a member")
    @app_commands.describe(member="Member to remove the spoiler role from")
    async def removespoiler(self, interaction: discord.Interaction, member: discord.Member):
        group = await self.check_mod_channel(interaction)
        if group is None:
            return
        try:
            await self.gateway.revoke_role(group.server_id, member.id, group.spoiler_role_id)
        except AsyncRaceError as exc:
            return await self.report_failure(interaction, exc)
        await interaction.followup.send(f"Removed the spoiler role from {member.display_name}.", ephemeral=True)

    @asyncrace.command(name="addgroup", description="Register a channel group for async races")
    @app_commands.describe(
        name="Group name",
        submission="Channel where runners submit",
        leaderboard="Channel that shows the live leaderboard",
        spoiler="Spoiler channel unlocked by the role",
        role="Role granted on submission",
    )
    async def addgroup(
        self,
        interaction: discord.Interaction,
        name: str,
        submission: discord.TextChannel,
        leaderboard: discord.TextChannel,
        spoiler: discord.TextChannel,
        role: discord.Role,
    ):
        await interaction.response.defer(ephemeral=True)
        if not self.has_mod_permissions(interaction.user):
            return await interaction.followup.send("You do not have permission to manage channel groups.", ephemeral=True)
        try:
            group = await self.groups.add(
                interaction.guild.id,
                name,
                submission.id,
                leaderboard.id,
                spoiler.id,
                role.id,
                role.name,
            )
        except AsyncRaceError as exc:
            return await self.report_failure(interaction, exc)
        await interaction.followup.send(f"Added channel group `{group.name}`.", ephemeral=True)

    @asyncrace.command(name="removegroup", description="Remove a channel group, stopping its race first")
    @app_commands.describe(name="Group name")
    async def removegroup(self, interaction: discord.Interaction, name: str):
        await interaction.response.defer(ephemeral=True)
        if not self.has_mod_permissions(interaction.user):
            return await interaction.followup.send("You do not have permission to manage channel groups.", ephemeral=True)
        try:
            group = await self.groups.get(interaction.guild.id, name)
            if await self.races.get_active(group) is not None:
                await self.races.stop(group)
            await self.groups.remove(interaction.guild.id, group.name)
        except AsyncRaceError as exc:
            return await self.report_failure(interaction, exc)
        await interaction.followup.send(f"Removed channel group `{group.name}`.", ephemeral=True)

    @asyncrace.command(name="listgroups", description="List this server's channel groups")
    async def listgroups(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        groups = await self.groups.list_groups(interaction.guild.id)
        if not groups:
            return await interaction.followup.send("No channel groups configured.", ephemeral=True)
        lines = [
            f"**{g.name}**: submit <#{g.submission_channel_id}>, leaderboard <#{g.leaderboard_channel_id}>, "
            f"spoilers <#{g.spoiler_channel_id}>, role <@&{g.spoiler_role_id}>"
            for g in groups
        ]
        await interaction.followup.send("\n".join(lines), ephemeral=True, allowed_mentions=discord.AllowedMentions.none())

    async def cog_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        logger.exception("Unhandled error in /asyncrace command", exc_info=error)
        await self.notify_maintenance(f"Unhandled async race command error: {error}")

    async def handle_submission(self, group: ChannelGroup, message: discord.Message) -> None:
        race = await self.races.get_active(group)
        if race is None:
            logger.debug("Ignoring message in %s, no active race", group.name)
            return
        attachment = None
        if message.attachments:
            try:
                attachment = await message.attachments[0].read()
            except discord.HTTPException:
                logger.warning("Could not download attachment from %s", message.author.id, exc_info=True)
        runner = Runner(runner_id=message.author.id, name=message.author.display_name)
        try:
            outcome = await self.ledger.submit(race, runner, message.content, attachment)
        except ValidationError as exc:
            logger.warning("Rejected submission from %s in %s: %s", runner.runner_id, group.name, exc)
            try:
                await message.author.send(f"Your submission in {group.name} was not accepted: {exc}")
            except discord.HTTPException:
                logger.debug("Could not DM %s about their rejected submission", runner.runner_id)
            return
        if outcome is SubmitOutcome.DUPLICATE:
            return
        await self.races.refresh(group)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if message.author.bot or message.guild is None:
            return
        group = self.groups.for_submission_channel(message.channel.id)
        if group is None:
            return
        try:
            await self.handle_submission(group, message)
        except AsyncRaceError as exc:
            logger.exception("Failed to process submission in group %s", group.name)
            await self.notify_maintenance(f"Async race submission error in {group.name}: {exc}")
        finally:
            try:
                await message.delete()
            except discord.NotFound:
                logger.debug("Submission message %s was already deleted", message.id)
            except discord.HTTPException:
                logger.warning("Could not delete submission message %s", message.id, exc_info=True)


async def setup(client: commands.Bot):
    await client.add_cog(AsyncRaceCog(client))
