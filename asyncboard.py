import logging
import os
import platform

import discord
from discord.ext import commands
from dotenv import load_dotenv

load_dotenv()

TOKEN = os.getenv('TOKEN')
LOG_LEVEL = os.getenv('ASYNCRACE_LOG_LEVEL', 'INFO').upper()


class Client(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        super().__init__(command_prefix=commands.when_mentioned_or('.'), intents=intents)
        self.cogslist = [
            "cogs.asyncrace",
        ]

    async def setup_hook(self):
        for ext in self.cogslist:
            await self.load_extension(ext)

    async def on_ready(self):
        print(f"Logged in as {self.user.name}")
        print(f"Bot ID: {self.user.id}")
        print(f"Discord Version: {discord.__version__}")
        print(f"Python Version: {platform.python_version()}")
        await self.tree.sync()


def main():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if not TOKEN:
        raise SystemExit("TOKEN is not set; add it to .env")
    client = Client()
    client.run(TOKEN, log_handler=None)


if __name__ == "__main__":
    main()
