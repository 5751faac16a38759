from __future__ import annotations

import base64
import binascii
import json
import uuid
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

import aiohttp

from .asyncrace_shared import MAX_OTHER_GAME_TEXT, ExternalError, GameTag, UnknownGame, logger

ALTTPR_PATCH_URL = "https://s3.us-east-2.amazonaws.com/alttpr-patches/{}.json"
SMZ3_SEED_URL = "https://samus.link/api/seed/{}"
SMTOTAL_SEED_URL = "https://sm.samus.link/api/seed/{}"
VARIA_PARAMS_URL = "https://variabeta.pythonanywhere.com/randoParamsWebServiceAPI"
VARIA_HOSTS = {"randommetroidsolver.pythonanywhere.com", "varia.run", "www.varia.run"}

# patch offset that holds the five item indices of the file-select hash
ALTTPR_CODE_OFFSET = "1573397"
ALTTPR_CODE_ITEMS = [
    "Bow", "Boomerang", "Hookshot", "Bombs", "Mushroom", "Powder", "Ice Rod", "Pendant",
    "Bombos", "Ether", "Quake", "Lamp", "Hammer", "Shovel", "Flute", "Net",
    "Book", "Empty Bottle", "Green Potion", "Somaria", "Cape", "Mirror", "Boots", "Gloves",
    "Flippers", "Pearl", "Shield", "Tunic", "Heart", "Map", "Compass", "Key",
]
ALTTPR_MODES = {"open": "Open", "standard": "Standard", "inverted": "Inverted", "retro": "Retro"}
ALTTPR_GOALS = {
    "ganon": "Defeat Ganon",
    "fast_ganon": "Fast Ganon",
    "dungeons": "All Dungeons",
    "pedestal": "Pedestal",
    "triforce-hunt": "Triforce Hunt",
}
ALTTPR_DUNGEON_ITEMS = {"standard": "Standard", "mc": "MC", "mcs": "MCS", "full": "Keysanity"}
ALTTPR_SHUFFLES = {
    "none": "Vanilla Shuffle",
    "simple": "Simple Shuffle",
    "restricted": "Restricted Shuffle",
    "full": "Full Shuffle",
    "crossed": "Crossed Shuffle",
    "insanity": "Insanity Shuffle",
}
ALTTPR_LOGIC = {
    "NoGlitches": "No Glitches",
    "OverworldGlitches": "Overworld Glitches",
    "MajorGlitches": "Major Glitches",
    "None": "No Logic",
}


def detect_game(text: str) -> GameTag:
    parsed = urlparse(text.strip())
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return GameTag.OTHER
    host = parsed.hostname.lower()
    if host == "alttpr.com" and "/h/" in parsed.path:
        return GameTag.ALTTPR
    if host == "samus.link" and "/seed" in parsed.path:
        return GameTag.SMZ3
    if host == "sm.samus.link" and "/seed" in parsed.path:
        return GameTag.SMTOTAL
    if host in VARIA_HOSTS:
        return GameTag.SMVARIA
    if host in ("ff4fe.com", "www.ff4fe.com"):
        return GameTag.FF4FE
    return GameTag.OTHER


def url_slug(url: str) -> str:
    return urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]


def samus_link_guid(slug: str) -> str:
    try:
        raw = base64.urlsafe_b64decode(slug + "==")
        return uuid.UUID(bytes=raw).hex
    except (binascii.Error, ValueError) as exc:
        raise UnknownGame(f"`{slug}` is not a valid seed id.") from exc


class SeedClient:
    """Thin JSON client over the cog's aiohttp session."""

    def __init__(self, session: aiohttp.ClientSession):
        self.session = session

    async def get_json(self, url: str) -> Any:
        try:
            async with self.session.get(url) as resp:
                resp.raise_for_status()
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as exc:
            raise ExternalError(f"Failed to fetch seed data from {url}: {exc}") from exc

    async def post_form_json(self, url: str, data: Dict[str, str]) -> Any:
        try:
            async with self.session.post(url, data=data) as resp:
                resp.raise_for_status()
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as exc:
            raise ExternalError(f"Failed to fetch seed data from {url}: {exc}") from exc


class GameDescriptor:
    tag = GameTag.OTHER

    def __init__(self, url: Optional[str] = None):
        self.url = url

    def name(self) -> GameTag:
        return self.tag

    def settings_summary(self) -> str:
        raise NotImplementedError

    def source_url(self) -> Optional[str]:
        return self.url


class AlttprDescriptor(GameDescriptor):
    tag = GameTag.ALTTPR

    def __init__(self, url: str, patch: Dict[str, Any]):
        super().__init__(url)
        self.patch = patch

    def code(self) -> str:
        for entry in self.patch.get("patch") or []:
            if isinstance(entry, dict) and ALTTPR_CODE_OFFSET in entry:
                values = entry[ALTTPR_CODE_OFFSET]
                return "/".join(
                    ALTTPR_CODE_ITEMS[v] if 0 <= v < len(ALTTPR_CODE_ITEMS) else "Unknown" for v in values
                )
        raise ExternalError("ALTTPR patch does not contain a file select code.")

    def settings_summary(self) -> str:
        try:
            meta = self.patch["spoiler"]["meta"]
            if meta.get("spoilers") == "mystery":
                return f"Mystery ({self.code()})"
            parts = [
                ALTTPR_MODES.get(meta["mode"], "Unknown State"),
                ALTTPR_GOALS.get(meta["goal"], "Unknown Goal"),
                f"{meta['entry_crystals_tower']}/{meta['entry_crystals_ganon']}",
            ]
            dungeon_items = ALTTPR_DUNGEON_ITEMS.get(meta["dungeon_items"], "Unknown Dungeon Item Shuffle")
            shuffle = ALTTPR_SHUFFLES.get(meta.get("shuffle", "none"), "Unknown Shuffle")
            logic = ALTTPR_LOGIC.get(meta["logic"], "Unknown Logic")
        except (KeyError, TypeError) as exc:
            raise ExternalError(f"Could not read ALTTPR seed settings: missing {exc}") from exc
        if dungeon_items != "Standard":
            parts.append(dungeon_items)
        if shuffle != "Vanilla Shuffle":
            parts.append(shuffle)
        if logic != "No Glitches":
            parts.append(logic)
        parts.append(f"({self.code()})")
        return " ".join(parts)


class SamusLinkDescriptor(GameDescriptor):
    """SMZ3 and SM Total seeds, both served by samus.link."""

    def __init__(self, tag: GameTag, url: str, seed: Dict[str, Any]):
        super().__init__(url)
        self.tag = tag
        self.seed = seed

    def _settings(self) -> Dict[str, Any]:
        settings = self.seed["worlds"][0]["settings"]
        if isinstance(settings, str):
            settings = json.loads(settings)
        return settings

    def settings_summary(self) -> str:
        try:
            settings = self._settings()
            code = self.seed["hash"]
            if self.tag == GameTag.SMZ3:
                parts = [
                    {"normal": "Normal", "hard": "Hard"}.get(settings["smlogic"], "Unknown Logic"),
                    {"randomized": "Randomized Morph", "early": "Early Morph", "original": "Vanilla Morph"}.get(
                        settings["morphlocation"], "Unknown Morph"
                    ),
                    {"randomized": "Randomized Sword", "early": "Early Sword", "uncle": "Uncle Sword"}.get(
                        settings["swordlocation"], "Unknown Sword"
                    ),
                ]
            else:
                parts = [
                    {"tournament": "Tournament", "casual": "Casual"}.get(settings["logic"], "Unknown Logic"),
                    {"split": "Major/Minor", "full": "Full"}.get(settings["placement"], "Unknown Item Placement"),
                ]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ExternalError(f"Could not read {self.tag} seed settings: {exc}") from exc
        parts.append(f"({code})")
        return " ".join(parts)


class VariaDescriptor(GameDescriptor):
    tag = GameTag.SMVARIA

    def __init__(self, url: str, params: Dict[str, Any]):
        super().__init__(url)
        self.params = params

    def settings_summary(self) -> str:
        try:
            parts = [
                f'"{self.params["preset"]}"',
                {"Major": "Major/Minor", "Full": "Full", "Chozo": "Chozo"}.get(
                    self.params["majorsSplit"], "Unknown Item Split"
                ),
            ]
            flags = [
                ("areaRandomization", "Area Rando"),
                ("bossRandomization", "Boss Rando"),
                ("doorsColorsRando", "Door Color Rando"),
            ]
            parts.extend(label for key, label in flags if self.params[key] == "on")
        except (KeyError, TypeError) as exc:
            raise ExternalError(f"Could not read VARIA seed settings: missing {exc}") from exc
        return " ".join(parts)


class Ff4feDescriptor(GameDescriptor):
    tag = GameTag.FF4FE

    def settings_summary(self) -> str:
        flags = parse_qs(urlparse(self.url or "").query).get("flags")
        return flags[0] if flags else "Free Enterprise"


class OtherDescriptor(GameDescriptor):
    def __init__(self, text: str):
        super().__init__(None)
        if len(text) > MAX_OTHER_GAME_TEXT:
            raise UnknownGame(f"Game description must be at most {MAX_OTHER_GAME_TEXT} characters.")
        self.text = text.strip()

    def settings_summary(self) -> str:
        return self.text


async def build_descriptor(text: str, seeds: SeedClient) -> GameDescriptor:
    """Detect the game behind ``text`` and fetch whatever its summary needs."""
    game = detect_game(text)
    url = text.strip()
    logger.debug("Detected %s for %r", game, url)
    if game == GameTag.ALTTPR:
        patch = await seeds.get_json(ALTTPR_PATCH_URL.format(url_slug(url)))
        return AlttprDescriptor(url, patch)
    if game in (GameTag.SMZ3, GameTag.SMTOTAL):
        template = SMZ3_SEED_URL if game == GameTag.SMZ3 else SMTOTAL_SEED_URL
        seed = await seeds.get_json(template.format(samus_link_guid(url_slug(url))))
        return SamusLinkDescriptor(game, url, seed)
    if game == GameTag.SMVARIA:
        params = await seeds.post_form_json(VARIA_PARAMS_URL, {"guid": url_slug(url)})
        # the endpoint returns the settings as a JSON document inside a JSON string
        if isinstance(params, str):
            try:
                params = json.loads(params)
            except ValueError as exc:
                raise ExternalError(f"VARIA returned unreadable settings: {exc}") from exc
        return VariaDescriptor(url, params)
    if game == GameTag.FF4FE:
        return Ff4feDescriptor(url)
    return OtherDescriptor(text)
