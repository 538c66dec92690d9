# swordfight/content/catalog.py
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp

from ..engine.errors import CharacterDataError, UnknownCharacter
from ..engine.models import Character, IMPOSSIBLE

logger = logging.getLogger(__name__)

CHARACTERS_DIR = Path(__file__).resolve().parent / "characters"


def validate_character(character: Character) -> List[str]:
    """
    Return a list of integrity problems, empty when the character is sound.

    Every own move needs a table row; every entry must name a known result or
    the impossible marker; the marker is only allowed where the defending move
    is not ours, or sits in a different range than the attacking move.
    """
    problems: List[str] = []
    own = {mv.id: mv for mv in character.moves}

    if character.first_move not in own:
        problems.append(f"firstMove {character.first_move} is not one of {character.slug}'s moves")

    for move_id in own:
        if move_id not in character.tables:
            problems.append(f"missing table row for own move {move_id}")

    for row_id, row in character.tables.items():
        attacker = own.get(row_id)
        for col_id, outcome in row.items():
            if outcome == IMPOSSIBLE:
                defender = own.get(col_id)
                if attacker is not None and defender is not None and attacker.range == defender.range:
                    problems.append(
                        f"impossible marker at {row_id}/{col_id} but both moves are {attacker.range}"
                    )
                continue
            if outcome not in character.results:
                problems.append(f"table {row_id}/{col_id} references unknown result {outcome}")
    return problems


def load_character_file(path: Path) -> Character:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise CharacterDataError(f"Character file not found: {path}") from exc
    except OSError as exc:
        raise CharacterDataError(f"Unable to read character file: {path}") from exc
    except json.JSONDecodeError as exc:
        raise CharacterDataError(f"Invalid JSON in {path}: {exc}") from exc
    return Character.from_dict(raw)


class BundledCatalog:
    """Characters shipped with the package, loaded and checked up front."""

    def __init__(self, directory: Optional[Path] = None, strict: bool = True):
        self.directory = Path(directory) if directory else CHARACTERS_DIR
        self._characters: Dict[str, Character] = {}
        for path in sorted(self.directory.glob("*.json")):
            character = load_character_file(path)
            problems = validate_character(character)
            if problems:
                for problem in problems:
                    logger.error("%s: %s", character.slug, problem)
                if strict:
                    raise CharacterDataError(f"{character.slug} failed validation: {problems[0]}")
            self._characters[character.slug] = character

    def get_character(self, slug: str) -> Character:
        try:
            return self._characters[slug]
        except KeyError:
            raise UnknownCharacter(f"Unknown character '{slug}'") from None

    def available_characters(self) -> List[str]:
        return sorted(self._characters)

    def raw(self, slug: str) -> Dict[str, Any]:
        return self.get_character(slug).to_dict()


class HttpCatalog:
    """Characters fetched from a relay's /characters endpoints, cached per slug."""

    def __init__(self, base_url: str, session: Optional[aiohttp.ClientSession] = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._cache: Dict[str, Character] = {}

    async def _get_json(self, path: str) -> Any:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        url = f"{self.base_url}{path}"
        async with self._session.get(url) as resp:
            if resp.status == 404:
                return None
            resp.raise_for_status()
            return await resp.json()

    async def get_character(self, slug: str) -> Character:
        if slug in self._cache:
            return self._cache[slug]
        try:
            raw = await self._get_json(f"/characters/{slug}.json")
        except aiohttp.ClientError as exc:
            raise CharacterDataError(f"Unable to fetch character '{slug}': {exc}") from exc
        if raw is None:
            raise UnknownCharacter(f"Unknown character '{slug}'")
        character = Character.from_dict(raw)
        problems = validate_character(character)
        for problem in problems:
            logger.warning("%s: %s", slug, problem)
        self._cache[slug] = character
        return character

    async def available_characters(self) -> List[str]:
        try:
            index = await self._get_json("/characters/index.json")
        except aiohttp.ClientError as exc:
            raise CharacterDataError(f"Unable to fetch character index: {exc}") from exc
        return [entry["slug"] if isinstance(entry, dict) else str(entry) for entry in (index or [])]

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
