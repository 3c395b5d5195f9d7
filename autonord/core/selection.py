# ==============================================================================
# FILE: core/selection.py
# PURPOSE: Menu flow that picks a country/city/group and drives the VPN client.
# ==============================================================================
import logging
import random
from typing import Callable, List, Optional, Sequence

from rich.console import Console

from .data_models import SelectionState
from .vpn_client import VpnClient

logger = logging.getLogger(__name__)

PREFIX = "[red]AutoNord:[/red]"
ROULETTE = "[red on bright_yellow]1337-Roulette[/]"

MENU = (
    ("1", "Select by Country"),
    ("2", "Select by City (you'll select the country first)"),
    ("3", "Select by Group"),
    ("4", "1337-Roulette"),
    ("5", "Disconnect"),
)


PLURALS = {"country": "countries", "city": "cities", "group": "groups"}


class InvalidSelectionIndex(ValueError):
    pass


class SelectionAborted(Exception):
    """The user gave up, ran out of attempts, or there was nothing to choose from."""


def resolve_choice(raw: str, candidates: Sequence[str], rng: random.Random = random) -> str:
    """
    Maps the user's answer to a candidate: blank picks uniformly at random,
    otherwise it must be a 1-based index within range.
    """
    if not candidates:
        raise SelectionAborted("Nothing to choose from")
    raw = raw.strip()
    if not raw:
        return candidates[rng.randrange(len(candidates))]
    try:
        index = int(raw)
    except ValueError:
        raise InvalidSelectionIndex(f"{raw!r} is not a number") from None
    if not 1 <= index <= len(candidates):
        raise InvalidSelectionIndex(f"{index} is not between 1 and {len(candidates)}")
    return candidates[index - 1]


class SelectionFlow:
    def __init__(self, vpn: VpnClient, console: Console,
                 input_fn: Optional[Callable[[str], str]] = None,
                 rng: Optional[random.Random] = None,
                 max_attempts: int = 5) -> None:
        self.vpn = vpn
        self.console = console
        self.input = input_fn or console.input
        self.rng = rng or random.Random()
        self.max_attempts = max_attempts

    def _ask(self, prompt: str) -> str:
        try:
            return self.input(prompt)
        except (EOFError, KeyboardInterrupt):
            raise SelectionAborted("Selection cancelled") from None

    def prompt_choice(self, label: str, candidates: List[str]) -> str:
        if not candidates:
            raise SelectionAborted(f"No {PLURALS.get(label, label + 's')} available")
        self.console.print(f"{PREFIX} Please select a {label} by number (leave empty for random selection):")
        for i, name in enumerate(candidates, 1):
            self.console.print(f"{i}) {name}", highlight=False)

        for _ in range(self.max_attempts):
            raw = self._ask(f"{label.capitalize()} number (RETURN for random): ")
            try:
                choice = resolve_choice(raw, candidates, self.rng)
            except InvalidSelectionIndex as e:
                self.console.print(f"{PREFIX} Invalid selection ({e}). Please try again.")
                continue
            verb = "Randomly selected" if not raw.strip() else "You selected"
            self.console.print(f"{PREFIX} {verb} {choice}.")
            return choice
        raise SelectionAborted(f"Too many invalid {label} selections")

    def select_country(self) -> str:
        self.console.print(f"{PREFIX} Retrieving list of countries...")
        return self.prompt_choice("country", self.vpn.countries())

    def select_city(self, country: str) -> str:
        self.console.print(f"{PREFIX} Retrieving list of cities in {country}...")
        return self.prompt_choice("city", self.vpn.cities(country))

    def select_group(self) -> str:
        self.console.print(f"{PREFIX} Retrieving list of groups...")
        return self.prompt_choice("group", self.vpn.groups())

    def roulette(self) -> SelectionState:
        self.console.print(f"{PREFIX} {ROULETTE} mode activated! Selecting a random country and city...")
        countries = self.vpn.countries()
        if not countries:
            raise SelectionAborted("No countries available")
        country = self.rng.choice(countries)
        self.console.print(f"{PREFIX} {ROULETTE} Randomly selected country: {country}.")

        cities = self.vpn.cities(country)
        city = None
        if cities:
            city = self.rng.choice(cities)
            self.console.print(f"{PREFIX} {ROULETTE} Randomly selected city: {city}.")
        else:
            self.console.print(f"{PREFIX} {ROULETTE} No cities available for {country}. "
                               "Only country will be used for connection.")
        return SelectionState(country=country, city=city, roulette_enabled=True)

    def _menu_choice(self) -> str:
        self.console.print("AutoNord Connection Script", style="bold")
        for key, text in MENU:
            self.console.print(f"{key}) {text}", highlight=False)
        valid = {key for key, _ in MENU}
        for _ in range(self.max_attempts):
            choice = self._ask("Enter your choice or press 'Enter' to connect to the best server: ").strip()
            if not choice or choice in valid:
                return choice
            self.console.print(f"{PREFIX} Invalid choice {choice!r}. Please try again.")
        raise SelectionAborted("Too many invalid menu choices")

    def run(self) -> SelectionState:
        """Shows the menu, resolves the user's target and connects (or disconnects)."""
        choice = self._menu_choice()
        state = SelectionState()

        if choice == "1":
            state.country = self.select_country()
        elif choice == "2":
            state.country = self.select_country()
            state.city = self.select_city(state.country)
        elif choice == "3":
            state.group = self.select_group()
        elif choice == "4":
            state = self.roulette()
        elif choice == "5":
            self.console.print("Disconnecting...")
            self._show(self.vpn.disconnect())
            self.console.print("Disconnected.")
            return state
        else:
            self.console.print("Connecting to the best server...")

        logger.info("Selection: %s", state)
        if state.group:
            self._show(self.vpn.connect(state.group))
        else:
            self._show(self.vpn.connect(state.country, state.city))
        return state

    def _show(self, output: str) -> None:
        text = output.strip()
        if text:
            self.console.print(text, markup=False, highlight=False)
