"""
Turn Controller: drives one game's phase machine.

Responsibilities:
- Advance the session through the turn cycle and dispatch phase handlers
- Own the ephemeral rounds (team selection, mutiny, navigation, discussion)
- Resume on callback events (PlayerAction / FormSubmission) and timers
- Report rule violations privately to the actor, without mutating anything

Phase handlers never block: they notify, optionally schedule a timer, and
return. The game moves on when the next event arrives.

Concurrency: `lock` serializes every event for this session. A timer task
drops its own handle before taking the lock, then re-checks the phase
instance, so a deadline and an eager resolution (last vote in) can never both
resolve the same phase. Cancelled or stale timers send nothing.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from config import settings
from agents.mutiny_resolver import MutinyRound, mutiny_resolver
from agents.narrator import (
    build_announcement,
    build_pirate_roster,
    build_role_card,
    build_status,
)
from agents.navigation_coordinator import (
    NavigationRound,
    Proposer,
    navigation_coordinator,
)
from models.errors import (
    AlreadyVoted,
    CaptainCannotVote,
    CrewTooSmall,
    GameError,
    GameOver,
    IncompleteSelection,
    InvalidChoice,
    InvalidCrewmate,
    NotCaptain,
    NotEligible,
    NotHost,
    NotNavigationProposer,
    NotNavigator,
    StalePrompt,
    WrongPhase,
)
from models.game import (
    ChoiceOption,
    Correlation,
    Direction,
    FormField,
    FormSubmission,
    GameSession,
    GameStatus,
    MIN_CREW_TO_SAIL,
    PlayerAction,
    Prompt,
    Role,
    WinResult,
)
from models.phases import Phase, Transition
from services.notifier import GuardedNotifier, Notifier
from utils.ship_map import render_ship_map

logger = logging.getLogger(__name__)

# Phase in which each prompt can be answered.
PROMPT_PHASES: Dict[Prompt, Phase] = {
    Prompt.SELECT_LIEUTENANT: Phase.NAVIGATION_SELECTION,
    Prompt.SELECT_NAVIGATOR: Phase.NAVIGATION_SELECTION,
    Prompt.CONFIRM_TEAM: Phase.NAVIGATION_SELECTION,
    Prompt.MUTINY_VOTE: Phase.MUTINY,
    Prompt.NAV_PROPOSAL: Phase.NAVIGATION,
    Prompt.NAV_COMMIT: Phase.NAVIGATION,
    Prompt.END_DISCUSSION: Phase.VOTING,
}


class TurnController:

    def __init__(
        self,
        session: GameSession,
        notifier: Notifier,
        mutiny_timeout: Optional[float] = None,
        discussion_timeout: Optional[float] = None,
        remutiny_after_reselection: Optional[bool] = None,
        on_finished: Optional[Callable[[str], None]] = None,
    ):
        self.session = session
        self.notifier = notifier if isinstance(notifier, GuardedNotifier) else GuardedNotifier(notifier)
        self.mutiny_timeout = (
            settings.mutiny_timeout_seconds if mutiny_timeout is None else mutiny_timeout
        )
        self.discussion_timeout = (
            settings.discussion_timeout_seconds if discussion_timeout is None else discussion_timeout
        )
        self.remutiny_after_reselection = (
            settings.remutiny_after_reselection
            if remutiny_after_reselection is None else remutiny_after_reselection
        )
        self.on_finished = on_finished

        self.lock = asyncio.Lock()
        self.phase_instance = 0
        self.stopped = False

        self.mutiny_round: Optional[MutinyRound] = None
        self.navigation_round: Optional[NavigationRound] = None
        self.selected_lieutenant: Optional[str] = None
        self.selected_navigator: Optional[str] = None
        self.discussion_open = False
        # True between a successful mutiny and the new captain's team confirmation.
        self.reselecting_after_mutiny = False

        self._timer: Optional[asyncio.Task] = None

    @property
    def session_id(self) -> str:
        return self.session.id

    # ── Lobby ──────────────────────────────────────────────────────────────────

    async def add_player(self, player_id: str, name: str) -> int:
        count = self.session.add_player(player_id, name)
        logger.info(f"[{self.session_id}] {player_id} ({name}) joined, {count} players")
        await self.notifier.announce(
            self.session_id,
            build_announcement("player_joined", self.session, {"name": name}),
        )
        return count

    async def begin(self, requester_id: str) -> None:
        """Host starts the game: roles are dealt, role cards sent, first turn begins."""
        if not self.session.is_host(requester_id):
            raise NotHost("Only the host can start the game!")
        self.session.start()
        logger.info(
            f"[{self.session_id}] Game started with {self.session.player_count()} players, "
            f"initial captain {self.session.captain}"
        )
        await self._send_role_cards()
        await self.notifier.announce(
            self.session_id, build_announcement("game_started", self.session, {})
        )
        await self.start_turn()

    async def _send_role_cards(self) -> None:
        players = self.session.get_all_players()
        for player in players:
            await self.notifier.direct(player.id, build_role_card(player, self.session))

        # Pirates know each other
        pirates = [p for p in players if p.role == Role.PIRATE]
        if pirates:
            roster = build_pirate_roster(pirates)
            for pirate in pirates:
                await self.notifier.direct(pirate.id, roster)

    # ── Turn loop ──────────────────────────────────────────────────────────────

    async def start_turn(self) -> None:
        """
        Advance to the next phase and run its handler.
        Leaving VOTING with a navigation team still in place skips selection
        and goes straight to MUTINY, unless the captain rotation left that
        team invalid, in which case it is disbanded and re-selected.
        """
        self._ensure_running()
        reason = None
        if self.session.phase == Phase.VOTING and self.session.has_navigation_team():
            self.session.apply_transition(Transition.NEW_TURN_TEAM_KEPT)
            if not self.session.navigation_team_is_valid():
                logger.info(f"[{self.session_id}] Navigation team no longer valid, re-selecting")
                self.session.clear_navigation_team()
                self.session.apply_transition(Transition.TEAM_DISBANDED)
                reason = "The navigation team has been disbanded."
        else:
            self.session.next_phase()
        logger.info(
            f"[{self.session_id}] Turn {self.session.turn} → {self.session.phase.value} "
            f"(captain {self.session.captain})"
        )
        await self.execute_phase(reason)

    async def execute_phase(self, reason: Optional[str] = None) -> None:
        self.phase_instance += 1
        self._cancel_timer()
        phase = self.session.phase
        if phase == Phase.NAVIGATION_SELECTION:
            await self._navigation_selection_phase(reason)
        elif phase == Phase.MUTINY:
            await self._mutiny_phase()
        elif phase == Phase.NAVIGATION:
            await self._navigation_phase()
        elif phase == Phase.VOTING:
            await self._voting_phase()

    async def end_turn(self) -> None:
        """Finish the game on a win, otherwise start the next turn."""
        self._ensure_running()
        result = self.session.check_win_condition()
        if result.winner:
            await self._finish(result)
        else:
            await self.start_turn()

    async def _finish(self, result: WinResult) -> None:
        self._cancel_timer()
        self.session.finish(result)
        self.mutiny_round = None
        self.navigation_round = None
        self.discussion_open = False
        logger.info(f"[{self.session_id}] Game over, winner: {result.winner.value}")
        await self.notifier.announce(
            self.session_id,
            build_announcement("game_over", self.session, {"result": result}),
        )
        if self.on_finished:
            self.on_finished(self.session_id)

    def _ensure_running(self) -> None:
        if self.stopped or self.session.status == GameStatus.COMPLETED:
            raise GameOver()

    # ── Timers ─────────────────────────────────────────────────────────────────

    def _schedule(self, delay: float, resolve: Callable[[], Awaitable[None]]) -> None:
        self._cancel_timer()
        self._timer = asyncio.create_task(
            self._fire_after(delay, self.phase_instance, resolve)
        )

    async def _fire_after(
        self, delay: float, instance: int, resolve: Callable[[], Awaitable[None]]
    ) -> None:
        await asyncio.sleep(delay)
        async with self.lock:
            if self._timer is asyncio.current_task():
                self._timer = None
            if self.stopped or instance != self.phase_instance:
                return
            logger.info(f"[{self.session_id}] Timer fired for {self.session.phase.value}")
            try:
                await resolve()
            except GameError as exc:
                logger.warning(f"[{self.session_id}] Timed resolution rejected: {exc.message}")
            except Exception:
                logger.exception(f"[{self.session_id}] Timed resolution failed")

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    def _token(self, prompt: Prompt) -> str:
        return Correlation(
            session_id=self.session_id, prompt=prompt, instance=self.phase_instance
        ).encode()

    # ── NAVIGATION_SELECTION ───────────────────────────────────────────────────

    async def _navigation_selection_phase(self, reason: Optional[str] = None) -> None:
        self.session.clear_navigation_team()
        self.selected_lieutenant = None
        self.selected_navigator = None

        captain = self.session.captain
        await self.notifier.announce(
            self.session_id,
            build_announcement("navigation_selection", self.session, {"reason": reason}),
        )
        if captain is None:
            logger.warning(f"[{self.session_id}] No captain to pick a navigation team")
            return

        options = [
            ChoiceOption(value=p.id, label=p.name)
            for p in self.session.get_alive_players()
            if p.id != captain
        ]
        await self.notifier.prompt_choice(
            captain, options, self._token(Prompt.SELECT_LIEUTENANT), "*Select Lieutenant:*"
        )
        await self.notifier.prompt_choice(
            captain, options, self._token(Prompt.SELECT_NAVIGATOR), "*Select Navigator:*"
        )
        await self.notifier.prompt_choice(
            captain,
            [ChoiceOption(value="confirm", label="Confirm Navigation Team")],
            self._token(Prompt.CONFIRM_TEAM),
            "Confirm once both posts are filled.",
        )

    async def _on_select_crewmate(self, user_id: str, candidate_id: Any, post: str) -> None:
        if user_id != self.session.captain:
            raise NotCaptain("Only the Captain can pick the navigation team!")
        candidate = self.session.require_player(str(candidate_id))
        if not candidate.alive or candidate.id == self.session.captain:
            raise InvalidCrewmate(f"{candidate.name} cannot serve as {post.title()}.")
        if post == "lieutenant":
            self.selected_lieutenant = candidate.id
        else:
            self.selected_navigator = candidate.id
        await self.notifier.notify_privately(
            self.session_id, user_id, f"{post.title()} selection: {candidate.name}"
        )

    async def _on_confirm_team(self, user_id: str) -> None:
        if user_id != self.session.captain:
            raise NotCaptain("Only the Captain can confirm the navigation team!")
        if not self.selected_lieutenant or not self.selected_navigator:
            raise IncompleteSelection()
        self.session.set_navigation_team(self.selected_lieutenant, self.selected_navigator)
        logger.info(
            f"[{self.session_id}] Team confirmed: lieutenant {self.session.lieutenant}, "
            f"navigator {self.session.navigator}"
        )
        await self.notifier.announce(
            self.session_id, build_announcement("team_selected", self.session, {})
        )

        if self.reselecting_after_mutiny and not self.remutiny_after_reselection:
            self.session.apply_transition(Transition.TEAM_CONFIRMED_SKIP_MUTINY)
        else:
            self.session.apply_transition(Transition.TEAM_CONFIRMED)
        self.reselecting_after_mutiny = False
        await self.execute_phase()

    # ── MUTINY ─────────────────────────────────────────────────────────────────

    async def _mutiny_phase(self) -> None:
        mutiny = mutiny_resolver.open_round(self.session, self.phase_instance, self.mutiny_timeout)
        self.mutiny_round = mutiny
        await self.notifier.announce(
            self.session_id,
            build_announcement(
                "mutiny_started",
                self.session,
                {"eligible": len(mutiny.eligible), "deadline": mutiny.deadline},
            ),
        )
        if not mutiny.eligible:
            await self._resolve_mutiny()
            return

        for player in self.session.get_alive_players():
            if player.id in mutiny.eligible:
                await self._send_mutiny_form(player.id)
        self._schedule(self.mutiny_timeout, self._resolve_mutiny)

    async def _send_mutiny_form(self, user_id: str) -> None:
        player = self.session.require_player(user_id)
        await self.notifier.prompt_form(
            user_id,
            [FormField(name="guns", label="Number of Guns", min_value=0, max_value=player.guns)],
            self._token(Prompt.MUTINY_VOTE),
            f"You have *{player.guns}* guns available.\n\n"
            "How many guns do you want to use for the mutiny?",
        )

    async def _on_open_mutiny_form(self, user_id: str) -> None:
        """The 'cast mutiny vote' button: re-send the form to an eligible voter."""
        mutiny = self._require_mutiny()
        if user_id == self.session.captain:
            raise CaptainCannotVote()
        if user_id not in mutiny.eligible:
            raise NotEligible()
        if user_id in mutiny.votes:
            raise AlreadyVoted()
        await self._send_mutiny_form(user_id)

    async def _on_mutiny_vote(self, user_id: str, values: Dict[str, Any]) -> None:
        mutiny = self._require_mutiny()
        all_in = mutiny_resolver.submit(mutiny, self.session, user_id, values.get("guns"))
        guns = mutiny.votes[user_id]
        await self.notifier.notify_privately(
            self.session_id, user_id, f"Your mutiny vote has been recorded: {guns} guns"
        )
        if all_in:
            await self._resolve_mutiny()
        else:
            await self.notifier.announce(
                self.session_id,
                build_announcement(
                    "mutiny_progress",
                    self.session,
                    {"voted": len(mutiny.votes), "eligible": len(mutiny.eligible)},
                ),
            )

    def _require_mutiny(self) -> MutinyRound:
        if self.mutiny_round is None or self.session.phase != Phase.MUTINY:
            raise WrongPhase("There is no mutiny vote right now.")
        return self.mutiny_round

    async def _resolve_mutiny(self) -> None:
        """Resolution entry point; runs at most once per mutiny round."""
        mutiny = self.mutiny_round
        if mutiny is None or mutiny.resolved or mutiny.instance != self.phase_instance:
            return
        self._cancel_timer()
        outcome = mutiny_resolver.resolve(mutiny, self.session)
        self.mutiny_round = None

        await self.notifier.announce(
            self.session_id,
            build_announcement("mutiny_result", self.session, {"outcome": outcome}),
        )
        if outcome.succeeded:
            self.reselecting_after_mutiny = True
        await self.execute_phase()

    # ── NAVIGATION ─────────────────────────────────────────────────────────────

    async def _navigation_phase(self) -> None:
        nav = navigation_coordinator.open_round(self.phase_instance)
        self.navigation_round = nav
        await self.notifier.announce(
            self.session_id, build_announcement("navigation_started", self.session, {})
        )
        seats = {
            Proposer.CAPTAIN: self.session.captain,
            Proposer.LIEUTENANT: self.session.lieutenant,
        }
        ship_map = render_ship_map(self.session.ship_position)
        for proposer, user_id in seats.items():
            options = [ChoiceOption(value=d.value, label=d.label) for d in nav.offers[proposer]]
            await self.notifier.prompt_choice(
                user_id,
                options,
                self._token(Prompt.NAV_PROPOSAL),
                f"*Choose a navigation option for the Navigator:*\n\n{ship_map}\n\nSelect a direction:",
            )

    def _require_navigation(self) -> NavigationRound:
        if self.navigation_round is None or self.session.phase != Phase.NAVIGATION:
            raise WrongPhase("The ship is not being navigated right now.")
        return self.navigation_round

    async def _on_nav_proposal(self, user_id: str, value: Any) -> None:
        nav = self._require_navigation()
        if user_id == self.session.captain:
            proposer = Proposer.CAPTAIN
        elif user_id == self.session.lieutenant:
            proposer = Proposer.LIEUTENANT
        else:
            raise NotNavigationProposer()
        try:
            direction = Direction(value)
        except ValueError:
            raise InvalidChoice()

        both_in = navigation_coordinator.propose(nav, proposer, direction)
        await self.notifier.notify_privately(
            self.session_id, user_id, f"Your choice has been recorded: {direction.label}"
        )
        if both_in:
            await self.notifier.prompt_choice(
                self.session.navigator,
                navigation_coordinator.options_for_navigator(nav),
                self._token(Prompt.NAV_COMMIT),
                "*Choose one of the two navigation options:*\n\n"
                f"{render_ship_map(self.session.ship_position)}",
            )
            await self.notifier.announce(
                self.session_id, build_announcement("proposals_in", self.session, {})
            )

    async def _on_nav_commit(self, user_id: str, value: Any) -> None:
        nav = self._require_navigation()
        if user_id != self.session.navigator:
            raise NotNavigator()
        direction = navigation_coordinator.commit(nav, self.session, str(value))
        self.navigation_round = None
        await self.notifier.announce(
            self.session_id,
            build_announcement("ship_moved", self.session, {"direction": direction}),
        )

        result = self.session.check_win_condition()
        if result.winner:
            await self._finish(result)
            return
        self.session.apply_transition(Transition.SHIP_MOVED)
        await self.execute_phase()

    # ── VOTING (discussion) ────────────────────────────────────────────────────

    async def _voting_phase(self) -> None:
        self.discussion_open = True
        await self.notifier.announce(
            self.session_id, build_announcement("discussion", self.session, {})
        )
        await self.notifier.prompt_choice(
            self.session.captain,
            [ChoiceOption(value="end", label="End Discussion")],
            self._token(Prompt.END_DISCUSSION),
            "End the discussion when the crew is ready.",
        )
        self._schedule(self.discussion_timeout, self._close_discussion)

    async def _close_discussion(self) -> None:
        """Resolution entry point for the discussion; runs at most once per phase instance."""
        if not self.discussion_open or self.session.phase != Phase.VOTING:
            return
        self.discussion_open = False
        self._cancel_timer()
        await self.end_turn()

    async def _on_end_discussion(self, user_id: str) -> None:
        if user_id not in (self.session.captain, self.session.host_id):
            raise NotCaptain("Only the Captain or the host can end the discussion!")
        await self._close_discussion()

    # ── Host commands ──────────────────────────────────────────────────────────

    async def eliminate(self, requester_id: str, target_id: str) -> None:
        """Host removes a player from play. Only during the discussion."""
        if not self.session.is_host(requester_id):
            raise NotHost("Only the host can eliminate a player!")
        self._ensure_running()
        if self.session.phase != Phase.VOTING:
            raise WrongPhase("Players can only be eliminated during the discussion.")
        target = self.session.players.get(target_id)
        if target is not None and target.alive:
            if len(self.session.get_alive_players()) - 1 < MIN_CREW_TO_SAIL:
                raise CrewTooSmall()
        was_captain = self.session.captain == target_id
        self.session.eliminate_player(target_id)
        logger.info(f"[{self.session_id}] {target_id} eliminated (captain={was_captain})")
        await self.notifier.announce(
            self.session_id,
            build_announcement(
                "player_eliminated",
                self.session,
                {"player_id": target_id, "was_captain": was_captain},
            ),
        )

    def status_text(self) -> str:
        return build_status(self.session)

    def stop(self) -> None:
        """Halt the controller; pending timers are cancelled and never notify."""
        self.stopped = True
        self._cancel_timer()
        self.mutiny_round = None
        self.navigation_round = None
        self.discussion_open = False

    # ── Callback events ────────────────────────────────────────────────────────

    def _check_prompt(self, correlation: Correlation) -> None:
        self._ensure_running()
        if correlation.session_id != self.session_id or correlation.instance != self.phase_instance:
            raise StalePrompt()
        if PROMPT_PHASES[correlation.prompt] != self.session.phase:
            raise WrongPhase()

    async def handle_action(self, action: PlayerAction) -> bool:
        """
        Apply one interactive action. Returns True when accepted; rejections are
        reported privately to the actor and leave the game untouched.
        """
        try:
            correlation = Correlation.decode(action.correlation)
            self._check_prompt(correlation)
            user_id = action.user_id
            value = action.payload.get("value")
            prompt = correlation.prompt

            if prompt == Prompt.SELECT_LIEUTENANT:
                await self._on_select_crewmate(user_id, value, "lieutenant")
            elif prompt == Prompt.SELECT_NAVIGATOR:
                await self._on_select_crewmate(user_id, value, "navigator")
            elif prompt == Prompt.CONFIRM_TEAM:
                await self._on_confirm_team(user_id)
            elif prompt == Prompt.MUTINY_VOTE:
                await self._on_open_mutiny_form(user_id)
            elif prompt == Prompt.NAV_PROPOSAL:
                await self._on_nav_proposal(user_id, value)
            elif prompt == Prompt.NAV_COMMIT:
                await self._on_nav_commit(user_id, value)
            elif prompt == Prompt.END_DISCUSSION:
                await self._on_end_discussion(user_id)
            return True
        except GameError as exc:
            await self._reject(action.user_id, exc)
            return False

    async def handle_form(self, submission: FormSubmission) -> bool:
        """Apply one form submission (the secret mutiny vote)."""
        try:
            correlation = Correlation.decode(submission.correlation)
            self._check_prompt(correlation)
            if correlation.prompt != Prompt.MUTINY_VOTE:
                raise StalePrompt("That prompt does not take a form.")
            await self._on_mutiny_vote(submission.user_id, submission.values)
            return True
        except GameError as exc:
            await self._reject(submission.user_id, exc)
            return False

    async def _reject(self, user_id: str, exc: GameError) -> None:
        logger.info(f"[{self.session_id}] Rejected {exc.code} from {user_id}: {exc.message}")
        await self.notifier.notify_error(self.session_id, user_id, exc.code, exc.message)

