"""
Narrator: deterministic message text for every game event.

No LLM: every line the crew reads is built here from game state, so the
TurnController only decides *what* happened and *who* hears it.
"""
from typing import Any, Dict, List

from models.game import GameSession, GameStatus, PlayerState, Role, minimum_players
from utils.ship_map import render_ship_map


# ── Role description cards (sent privately at game start) ─────────────────────

ROLE_DESCRIPTIONS: Dict[Role, str] = {
    Role.SAILOR: (
        "You are a loyal sailor! Your goal is to navigate the ship to *Bluewater Bay* "
        "(the blue area).\n\nWork with your fellow sailors to identify the pirates and "
        "cult members who want to sabotage your journey."
    ),
    Role.PIRATE: (
        "You are a pirate! Your goal is to navigate the ship to *Crimson Cove* "
        "(the red area).\n\nWork secretly with your fellow pirates. You'll receive a "
        "separate message with their identities."
    ),
    Role.CULT_LEADER: (
        "You are the Cult Leader! Your goal is to feed the ship to the *Kraken* (North).\n\n"
        "Keep your identity hidden and steer the crew northward."
    ),
    Role.CULTIST: (
        "You are a cultist! Your goal is to help the Cult Leader feed the ship to the "
        "*Kraken* (North)."
    ),
}

ROLE_TITLES: Dict[Role, str] = {
    Role.SAILOR: "SAILOR",
    Role.PIRATE: "PIRATE",
    Role.CULT_LEADER: "CULT LEADER",
    Role.CULTIST: "CULTIST",
}


def build_role_card(player: PlayerState, session: GameSession) -> str:
    """Private role card for one player."""
    if player.role is None:
        return "*Feed the Kraken* 🦑\n\nRole information not available."
    card = (
        f"*Feed the Kraken* 🦑\n\nYour role: *{ROLE_TITLES[player.role]}*\n\n"
        f"{ROLE_DESCRIPTIONS[player.role]}"
    )
    if player.role == Role.CULTIST and session.cult_leader:
        card += (
            f"\n\nThe Cult Leader is *{session.display_name(session.cult_leader)}*. "
            "Work together in secret!"
        )
    return card


def build_pirate_roster(pirates: List[PlayerState]) -> str:
    names = ", ".join(p.name for p in pirates)
    return (
        f"*Your fellow Pirates are:* {names}\n\n"
        "Work together to steer the ship to Crimson Cove (red area)!"
    )


def build_status(session: GameSession) -> str:
    """Status board for the status command."""
    player_list = "\n".join(
        f"• {p.name}{'' if p.alive else ' (eliminated)'}"
        for p in session.get_all_players()
    )

    if session.status == GameStatus.WAITING:
        return (
            f"*Feed the Kraken - Waiting for Players*\n\n"
            f"Players ({session.player_count()}):\n{player_list}\n\n"
            f"Host: {session.display_name(session.host_id)} can begin the game "
            f"(min {minimum_players()} players)"
        )

    if session.status == GameStatus.COMPLETED:
        result = session.check_win_condition()
        return (
            f"*Game Over!*\n\n{result.reason}\n*{result.winner.value.upper()}* win!\n\n"
            f"{render_ship_map(session.ship_position)}"
        )

    lines = [
        f"*Feed the Kraken - Turn {session.turn}*",
        "",
        f"*Phase:* {session.phase.value.replace('_', ' ').title()}",
        f"*Captain:* {session.display_name(session.captain)}",
    ]
    if session.has_navigation_team():
        lines.append(f"*Lieutenant:* {session.display_name(session.lieutenant)}")
        lines.append(f"*Navigator:* {session.display_name(session.navigator)}")
    lines += [
        f"*Ship Position:* ({session.ship_position.x}, {session.ship_position.y})",
        "",
        render_ship_map(session.ship_position),
        "",
        f"Players:\n{player_list}",
    ]
    return "\n".join(lines)


# ── Phase announcements ───────────────────────────────────────────────────────

def build_announcement(event_type: str, session: GameSession, data: Dict[str, Any]) -> str:
    """Convert a game event into the public line announced to the whole table."""
    name = session.display_name

    if event_type == "player_joined":
        return (
            f"{data['name']} has joined the game! ({session.player_count()} players)"
        )

    if event_type == "game_started":
        return (
            "*Feed the Kraken* 🦑 The game has begun! Check your direct messages for your role.\n\n"
            f"{render_ship_map(session.ship_position)}"
        )

    if event_type == "navigation_selection":
        reason = data.get("reason")
        prefix = f"{reason}\n\n" if reason else ""
        return (
            f"{prefix}*Turn {session.turn} - Navigation Selection*\n\n"
            f"{name(session.captain)} is the Captain and must select a Lieutenant and Navigator!"
        )

    if event_type == "team_selected":
        return (
            f"Navigation team selected!\n"
            f"Lieutenant: {name(session.lieutenant)}\n"
            f"Navigator: {name(session.navigator)}"
        )

    if event_type == "mutiny_started":
        eligible = data.get("eligible", 0)
        closes = data.get("deadline")
        closing = f"Voting closes at {closes:%H:%M:%S} UTC. " if closes else ""
        return (
            f"*Mutiny Phase* ⚔️\n\nAll crew members (except {name(session.captain)}) "
            "may vote for mutiny!\n\nPlace your guns in secret.\n\n"
            f"_{closing}Votes: 0/{eligible}_"
        )

    if event_type == "mutiny_progress":
        return f"_Vote recorded. Votes: {data['voted']}/{data['eligible']}_"

    if event_type == "mutiny_result":
        outcome = data["outcome"]
        lines = [
            "*Mutiny Results* ⚔️",
            "",
            f"Total guns used: {outcome.total_guns_used}/{outcome.total_crew_guns}",
            f"Threshold for success: {outcome.threshold}",
            "",
        ]
        used = [
            f"{name(pid)} used {guns} gun{'s' if guns > 1 else ''}"
            for pid, guns in outcome.votes.items() if guns > 0
        ]
        if used:
            lines += ["Votes cast:", *used, ""]
        if outcome.non_voters:
            lines += [f"_{len(outcome.non_voters)} crew member(s) did not vote in time_", ""]
        if outcome.succeeded:
            lines += [
                "🏴‍☠️ *MUTINY SUCCEEDS!*",
                "",
                f"{name(outcome.previous_captain)} has been overthrown!",
                f"The new Captain is {name(outcome.new_captain)}!",
            ]
        else:
            lines += [
                "✅ *Mutiny fails.*",
                "",
                f"{name(outcome.previous_captain)} remains Captain.",
            ]
        return "\n".join(lines)

    if event_type == "navigation_started":
        return (
            f"*Navigation Phase* 🧭\n\nCaptain: {name(session.captain)}\n"
            f"Lieutenant: {name(session.lieutenant)}\nNavigator: {name(session.navigator)}\n\n"
            f"{render_ship_map(session.ship_position)}\n\n"
            "The Captain and Lieutenant are choosing navigation options..."
        )

    if event_type == "proposals_in":
        return (
            "The Captain and Lieutenant have chosen their directions. "
            f"Waiting for {name(session.navigator)} to make the final choice..."
        )

    if event_type == "ship_moved":
        direction = data["direction"]
        return (
            f"{name(session.navigator)} (Navigator) chose {direction.label}!\n\n"
            f"{render_ship_map(session.ship_position)}"
        )

    if event_type == "discussion":
        return (
            "*Discussion Phase* 🗳️\n\nDiscuss what happened and decide on any actions!\n\n"
            f"{render_ship_map(session.ship_position)}"
        )

    if event_type == "player_eliminated":
        line = f"{name(data['player_id'])} has been eliminated!"
        if data.get("was_captain"):
            line += f" Command passes to {name(session.captain)}."
        return line

    if event_type == "game_over":
        result = data["result"]
        return (
            f"*Game Over!*\n\n{result.reason}\n\n*{result.winner.value.upper()}* win! 🎉\n\n"
            f"{render_ship_map(session.ship_position)}"
        )

    if event_type == "game_ended":
        return "The game has been ended by the host."

    # Generic fallback
    return f"[{event_type.upper()}] {data}"
