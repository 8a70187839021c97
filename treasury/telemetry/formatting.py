"""Deterministic one-line rendering of rebalance actions.

The rendered line is part of the observable contract: the telemetry buffer
derives tag/title/detail from it, and the web console filters on it.

Format:
    [<Kind>] <title> - <detail>; tx <txRef|pending>[ <explorer url>]
"""

from __future__ import annotations

from typing import Callable, Optional

from treasury.telemetry.explorer import ExplorerLinks
from treasury.types import ActionKind, RebalanceAction, format_usdc


def _borrow(action: RebalanceAction) -> tuple[str, list[str]]:
    details = action.details
    parts = [f"for {details.get('depositor', 'unknown')}"]
    if details.get("strategy"):
        parts.append(f"strategy {details['strategy']}")
    return f"Borrowed {format_usdc(action.amount)} USDC on {action.venue}", parts


def _repay(action: RebalanceAction) -> tuple[str, list[str]]:
    parts = [f"for {action.details.get('depositor', 'unknown')}"]
    return f"Repaid {format_usdc(action.amount)} USDC on {action.venue}", parts


def _bridge(action: RebalanceAction) -> tuple[str, list[str]]:
    details = action.details
    source = details.get("from", action.venue)
    destination = details.get("to", "unknown")
    parts = []
    if details.get("protocol"):
        parts.append(f"via {details['protocol']}")
    if details.get("direction"):
        parts.append(str(details["direction"]))
    if details.get("depositor"):
        parts.append(f"for {details['depositor']}")
    return f"Bridged {format_usdc(action.amount)} USDC {source} -> {destination}", parts


def _deposit(action: RebalanceAction) -> tuple[str, list[str]]:
    details = action.details
    target = details.get("pool") or details.get("protocol") or action.venue
    parts = [f"on {action.venue}"]
    if details.get("depositor"):
        parts.append(f"for {details['depositor']}")
    if details.get("apy") is not None:
        parts.append(f"apy {float(details['apy']):.2f}%")
    return f"Deposited {format_usdc(action.amount)} USDC into {target}", parts


def _withdraw(action: RebalanceAction) -> tuple[str, list[str]]:
    details = action.details
    parts = []
    if details.get("depositor"):
        parts.append(f"for {details['depositor']}")
    if details.get("requested_at"):
        parts.append(f"requested at {details['requested_at']}")
    return f"Withdrew {format_usdc(action.amount)} USDC on {action.venue}", parts


def _order(action: RebalanceAction) -> tuple[str, list[str]]:
    details = action.details
    side = str(details.get("side", "market")).upper()
    parts = []
    if details.get("pool"):
        parts.append(f"pool {details['pool']}")
    return f"{side} order for {format_usdc(action.amount)} USDC on {action.venue}", parts


_FORMATTERS: dict[str, Callable[[RebalanceAction], tuple[str, list[str]]]] = {
    "borrow": _borrow,
    "repay": _repay,
    "bridge": _bridge,
    "deposit": _deposit,
    "withdraw": _withdraw,
    "order": _order,
}


def format_action(action: RebalanceAction, *, links: Optional[ExplorerLinks] = None) -> str:
    """Render an action as a single structured log line."""
    kind: ActionKind = action.kind
    formatter = _FORMATTERS.get(kind)
    if formatter is None:
        raise ValueError(f"Unknown action kind: {kind}")

    title, parts = formatter(action)
    parts.append(f"tx {action.tx_ref or 'pending'}")
    if action.details.get("mocked"):
        parts.append("mocked")

    line = f"[{kind.capitalize()}] {title} - {'; '.join(parts)}"
    url = (links or ExplorerLinks()).tx_url(action.venue, action.tx_ref)
    if url:
        line = f"{line} {url}"
    return line
