"""
Canonical workflow types (``procurement_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines.  Requisitions and purchase
orders both declare their lifecycle as a ``Workflow`` table; the services
consult the table instead of branching on status strings.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions, and (when declared) are
  the only states without one.
* Every state is reachable from ``initial_state``.
* (from_state, action) pairs are unique, so a transition lookup is
  deterministic.

All of the above are checked in ``Workflow.__post_init__``: a malformed table
fails when its module is imported, never at request time.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A named precondition that must hold before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the state machine does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    A transition whose ``from_state`` equals ``to_state`` is an in-place
    modification (for example editing a draft).
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None

    @property
    def is_self_transition(self) -> bool:
        return self.from_state == self.to_state


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; validated at construction (see module docstring).
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        states = set(self.states)
        if len(states) != len(self.states):
            raise ValueError(f"Workflow {self.name}: duplicate states")
        if self.initial_state not in states:
            raise ValueError(
                f"Workflow {self.name}: initial state "
                f"{self.initial_state!r} is not a declared state"
            )
        for terminal in self.terminal_states:
            if terminal not in states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {terminal!r} "
                    f"is not a declared state"
                )

        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            for state in (t.from_state, t.to_state):
                if state not in states:
                    raise ValueError(
                        f"Workflow {self.name}: transition {t.action!r} "
                        f"references unknown state {state!r}"
                    )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state "
                    f"{t.from_state!r} has outgoing transition {t.action!r}"
                )
            key = (t.from_state, t.action)
            if key in seen:
                raise ValueError(
                    f"Workflow {self.name}: duplicate transition "
                    f"{t.action!r} from {t.from_state!r}"
                )
            seen.add(key)

        if self.terminal_states:
            dead_ends = {
                s for s in self.states
                if not any(t.from_state == s for t in self.transitions)
            }
            if dead_ends != set(self.terminal_states):
                raise ValueError(
                    f"Workflow {self.name}: states without outgoing "
                    f"transitions must be exactly the terminal states"
                )

        unreachable = states - self.reachable_states()
        if unreachable:
            raise ValueError(
                f"Workflow {self.name}: unreachable states {sorted(unreachable)}"
            )

    def reachable_states(self) -> set[str]:
        """States reachable from ``initial_state`` (inclusive)."""
        reached = {self.initial_state}
        frontier = [self.initial_state]
        while frontier:
            current = frontier.pop()
            for t in self.transitions:
                if t.from_state == current and t.to_state not in reached:
                    reached.add(t.to_state)
                    frontier.append(t.to_state)
        return reached

    def find_transition(self, from_state: str, action: str) -> Transition | None:
        """The transition for ``action`` out of ``from_state``, if legal."""
        for t in self.transitions:
            if t.from_state == from_state and t.action == action:
                return t
        return None

    def allowed_actions(self, from_state: str) -> tuple[str, ...]:
        return tuple(
            t.action for t in self.transitions if t.from_state == from_state
        )

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states
