"""Bet matching and prize arithmetic.

This module is the only place that decides whether a bet wins and what it
pays. Settlement, claim decisions and diagnostics all call into it.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Callable, Dict, Iterable, Optional

from ..errors import InvalidCombination
from ..models.ticket import BetType

if TYPE_CHECKING:
    from ..models import Bet, PrizeRule


CENT = Decimal("0.01")
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class PrizeRuleSnapshot:
    """Immutable copy of the multipliers applied to one settlement.

    Attributes
    ----------
    standard : Decimal
        Multiplier for exact-order matches.
    rambolito : Decimal
        Multiplier for rambolito bets whose digits are all distinct.
    rambolito_double : Decimal
        Multiplier for rambolito bets containing a repeated digit.
    rule_id : Optional[int]
        Primary key of the :class:`~drawsettle.models.PrizeRule` row the
        snapshot was taken from, ``None`` for the built-in defaults.
    """

    standard: Decimal
    rambolito: Decimal
    rambolito_double: Decimal
    rule_id: Optional[int] = None

    @classmethod
    def from_model(cls, rule: Optional["PrizeRule"]) -> "PrizeRuleSnapshot":
        """Snapshot ``rule``; fall back to :data:`DEFAULT_PRIZE_RULES` for ``None``."""
        if rule is None:
            return DEFAULT_PRIZE_RULES
        return cls(
            standard=Decimal(rule.standard_multiplier),
            rambolito=Decimal(rule.rambolito_multiplier),
            rambolito_double=Decimal(rule.rambolito_double_multiplier),
            rule_id=rule.id,
        )


DEFAULT_PRIZE_RULES = PrizeRuleSnapshot(
    standard=Decimal("450"),
    rambolito=Decimal("75"),
    rambolito_double=Decimal("150"),
)


@dataclass(frozen=True)
class BetEvaluation:
    """Outcome of matching a single bet.

    Attributes
    ----------
    combination : str
        Normalized 3-digit bet combination.
    winning_number : str
        Normalized winning number it was compared against.
    bet_type : str
        ``"standard"`` or ``"rambolito"``.
    amount : Decimal
        Wagered amount.
    is_winner : bool
        Whether the bet matched.
    multiplier : Decimal
        Multiplier that applies if the bet wins (reported for losers too,
        so traces show what would have been paid).
    prize : Decimal
        ``amount * multiplier`` for winners, zero otherwise.
    is_double : bool
        ``True`` when the combination contains a repeated digit.
    """

    combination: str
    winning_number: str
    bet_type: str
    amount: Decimal
    is_winner: bool
    multiplier: Decimal
    prize: Decimal
    is_double: bool


@dataclass(frozen=True)
class TicketEvaluation:
    """Aggregate of every bet on a ticket."""

    winning_number: str
    bets: tuple[BetEvaluation, ...]
    rules: PrizeRuleSnapshot

    @property
    def is_winner(self) -> bool:
        return any(bet.is_winner for bet in self.bets)

    @property
    def prize(self) -> Decimal:
        return sum((bet.prize for bet in self.bets), ZERO)


MatchFunc = Callable[[str, str, PrizeRuleSnapshot], "tuple[bool, Decimal]"]


@dataclass(frozen=True)
class MatchRule:
    """How one bet type is matched and priced.

    Attributes
    ----------
    bet_type : str
        Registry key; matches ``Bet.bet_type``.
    matcher : Callable[[str, str, PrizeRuleSnapshot], tuple[bool, Decimal]]
        Receives the normalized combination, normalized winning number and
        rules; returns ``(is_winner, multiplier)``.
    description : Optional[str]
        Human-readable summary.
    """

    bet_type: str
    matcher: MatchFunc
    description: Optional[str] = None


class MatchRuleRegistry:
    """Mutable registry mapping bet types to match rules."""

    def __init__(self) -> None:
        self._rules: Dict[str, MatchRule] = {}

    def register(self, rule: MatchRule, *, replace: bool = False) -> None:
        """Register ``rule`` under its bet type.

        Raises :class:`ValueError` on a duplicate unless ``replace`` is set.
        """
        if not replace and rule.bet_type in self._rules:
            raise ValueError(f"Bet type '{rule.bet_type}' is already registered")
        self._rules[rule.bet_type] = rule

    def get(self, bet_type: str) -> MatchRule:
        try:
            return self._rules[bet_type]
        except KeyError as exc:
            raise InvalidCombination(f"Unknown bet type '{bet_type}'") from exc

    def available_bet_types(self) -> Dict[str, MatchRule]:
        return dict(self._rules)


def normalize_combination(value: object) -> str:
    """Strip whitespace and require exactly three ASCII digits.

    Raises
    ------
    InvalidCombination
        If ``value`` is not a string of exactly three digits after stripping.
    """

    if not isinstance(value, str):
        raise InvalidCombination(f"Combination must be a string, got {type(value).__name__}")
    normalized = "".join(value.split())
    if len(normalized) != 3 or not all(ch in "0123456789" for ch in normalized):
        raise InvalidCombination(f"'{value}' is not a 3-digit combination")
    return normalized


def has_repeated_digit(combination: str) -> bool:
    return len(set(combination)) < len(combination)


def _match_standard(
    combination: str, winning_number: str, rules: PrizeRuleSnapshot
) -> tuple[bool, Decimal]:
    return combination == winning_number, rules.standard


def _match_rambolito(
    combination: str, winning_number: str, rules: PrizeRuleSnapshot
) -> tuple[bool, Decimal]:
    # The double rate depends on the bet's own digits, not the winning number.
    multiplier = (
        rules.rambolito_double if has_repeated_digit(combination) else rules.rambolito
    )
    return sorted(combination) == sorted(winning_number), multiplier


DEFAULT_MATCH_RULES = MatchRuleRegistry()
DEFAULT_MATCH_RULES.register(
    MatchRule(
        bet_type=BetType.STANDARD,
        matcher=_match_standard,
        description="Wins only on an exact, order-sensitive match.",
    )
)
DEFAULT_MATCH_RULES.register(
    MatchRule(
        bet_type=BetType.RAMBOLITO,
        matcher=_match_rambolito,
        description=(
            "Wins when the digits are a permutation of the winning number; "
            "combinations with a repeated digit pay the double rate."
        ),
    )
)


def evaluate_bet(
    combination: str,
    bet_type: str,
    amount: Decimal,
    winning_number: str,
    rules: PrizeRuleSnapshot = DEFAULT_PRIZE_RULES,
    *,
    registry: Optional[MatchRuleRegistry] = None,
) -> BetEvaluation:
    """Decide whether one bet wins against ``winning_number`` and what it pays.

    Parameters
    ----------
    combination : str
        The bet's digits. Surrounding/inner whitespace is ignored.
    bet_type : str
        Key into the match-rule registry.
    amount : Decimal
        Wagered amount.
    winning_number : str
        Published winning number.
    rules : PrizeRuleSnapshot, default: DEFAULT_PRIZE_RULES
        Multipliers to apply.
    registry : Optional[MatchRuleRegistry], default: None
        Custom registry; the default one is used when omitted.

    Returns
    -------
    BetEvaluation
        Match flag, multiplier and prize (zero for losing bets).

    Raises
    ------
    InvalidCombination
        If either digit string is malformed or the bet type is unknown.
    """

    normalized_combo = normalize_combination(combination)
    normalized_winning = normalize_combination(winning_number)
    rule = (registry or DEFAULT_MATCH_RULES).get(bet_type)

    stake = Decimal(str(amount))
    is_winner, multiplier = rule.matcher(normalized_combo, normalized_winning, rules)
    prize = (stake * multiplier).quantize(CENT) if is_winner else ZERO
    return BetEvaluation(
        combination=normalized_combo,
        winning_number=normalized_winning,
        bet_type=bet_type,
        amount=stake,
        is_winner=is_winner,
        multiplier=Decimal(multiplier),
        prize=prize,
        is_double=has_repeated_digit(normalized_combo),
    )


def evaluate_bets(
    bets: Iterable["Bet"],
    winning_number: str,
    rules: PrizeRuleSnapshot = DEFAULT_PRIZE_RULES,
    *,
    registry: Optional[MatchRuleRegistry] = None,
) -> TicketEvaluation:
    """Evaluate every bet independently and aggregate them per ticket."""

    evaluations = tuple(
        evaluate_bet(
            bet.combination,
            bet.bet_type,
            bet.amount,
            winning_number,
            rules,
            registry=registry,
        )
        for bet in bets
    )
    return TicketEvaluation(
        winning_number=normalize_combination(winning_number),
        bets=evaluations,
        rules=rules,
    )


def validate_bet_for_sale(combination: str, bet_type: str, amount: Decimal) -> str:
    """Check a bet before it is sold and return the normalized combination.

    Triple numbers (``000`` to ``999`` with all digits equal) cannot be
    played as rambolito because they have only one permutation.
    """

    normalized = normalize_combination(combination)
    DEFAULT_MATCH_RULES.get(bet_type)
    if bet_type == BetType.RAMBOLITO and len(set(normalized)) == 1:
        raise InvalidCombination(
            f"Triple number '{normalized}' is not allowed for rambolito bets"
        )
    try:
        stake = Decimal(str(amount))
    except InvalidOperation as exc:
        raise InvalidCombination(f"Bet amount '{amount}' is not a number") from exc
    if not stake.is_finite() or stake <= 0:
        raise InvalidCombination(f"Bet amount must be positive, got {amount}")
    # Stored as Numeric(12, 2); anything finer would be rounded silently.
    if stake.normalize().as_tuple().exponent < -2:
        raise InvalidCombination(f"Bet amount {amount} has more than two decimal places")
    return normalized


__all__ = [
    "BetEvaluation",
    "DEFAULT_MATCH_RULES",
    "DEFAULT_PRIZE_RULES",
    "MatchRule",
    "MatchRuleRegistry",
    "PrizeRuleSnapshot",
    "TicketEvaluation",
    "evaluate_bet",
    "evaluate_bets",
    "has_repeated_digit",
    "normalize_combination",
    "validate_bet_for_sale",
]
