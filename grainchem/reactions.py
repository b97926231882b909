"""Defines schemas for reactions and the rate-equation terms built from them."""

from dataclasses import dataclass, field

MAX_REACTANTS = 3


@dataclass
class Reaction:
    """Dataclass for individual reactions.

    The rate constant of a reaction is not stored here: it is looked up by the
    reaction's position in the network (``rate_constants[index]``).
    """

    reactants: list[str]
    products: list[str]
    label: str = ""

    def __post_init__(self):  # noqa
        self.reactants = list(self.reactants)
        self.products = list(self.products)
        if not 1 <= len(self.reactants) <= MAX_REACTANTS:
            raise ValueError(
                f"Reaction {self} has {len(self.reactants)} reactants, "
                f"expected 1 to {MAX_REACTANTS}"
            )
        if not self.label:
            self.label = str(self)

    @property
    def molecularity(self) -> int:
        return len(self.reactants)

    def __str__(self):
        return f"{' + '.join(self.reactants)} -> {' + '.join(self.products)}"

    def __repr__(self):
        return f"Reaction({self.reactants}, {self.products})"


@dataclass(frozen=True)
class ReactionTerm:
    """One product term of a species' rate equation.

    The term contributes ``K[reaction] * direction * prod(n[r] for r in reactants)``.
    """

    reaction: int
    direction: int
    reactants: tuple[int, ...]

    def __post_init__(self):  # noqa
        if self.direction not in (-1, 1):
            raise ValueError(f"direction must be +1 or -1, got {self.direction}")
        if not 1 <= len(self.reactants) <= MAX_REACTANTS:
            raise ValueError(
                f"A term needs 1 to {MAX_REACTANTS} reactants, got {len(self.reactants)}"
            )


@dataclass
class Equation:
    """The terms summing to the net rate of change of one species."""

    terms: list[ReactionTerm] = field(default_factory=list)

    def __len__(self):
        return len(self.terms)

    def add(self, term: ReactionTerm):
        self.terms.append(term)


def build_equations(
    reactions: list[Reaction], index: dict[str, int], n_species: int
) -> list[Equation]:
    """Build one equation per species from a list of reactions.

    Every reactant occurrence adds a destruction term and every product
    occurrence a production term, both multiplying the reaction's reactant
    densities. ``H + H -> H2`` therefore destroys two H per event.
    """
    equations = [Equation() for _ in range(n_species)]
    for j, reaction in enumerate(reactions):
        reactants = tuple(index[name] for name in reaction.reactants)
        for name in reaction.reactants:
            equations[index[name]].add(ReactionTerm(j, -1, reactants))
        for name in reaction.products:
            equations[index[name]].add(ReactionTerm(j, 1, reactants))
    return equations
