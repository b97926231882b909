"""Defines the chemical network composed of species, elements and the reactions between them."""

import copy
import dataclasses
from dataclasses import dataclass
from typing import Optional

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np

from .errors import NetworkError
from .reactions import MAX_REACTANTS, Equation, Reaction, build_equations
from .species import Element, Species


class JRateModel(eqx.Module):
    """Jax Jit compiled rate model of a network.

    Every rate-equation term of every species is flattened into one row of the
    term arrays. Terms with fewer than three reactants are padded with an
    unreachable species index, which gathers as unity and is dropped on scatter.
    """

    rate_constants: jnp.ndarray
    term_species: jnp.ndarray
    term_reactions: jnp.ndarray
    term_directions: jnp.ndarray
    term_reactants: jnp.ndarray
    n_species: int = eqx.field(static=True)

    def __init__(
        self,
        rate_constants,
        term_species,
        term_reactions,
        term_directions,
        term_reactants,
        n_species,
    ):
        self.rate_constants = rate_constants  # R
        self.term_species = term_species  # T
        self.term_reactions = term_reactions  # T
        self.term_directions = term_directions  # T
        self.term_reactants = term_reactants  # T, 3
        self.n_species = n_species

    def _reactant_densities(self, densities):
        # Out of range filler indices gather as 1.0
        return densities.at[self.term_reactants].get(mode="fill", fill_value=1.0)

    def _coefficients(self):
        return self.rate_constants[self.term_reactions] * self.term_directions

    @jax.jit
    def term_rates(self, densities):
        """Contribution of every term to its species' rate of change."""
        return self._coefficients() * jnp.prod(
            self._reactant_densities(densities), axis=1
        )

    @jax.jit
    def derivs(self, densities):
        """Rate of change of the number densities (dn/dt)."""
        return jax.ops.segment_sum(
            self.term_rates(densities), self.term_species, num_segments=self.n_species
        )

    @jax.jit
    def jacobi(self, densities):
        """Jacobian matrix d(dn_i/dt)/dn_j of the rate equations.

        Each reactant slot k of a term contributes the product of the rate
        coefficient and the densities in all other slots. A species filling
        two slots of one term therefore contributes twice.

        The dense matrix is a fresh XLA output on every call; no reusable
        Jacobian buffer is passed in by the caller.
        """
        factors = self._reactant_densities(densities)  # T, 3
        others = ~jnp.eye(MAX_REACTANTS, dtype=bool)  # [k, l] is True for l != k
        excluded = jnp.prod(
            jnp.where(others[None, :, :], factors[:, None, :], 1.0), axis=-1
        )  # T, 3
        contributions = self._coefficients()[:, None] * excluded
        rows = jnp.broadcast_to(self.term_species[:, None], self.term_reactants.shape)
        jacob = jnp.zeros((self.n_species, self.n_species), dtype=contributions.dtype)
        return jacob.at[rows, self.term_reactants].add(contributions, mode="drop")


@dataclass
class Network:
    """A full chemical network defined by species, elements and reactions.

    Species 0 must be the electron. Elements flagged as grains are the grain
    pseudo-elements; every species containing one of them is a charge state of
    that grain type.
    """

    species: list[Species]
    elements: list[Element]
    reactions: list[Reaction]
    equations: list[Equation]

    def __init__(  # noqa
        self,
        species: list[Species],
        elements: list[Element],
        reactions: Optional[list[Reaction]] = None,
        equations: Optional[list[Equation]] = None,
        n_reactions: Optional[int] = None,
    ) -> None:
        self.species = list(species)  # S
        self.reactions = list(reactions or [])  # R
        self._index = {sp.name: idx for idx, sp in enumerate(self.species)}
        if len(self._index) != len(self.species):
            raise NetworkError("Species names must be unique")

        self._validate_species(elements)
        self.composition = self.construct_composition(self.species, elements)  # S, E
        self.charges = np.array([sp.charge for sp in self.species], dtype=int)  # S
        self.elements = [
            dataclasses.replace(element, single=self._single_species(e, element))
            for e, element in enumerate(elements)
        ]
        self.grain_family, self.grain_neutral = self._grain_layout()

        if equations is None:
            self._validate_reactions()
            self.equations = build_equations(
                self.reactions, self._index, len(self.species)
            )
            self._n_reactions = len(self.reactions)
        else:
            if len(equations) != len(self.species):
                raise NetworkError(
                    f"Got {len(equations)} equations for {len(self.species)} species"
                )
            self.equations = list(equations)
            self._n_reactions = self._count_equation_reactions(n_reactions)

    def _validate_species(self, elements: list[Element]):
        if not self.species:
            raise NetworkError("A network needs at least the electron")
        first = self.species[0]
        if first.charge != -1 or first.composition:
            raise NetworkError(
                f"Species 0 must be the electron, got {first.name!r} with "
                f"charge {first.charge} and composition {first.composition}"
            )
        names = {element.name for element in elements}
        if len(names) != len(elements):
            raise NetworkError("Element names must be unique")
        for sp in self.species:
            unknown = set(sp.composition) - names
            if unknown:
                raise NetworkError(
                    f"Species {sp.name} contains unknown elements {sorted(unknown)}"
                )

    def _validate_reactions(self):
        for reaction in self.reactions:
            for name in reaction.reactants + reaction.products:
                if name not in self._index:
                    raise NetworkError(
                        f"Reaction {reaction} references unknown species {name!r}"
                    )

    def _count_equation_reactions(self, n_reactions):
        highest = -1
        for equation in self.equations:
            for term in equation.terms:
                if any(not 0 <= r < len(self.species) for r in term.reactants):
                    raise NetworkError(f"Term {term} references an unknown species")
                highest = max(highest, term.reaction)
        if n_reactions is None:
            return highest + 1
        if highest >= n_reactions:
            raise NetworkError(
                f"Term references reaction {highest} but only {n_reactions} exist"
            )
        return n_reactions

    def construct_composition(self, species: list[Species], elements: list[Element]):
        """Composition matrix (S species, E elements) of atom counts."""
        composition = np.zeros((len(species), len(elements)))
        for j, element in enumerate(elements):
            for i, sp in enumerate(species):
                composition[i, j] = sp.count(element.name)
        return composition

    def _single_species(self, e: int, element: Element) -> tuple[int, ...]:
        if element.single is not None:
            single = tuple(element.single)
            for idx in single:
                if not 0 < idx < len(self.species):
                    raise NetworkError(
                        f"Single-element species index {idx} of {element.name} out of range"
                    )
                if self.composition[idx, e] <= 0 or (self.composition[idx] > 0).sum() != 1:
                    raise NetworkError(
                        f"Species {self.species[idx].name} is not a single-element "
                        f"species of {element.name}"
                    )
        else:
            contains = self.composition > 0
            candidates = [
                i
                for i in range(1, len(self.species))
                if contains[i, e] and contains[i].sum() == 1
            ]
            # Neutral reservoirs first, they receive cross-element transfers
            single = tuple(sorted(candidates, key=lambda i: (self.charges[i] != 0, i)))
        if not element.grain and not single:
            raise NetworkError(f"Element {element.name} has no single-element species")
        return single

    def _grain_layout(self):
        grain_family = np.full(len(self.species), -1, dtype=int)
        grain_neutral = np.full(len(self.elements), -1, dtype=int)
        for e, element in enumerate(self.elements):
            if not element.grain:
                continue
            states = np.flatnonzero(self.composition[:, e] > 0)
            if np.any(grain_family[states] >= 0):
                raise NetworkError("A species may contain at most one grain type")
            grain_family[states] = e
            neutral = [i for i in states if self.charges[i] == 0]
            if len(neutral) != 1:
                raise NetworkError(
                    f"Grain {element.name} needs exactly one neutral state, "
                    f"found {len(neutral)}"
                )
            grain_neutral[e] = neutral[0]
        return grain_family, grain_neutral

    @property
    def species_names(self) -> list[str]:
        return [sp.name for sp in self.species]

    def species_count(self):
        """Get the number of species in the network."""
        return len(self.species)

    def reaction_count(self):
        """Get the number of reactions (rate constants) in the network."""
        return self._n_reactions

    def element_count(self):
        return len(self.elements)

    def get_index(self, species: str) -> int:
        """Get the index of a species in the network."""
        try:
            return self._index[species]
        except KeyError:
            raise NetworkError(f"Unknown species {species!r}") from None

    def element_index(self, element: str) -> int:
        for e, candidate in enumerate(self.elements):
            if candidate.name == element:
                return e
        raise NetworkError(f"Unknown element {element!r}")

    def is_grain(self) -> np.ndarray:
        """Boolean mask over elements, True for grain pseudo-elements."""
        return np.array([element.grain for element in self.elements], dtype=bool)

    def element_targets(self, reference_density: float = 1.0) -> np.ndarray:
        """Target element densities: abundance times the reference density."""
        return (
            np.array([element.abundance for element in self.elements])
            * reference_density
        )

    def with_abundances(self, abundances: dict[str, float]) -> "Network":
        """Copy of this network with new target abundances for some elements."""
        names = {element.name for element in self.elements}
        unknown = set(abundances) - names
        if unknown:
            raise NetworkError(f"Unknown elements {sorted(unknown)}")
        new = copy.copy(self)
        new.elements = [
            dataclasses.replace(element, abundance=abundances[element.name])
            if element.name in abundances
            else element
            for element in self.elements
        ]
        return new

    def construct_terms(self):
        """Flatten all equations into padded term arrays."""
        filler = len(self.species)
        rows = [
            (i, term)
            for i, equation in enumerate(self.equations)
            for term in equation.terms
        ]
        term_species = np.array([i for i, _ in rows], dtype=np.int32)
        term_reactions = np.array([term.reaction for _, term in rows], dtype=np.int32)
        term_directions = np.array(
            [term.direction for _, term in rows], dtype=np.float64
        )
        term_reactants = np.full((len(rows), MAX_REACTANTS), filler, dtype=np.int32)
        for t, (_, term) in enumerate(rows):
            term_reactants[t, : len(term.reactants)] = term.reactants
        return term_species, term_reactions, term_directions, term_reactants

    def get_ode(self, rate_constants) -> JRateModel:
        """Compile the rate model for a fixed vector of rate constants."""
        rate_constants = jnp.asarray(rate_constants, dtype=jnp.float64)
        if rate_constants.shape != (self.reaction_count(),):
            raise ValueError(
                f"Expected {self.reaction_count()} rate constants, "
                f"got shape {rate_constants.shape}"
            )
        term_species, term_reactions, term_directions, term_reactants = (
            self.construct_terms()
        )
        return JRateModel(
            rate_constants,
            jnp.asarray(term_species),
            jnp.asarray(term_reactions),
            jnp.asarray(term_directions),
            jnp.asarray(term_reactants),
            len(self.species),
        )
