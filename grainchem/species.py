"""Species and element definitions."""

from dataclasses import dataclass, field
from typing import Optional

ELECTRON = "e-"


@dataclass
class Species:
    """Dataclass for a single species.

    ``composition`` maps element (or grain) names to the number of atoms of
    that element in the species. The electron has an empty composition.
    """

    name: str
    charge: int = 0
    composition: dict[str, int] = field(default_factory=dict)

    def __post_init__(self):  # noqa
        for element, count in self.composition.items():
            if count < 0:
                raise ValueError(
                    f"Negative count {count} of {element} in species {self.name}"
                )

    def __str__(self):  # noqa
        return f"{self.name} ({self.charge})"

    def __repr__(self):  # noqa
        return f"Species({self.name}, {self.charge}, {self.composition})"

    def __eq__(self, other):  # noqa
        if isinstance(other, Species):
            return self.name == other.name
        elif isinstance(other, str):
            return self.name == other
        return False

    def __hash__(self):
        """Hashes the name of this species."""
        return hash(self.name)

    def count(self, element: str) -> int:
        """Number of atoms of ``element`` in this species."""
        return self.composition.get(element, 0)


@dataclass(frozen=True)
class Element:
    """A conserved element or grain pseudo-element.

    Attributes
    ----------
    name : str
        Element symbol, or grain type name
    abundance : float
        Target total abundance relative to the reference density
    grain : bool
        True for grain pseudo-elements, whose charge states absorb makeup
        uniformly instead of through single-element species
    single : tuple[int, ...], optional
        Indices of the single-element species of this element. Derived by
        the network when not given.
    """

    name: str
    abundance: float
    grain: bool = False
    single: Optional[tuple[int, ...]] = None


def electron() -> Species:
    """The electron, which must be species 0 of every network."""
    return Species(ELECTRON, charge=-1)


def grain_charge_states(grain: str, max_charge: int) -> list[Species]:
    """Build the charge states -max_charge..+max_charge of one grain type.

    Names follow the ion convention: ``G2-``, ``G-``, ``G``, ``G+``, ``G2+``.
    """
    if max_charge < 0:
        raise ValueError("max_charge must be non-negative")

    states = []
    for charge in range(-max_charge, max_charge + 1):
        if charge == 0:
            name = grain
        else:
            magnitude = "" if abs(charge) == 1 else str(abs(charge))
            name = f"{grain}{magnitude}{'+' if charge > 0 else '-'}"
        states.append(Species(name, charge=charge, composition={grain: 1}))
    return states
