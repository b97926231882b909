"""
Configuration management for grainchem evolutions.

Simple dataclass-based config for chemical evolution runs.
Supports loading from YAML/JSON, from a block-structured parameter store
and programmatic setup.
"""

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Dict, Optional

import yaml

from .errors import ConfigurationError
from .parameters import ParameterStore

SOLVERS = ["bader_deuflhard", "kaps_rentrop", "kvaerno5"]


@dataclass
class EvolutionConfig:
    """Configuration for a chemical evolution.

    Attributes
    ----------
    Physical Parameters:
        reference_density : float
            Density that abundances are relative to [cm^-3], e.g. n_H
        element_abundances : Dict[str, float]
            Element (or grain) name -> target abundance. Overrides the
            abundances the network was built with.

    Initial Abundances:
        initial_abundances : Dict[str, float]
            Species name -> fractional abundance (relative to reference_density)
        abundance_floor : float
            Abundance of all species not listed

    Integration Parameters:
        t_start : float
            Start time [years]
        t_end : float
            End time [years]
        dt_init : float
            Initial trial step [years]
        tolerance : float
            Relative error level of the stiff solvers
        density_scale_floor : float
            Smallest density scale, relative to reference_density
        solver : str
            Primary solver: 'bader_deuflhard', 'kaps_rentrop', 'kvaerno5'
        fallback_solver : str
            Solver retrying a failed step
        max_wall_time : float
            Wall-clock budget of one evolution [s]
        max_steps : int, optional
            Budget of accepted steps

    Output Settings:
        record_history : bool
            Keep the densities after every accepted step
        run_name : str
            Identifier for this run
    """

    # Physical parameters
    reference_density: float = 1.0
    element_abundances: Dict[str, float] = field(default_factory=dict)

    # Initial abundances (fractional relative to reference_density)
    initial_abundances: Dict[str, float] = field(default_factory=dict)
    abundance_floor: float = 1e-30

    # Integration parameters
    t_start: float = 0.0
    t_end: float = 1e6  # years
    dt_init: float = 1e-6  # years
    tolerance: float = 1e-4
    density_scale_floor: float = 1e-20
    solver: str = "bader_deuflhard"
    fallback_solver: str = "kaps_rentrop"
    max_wall_time: float = 3600.0
    max_steps: Optional[int] = None

    # Output settings
    record_history: bool = False
    run_name: str = "grainchem_run"

    @classmethod
    def from_yaml(cls, filepath: str) -> "EvolutionConfig":
        """Load configuration from YAML file."""
        with open(filepath, "r") as f:
            data = yaml.safe_load(f)
        return cls(**data)

    @classmethod
    def from_json(cls, filepath: str) -> "EvolutionConfig":
        """Load configuration from JSON file."""
        with open(filepath, "r") as f:
            data = json.load(f)
        return cls(**data)

    def to_yaml(self, filepath: str):
        """Save configuration to YAML file."""
        with open(filepath, "w") as f:
            yaml.dump(asdict(self), f, default_flow_style=False)

    def to_json(self, filepath: str):
        """Save configuration to JSON file."""
        with open(filepath, "w") as f:
            json.dump(asdict(self), f, indent=2)

    @classmethod
    def from_parameters(
        cls,
        store: ParameterStore,
        block: str = "chemistry",
        abundance_block: str = "abundances",
        element_block: str = "elements",
    ) -> "EvolutionConfig":
        """Build a configuration from a parameter store.

        Scalars are read from ``block`` with the dataclass defaults as
        fallback (and recorded into the store). Initial species abundances
        and element abundances come from their own optional blocks.
        """
        defaults = cls()
        values = {}
        for f in fields(cls):
            default = getattr(defaults, f.name)
            if isinstance(default, dict):
                continue
            if isinstance(default, bool):
                text = store.get_str(block, f.name, str(default).lower())
                values[f.name] = text.strip().lower() in ("1", "true", "yes", "on")
            elif isinstance(default, float):
                values[f.name] = store.get_float(block, f.name, default)
            elif isinstance(default, str):
                values[f.name] = store.get_str(block, f.name, default)
            elif f.name == "max_steps":
                if store.exists(block, f.name):
                    values[f.name] = store.get_int(block, f.name)

        if abundance_block in store.blocks:
            values["initial_abundances"] = {
                name: float(value) for name, value in store.block(abundance_block).items()
            }
        if element_block in store.blocks:
            values["element_abundances"] = {
                name: float(value) for name, value in store.block(element_block).items()
            }
        return cls(**values)

    def validate(self):
        """Basic validation of parameter ranges."""
        if self.reference_density <= 0:
            raise ConfigurationError("reference_density must be positive")
        if self.t_end <= self.t_start:
            raise ConfigurationError("t_end must be > t_start")
        if self.dt_init <= 0:
            raise ConfigurationError("dt_init must be positive")
        if not 0 < self.tolerance < 1:
            raise ConfigurationError("tolerance must be between 0 and 1")
        if self.density_scale_floor <= 0:
            raise ConfigurationError("density_scale_floor must be positive")
        if self.abundance_floor < 0:
            raise ConfigurationError("abundance_floor must be non-negative")
        for name in (self.solver, self.fallback_solver):
            if name not in SOLVERS:
                raise ConfigurationError(f"Unknown solver: {name}")
        if any(value < 0 for value in self.initial_abundances.values()):
            raise ConfigurationError("initial_abundances must be non-negative")
