"""Exceptions raised inside the :mod:`grainchem` package."""


class GrainChemError(Exception):
    """Base exception for grainchem errors."""


class NetworkError(GrainChemError, ValueError):
    """The reaction network is malformed."""


class ConfigurationError(GrainChemError, ValueError):
    """Invalid configuration or parameter value."""


class ParameterError(ConfigurationError, KeyError):
    """A parameter block or name is missing from the parameter store."""

    def __str__(self):  # noqa
        # KeyError quotes its message otherwise
        return str(self.args[0]) if self.args else ""


class ConservationError(GrainChemError, RuntimeError):
    """Element or charge densities cannot be made up from the available reservoir."""


__all__ = [
    "GrainChemError",
    "NetworkError",
    "ConfigurationError",
    "ParameterError",
    "ConservationError",
]
