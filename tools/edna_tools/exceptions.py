"""
Error and warning classes raised by the eDNA analysis tools.
"""


class EdnaToolsError(Exception):
    """Base class for errors raised by edna_tools."""


class ParseError(EdnaToolsError, ValueError):
    """An abundance value could not be parsed as a non-negative number."""

    def __init__(self, value, column=None, species=None):
        self.value = value
        self.column = column
        self.species = species
        location = []
        if column is not None:
            location.append(f"sample column '{column}'")
        if species is not None:
            location.append(f"species '{species}'")
        where = f" in {', '.join(location)}" if location else ""
        super().__init__(f"Could not parse abundance value {value!r}{where}")


class UnknownGroupError(EdnaToolsError, KeyError):
    """A sample could not be assigned to any known group."""

    def __init__(self, sample, known=None):
        self.sample = sample
        self.known = list(known) if known is not None else []
        message = f"Sample '{sample}' does not match any known group"
        if self.known:
            message += f" (known: {', '.join(map(str, self.known))})"
        super().__init__(message)

    def __str__(self):
        # KeyError quotes its argument otherwise
        return self.args[0]


class DegenerateInputError(EdnaToolsError, ValueError):
    """Input too small or empty for a statistic to be defined."""


class ConvergenceWarning(UserWarning):
    """NMDS did not reach an acceptable stress within its restart budget."""


class ModelFitWarning(UserWarning):
    """A per-species count model could not be fitted."""
