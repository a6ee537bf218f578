
class TerminologyError(ValueError):
    """Reference terminology could not be turned into a search index."""


class TerminologyLoadError(TerminologyError):
    """ValueSet data is missing or not shaped like an expansion."""


class TerminologyIntegrityError(TerminologyError):
    """The same code appears twice with different display text."""

    def __init__(self, code: str, first: str, second: str):
        super().__init__(f"duplicate code {code!r}: {first!r} != {second!r}")
        self.code = code
        self.first = first
        self.second = second
