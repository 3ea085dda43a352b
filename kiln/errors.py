# kiln/errors.py
"""Exception hierarchy shared by the kiln modules."""


class KilnError(Exception):
    pass


class ConfigError(KilnError):
    pass


class RecipeError(KilnError):
    pass


class MacroError(KilnError):
    pass


class ContextError(KilnError):
    pass


class StageError(KilnError):
    pass


class FetchError(KilnError):
    def __init__(self, message: str, failures=None):
        super().__init__(message)
        # uri -> error text
        self.failures = dict(failures or {})


class BuildError(KilnError):
    pass
