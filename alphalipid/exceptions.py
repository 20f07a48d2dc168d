"""Module containing custom exceptions."""


class CustomError(Exception):
    """Custom alphalipid error class."""

    _error_code = ""
    _msg = ""
    _detail_msg = ""
    _user_msg = ""

    @property
    def error_code(self):
        return self._error_code

    @property
    def msg(self):
        return self._msg

    @property
    def detail_msg(self):
        return self._detail_msg

    def __init__(self, msg: str = ""):
        self._user_msg = msg

        super().__init__(self._msg)

    def __str__(self):
        return (
            f"{self._error_code}: {self._msg}\n'{self._user_msg}'\n{self._detail_msg}"
        )


class BusinessError(CustomError):
    """Custom error class for 'business' errors.

    A 'business' error is an error that is caused during processing the input (data, configuration, ...) and not by a
    malfunction in alphalipid.
    """


class UserError(CustomError):
    """Custom error class for 'user' errors.

    A 'user' error is an error that is caused by the incompatible user input (rules, data, configuration, ...) and not by a
    malfunction in alphalipid.
    """


class GenericUserError(UserError):
    """Raise when something is wrong with the user."""

    _error_code = "USER_ERROR"

    def __init__(self, msg: str, detail_msg: str = ""):
        self._msg = msg
        self._detail_msg = detail_msg


class MalformedInputError(UserError):
    """Raise when a rule cannot be constructed from the given input.

    Covers empty or illegal names, duplicate names, non-numeric or out of range charge and MS level values,
    and formulas or equations that cannot be parsed.
    """

    _error_code = "MALFORMED_INPUT"

    _msg = "Malformed rule input."

    def __init__(self, rule_name: str, detail_msg: str):
        self._rule_name = rule_name
        self._detail_msg = detail_msg
        super().__init__(rule_name)

    @property
    def rule_name(self):
        return self._rule_name


class UnknownReferenceError(UserError):
    """Raise when an equation references fragments that are not part of the resolved catalogs."""

    _error_code = "UNKNOWN_REFERENCE"

    _msg = "Equation references fragments that have not been defined."

    def __init__(self, equation: str, missing: list[str]):
        self._equation = equation
        self._missing = tuple(missing)
        self._detail_msg = f"Unknown fragment(s): {', '.join(self._missing)}"
        super().__init__(equation)

    @property
    def equation(self):
        return self._equation

    @property
    def missing(self):
        return self._missing


class UnknownFragmentError(UserError):
    """Raise when an edit addresses a fragment that does not exist."""

    _error_code = "UNKNOWN_FRAGMENT"

    _msg = "The fragment does not exist."

    def __init__(self, name: str, section: str):
        self._detail_msg = f"There is no fragment '{name}' in section '{section}'."
        super().__init__(name)


class RulesFileError(UserError):
    """Raise when a rules file cannot be read."""

    _error_code = "RULES_FILE_ERROR"

    _msg = "Malformed rules file."

    def __init__(self, path: str, line_number: int, detail_msg: str):
        self._detail_msg = detail_msg
        self.line_number = line_number
        super().__init__(f"{path}:{line_number}")


class ConfigError(BusinessError):
    """Raise when something is wrong with the provided configuration."""

    _error_code = "CONFIG_ERROR"

    _msg = "Malformed or invalid configuration."
    _key = ""
    _config_name = ""
    _detail_msg = ""

    def __init__(
        self,
        key: str = "",
        value: str = "",
        config_name: str = "",
        detail_msg: str = "",
    ):
        self._key = key
        self._value = value
        self._config_name = config_name
        self._detail_msg = detail_msg


class KeyAddedConfigError(ConfigError):
    """Raise when a key should be added to a config."""

    def __init__(self, key: str, value: str, config_name: str):
        super().__init__(key, value, config_name)
        self._detail_msg = (
            f"Defining new keys is not allowed when updating a config: "
            f"key='{self._key}', value='{self._value}', config_name='{self._config_name}'"
        )


class TypeMismatchConfigError(ConfigError):
    """Raise when the type of a value does not match the default type."""

    def __init__(self, key: str, value: str, config_name: str, extra_msg: str):
        super().__init__(key, value, config_name)
        self._detail_msg = (
            f"Types of values must match default config: "
            f"key='{self._key}', value='{self._value}', config_name='{self._config_name}', types='{extra_msg}'"
        )
