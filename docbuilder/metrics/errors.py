class SchemaError(ValueError):
    """A metric declaration is duplicated or malformed."""


class MetricRegistrationError(RuntimeError):
    """The collector registry rejected a metric during registration."""
