"""
plugin_config.py
Configuration of the protoc plugin.

protoc passes everything after the colon of --bq-schema_out (or the value of --bq-schema_opt)
as a parameter string, e.g. 'verbose' or 'verbose=true'. Environment variables override it:

    BQ_SCHEMA_VERBOSE   enable debug output on stderr
"""
import os
from typing import Dict, Mapping, Optional

_TRUE_VALUES = {"", "1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def parse_bool(key: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean value for {key}: {value!r}")


def parse_parameter(parameter: str) -> Dict[str, str]:
    """'a=1,b' -> {'a': '1', 'b': ''}"""
    params = {}
    for item in parameter.split(","):
        item = item.strip()
        if not item:
            continue
        key, _, value = item.partition("=")
        params[key.strip()] = value.strip()
    return params


class PluginConfig:
    KNOWN_KEYS = ("verbose",)

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    @classmethod
    def from_parameter(cls, parameter: str, environ: Optional[Mapping[str, str]] = None) -> 'PluginConfig':
        """
        Build the configuration from a protoc parameter string.

        Raises:
            ValueError: unknown parameter or malformed value
        """
        environ = os.environ if environ is None else environ
        params = parse_parameter(parameter or "")
        for key in params:
            if key not in cls.KNOWN_KEYS:
                raise ValueError(f"unknown plugin parameter: {key}")

        verbose = parse_bool("verbose", params["verbose"]) if "verbose" in params else False

        # Override with environment variables if set
        if "BQ_SCHEMA_VERBOSE" in environ:
            verbose = parse_bool("BQ_SCHEMA_VERBOSE", environ["BQ_SCHEMA_VERBOSE"])

        return cls(verbose=verbose)

    def __repr__(self):
        return f"PluginConfig(verbose={self.verbose!r})"
