"""Router query plan JSON loading."""

from qpcompare.loader.config import DEFAULT_CONFIG, STRICT_CONFIG, LoaderConfig
from qpcompare.loader.loader import dump_plan, load_plan, load_plan_file, parse_node

__all__ = [
    "load_plan",
    "load_plan_file",
    "parse_node",
    "dump_plan",
    "LoaderConfig",
    "DEFAULT_CONFIG",
    "STRICT_CONFIG",
]
