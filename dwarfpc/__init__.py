"""Resolve program counters to file, line and function using DWARF debug data."""

__version__ = "0.1.0"

__all__ = ["attributes", "functions", "hello", "lines", "lookup", "person", "reader", "units"]