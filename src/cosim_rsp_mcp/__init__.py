"""GDB remote serial protocol bridge for co-simulated processor harts."""

__version__ = "0.1.0"
