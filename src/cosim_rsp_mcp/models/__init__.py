"""Data models for the simulated hart."""

from .hart import GoldenModelAdapter, HartAccessError, MemoryHart, TrapRecord
