"""Run-level I/O helpers for BatchSVG."""
