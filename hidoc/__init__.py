"""HiDoc health-entry interpretation backend."""
