"""Configuration loading and the sheet import descriptor set."""
