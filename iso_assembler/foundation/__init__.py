"""Project-agnostic building blocks: config file loading, logging, stage runner."""
