"""Command entrypoints that wire config, logging and the stage pipeline together."""
