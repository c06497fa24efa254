"""Project-specific framework utilities.

This package holds the build contracts shared by the stages: configuration,
request and layout types, failure kinds, the run context and build records.
It must not import `iso_assembler.stages` or `iso_assembler.app`.
"""
