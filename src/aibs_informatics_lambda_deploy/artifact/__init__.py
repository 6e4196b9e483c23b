"""Building of deployable zip artifacts from a source tree."""
