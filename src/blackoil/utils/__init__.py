"""Constants, errors, the timing logger and table interpolation."""
