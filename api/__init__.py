"""HTTP surface for the metrics layer."""
