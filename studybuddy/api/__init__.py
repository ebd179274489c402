"""HTTP surface for dashboards and feedback widgets."""
