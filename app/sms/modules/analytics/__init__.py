"""Training analytics, grouped reports and CSV export."""
