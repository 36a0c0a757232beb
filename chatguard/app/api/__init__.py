"""HTTP routes for chatguard."""
