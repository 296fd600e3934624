"""HealthVault authentication service."""
