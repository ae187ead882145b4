"""HTTP surface for domain provisioning."""
