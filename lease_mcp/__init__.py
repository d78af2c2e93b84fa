"""LeaseCIP — lease-rate scoring and market intelligence for a leasing broker."""
