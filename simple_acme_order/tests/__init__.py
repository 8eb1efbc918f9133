"""Unit tests and testing tools for the simple_acme_order package."""

BASE_DOMAIN = "example.com"
TEST_DOMAINS = [BASE_DOMAIN]
TEST_WILDCARD_DOMAINS = [BASE_DOMAIN, f"*.{BASE_DOMAIN}"]
TEST_EMAIL = f"simple-acme-order@{BASE_DOMAIN}"
