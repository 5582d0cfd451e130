"""Unit tests and testing tools for the acme_dns_issuer package."""

BASE_DOMAIN = "example.com"
TEST_DOMAINS = [BASE_DOMAIN, f"www.{BASE_DOMAIN}"]
TEST_EMAIL = "ops@example.org"
TEST_EMAIL_TEMPLATE = "ops+test-%v@example.org"
TEST_DIRECTORY = "https://acme.example.org/directory"
TEST_API_KEY = "dnsimple-test-token"
TEST_TIMESTAMP = 1700000000
