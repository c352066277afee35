"""mail/ -- Outbound transactional email for Gatekeeper.

Layer rule: mail/ imports only stdlib, third-party libraries and core/.
auth/ and api/ depend on mail/, never the reverse.
"""
