"""Shared constants for provflow."""

DEFAULT_FUZZ_BAND = 0.2
DEFAULT_TICK_TOPIC = "provflow.ticks"
DEFAULT_LOCK_EXPIRES_IN = 25

EMPTY_POLICY_ID = "Policy"
POLICY_SCHEMA_VERSION = "2012-10-17"

STACK_CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"]
